"""Configuration management for cytogate."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

from cytogate.constants import DEFAULT_CONFIG_DIR

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CYTOGATE_CONFIG"


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    The ``CYTOGATE_CONFIG`` environment variable overrides the default
    location.

    Returns:
        Path to ~/.cytogate/config.toml
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return DEFAULT_CONFIG_DIR / "config.toml"


def load_config() -> dict[str, Any]:
    """
    Read the user config.

    A missing file is an empty config. An unreadable or malformed file is
    logged and also treated as empty so a bad edit never blocks gating runs.
    """
    config_path = get_config_path()
    if not config_path.exists():
        return {}

    try:
        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring config {config_path}: {e}")
        return {}


def _write_atomic(path: Path, config: dict[str, Any]) -> None:
    # Readers see either the old file or the new one
    staging = path.with_name(path.name + ".tmp")
    try:
        with open(staging, "wb") as f:
            tomli_w.dump(config, f)
        os.replace(staging, path)
    finally:
        staging.unlink(missing_ok=True)


def save_config(config: dict[str, Any]) -> None:
    """
    Replace the user config with ``config``.

    Raises:
        PermissionError: If the config directory cannot be created
        TypeError: If a value has no TOML representation
    """
    config_path = get_config_path()
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_path.parent}: {e}"
        ) from e

    _write_atomic(config_path, config)
    logger.debug(f"Saved config to {config_path}")


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """
    Read a single setting from the config file.

    Args:
        section: Table name (e.g. "analysis")
        key: Key within the table
        default: Value returned when the setting is absent

    Returns:
        Configured value or default
    """
    table = load_config().get(section, {})
    if not isinstance(table, dict):
        return default
    return table.get(key, default)


def set_setting(section: str, key: str, value: Any) -> None:
    """
    Set a single setting and persist the config file.

    Args:
        section: Table name
        key: Key within the table
        value: TOML-serializable value
    """
    config = load_config()

    if section not in config or not isinstance(config[section], dict):
        config[section] = {}

    config[section][key] = value
    save_config(config)


def unset_setting(section: str, key: str) -> None:
    """
    Remove a setting from the config file.

    Empty tables are removed; an empty config deletes the file.
    """
    config = load_config()

    if isinstance(config.get(section), dict) and key in config[section]:
        del config[section][key]

        if not config[section]:
            del config[section]

        if not config:
            config_path = get_config_path()
            if config_path.exists():
                config_path.unlink()
        else:
            save_config(config)
