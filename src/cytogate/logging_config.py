"""
Logging setup for the cytogate entry points.

Library modules only create ``logging.getLogger(__name__)`` loggers. The CLI
calls setup_logging() once, which routes the ``cytogate`` logger tree to a
stderr handler and, when ``[logging] enabled = true`` is set in the user
config, to a rotating log file.
"""

import logging
import logging.config
import sys

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cytogate.config import load_config
from cytogate.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


@dataclass(frozen=True)
class LogFileSettings:
    """The ``[logging]`` table of the user config."""

    enabled: bool = False
    level: str = "DEBUG"
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT

    @classmethod
    def from_config(cls, table: Any) -> "LogFileSettings":
        if not isinstance(table, dict):
            return cls()
        max_size_mb = table.get("max_size_mb")
        return cls(
            enabled=bool(table.get("enabled", False)),
            level=str(table.get("level", "DEBUG")).upper(),
            max_bytes=(
                int(float(max_size_mb) * 1024 * 1024)
                if max_size_mb is not None
                else DEFAULT_LOG_MAX_BYTES
            ),
            backup_count=int(table.get("backup_count", DEFAULT_LOG_BACKUP_COUNT)),
        )


def get_log_path() -> Path:
    """Location of the rotating log file (written only when enabled)."""
    return DEFAULT_LOG_DIR / DEFAULT_LOG_FILE


def build_logging_config(
    settings: LogFileSettings,
    verbose: bool = False,
    console_format: str | None = None,
    log_path: Path | None = None,
) -> dict[str, Any]:
    """
    dictConfig schema for the ``cytogate`` logger tree.

    Args:
        settings: File handler settings
        verbose: Console at DEBUG instead of WARNING
        console_format: Console format string, defaults to LOG_FORMAT
        log_path: Log file, defaults to get_log_path()

    Returns:
        Dictionary for logging.config.dictConfig()
    """
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if verbose else "WARNING",
            "formatter": "console",
            "stream": "ext://sys.stderr",
        }
    }
    if settings.enabled:
        path = log_path or get_log_path()
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": settings.level,
            "formatter": "file",
            "filename": str(path),
            "maxBytes": settings.max_bytes,
            "backupCount": settings.backup_count,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_format or LOG_FORMAT},
            "file": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "cytogate": {
                "level": "DEBUG",
                "handlers": list(handlers),
                "propagate": False,
            },
        },
    }


def setup_logging(*, verbose: bool = False, console_format: str | None = None) -> None:
    """
    Configure cytogate logging once per process.

    A broken ``[logging]`` table falls back to a plain stderr configuration
    with a warning instead of aborting the command.

    Args:
        verbose: Console at DEBUG instead of WARNING
        console_format: Console format string
    """
    global _configured

    if _configured:
        return

    try:
        settings = LogFileSettings.from_config(load_config().get("logging"))
        logging.config.dictConfig(
            build_logging_config(settings, verbose=verbose, console_format=console_format)
        )
    except (TypeError, ValueError, OSError) as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format=console_format or "%(levelname)s: %(message)s",
        )

    _configured = True
