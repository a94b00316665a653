"""
Command-line interface for cytogate.

Provides commands for inspecting sample files, running a gating strategy
over a batch of samples, and managing the user configuration.
"""

import logging
import sys
import tomllib

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Any

import click

from cytogate.config import get_config_path, load_config, set_setting, unset_setting
from cytogate.constants import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_REPORT_FORMAT,
    DEFAULT_WELL_PATTERN,
    DEFAULT_WORKERS,
    REPORT_FORMATS,
)
from cytogate.events.sample_set import extract_well, load_sample_set
from cytogate.exceptions import FormatError, SchemaMismatchError, StrategyError
from cytogate.gating.strategy import load_strategy
from cytogate.gating.tree import format_path
from cytogate.logging_config import get_log_path, setup_logging
from cytogate.parsers.registry import read_sample
from cytogate.reports.writer import write_report
from cytogate.stats.aggregators import AVAILABLE_AGGREGATORS, get_aggregator
from cytogate.stats.records import compute_statistics
from cytogate.transforms.compensation import spillover_from_keywords

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("cytogate")
except PackageNotFoundError:
    __version__ = "dev"


def _parse_value(raw: str) -> Any:
    """Interpret a config value as TOML (numbers, booleans), else a string."""
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


@click.group()
@click.version_option(__version__, prog_name="cytogate")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """cytogate: hierarchical flow cytometry gating"""
    setup_logging(verbose=verbose, console_format="%(levelname)s: %(message)s")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def inspect(path: str) -> None:
    """Show the channels and event count of a sample file."""
    file_path = Path(path)
    try:
        table = read_sample(file_path)
    except FormatError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"File:     {file_path.name}")
    click.echo(f"Events:   {table.n_events}")
    click.echo(f"Channels: {table.n_channels}")

    well = extract_well(file_path.name)
    if well.found:
        click.echo(f"Well:     {well.value}")

    try:
        spillover = spillover_from_keywords(table.keywords)
    except FormatError as e:
        click.echo(f"Spillover: invalid ({e})")
    else:
        if spillover is not None:
            click.echo(f"Spillover: {len(spillover.channels)} channel(s)")

    click.echo("")
    for i, channel in enumerate(table.channels, 1):
        label = f"  ({channel.label})" if channel.label else ""
        click.echo(f"  {i:>3}. {channel.name}{label}")


@cli.command()
@click.argument("strategy", type=click.Path(exists=True, dir_okay=False))
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Report file (default: population_statistics.<format>)",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(list(REPORT_FORMATS)),
    help=f"Report format (default: config report.format or {DEFAULT_REPORT_FORMAT})",
)
@click.option(
    "--aggregate",
    type=click.Choice(list(AVAILABLE_AGGREGATORS)),
    help="Per-population channel statistic",
)
@click.option(
    "--channel",
    "-c",
    "channels",
    multiple=True,
    help="Channel for --aggregate (repeatable, default: all)",
)
@click.option(
    "--quantile",
    "q",
    type=click.FloatRange(0.0, 1.0),
    default=0.5,
    show_default=True,
    help="Quantile for --aggregate quantile",
)
@click.option("--workers", "-j", type=click.IntRange(min=1), help="Parallel samples")
@click.option(
    "--database",
    type=click.Path(dir_okay=False),
    help=f"Also save results to this SQLite database (e.g. {DEFAULT_DATABASE_PATH})",
)
def gate(
    strategy: str,
    files: tuple[str, ...],
    output: str | None,
    fmt: str | None,
    aggregate: str | None,
    channels: tuple[str, ...],
    q: float,
    workers: int | None,
    database: str | None,
) -> None:
    """Apply a gating STRATEGY to sample FILES and write a statistics report."""
    config = load_config()
    analysis = config.get("analysis", {})
    fmt = fmt or config.get("report", {}).get("format", DEFAULT_REPORT_FORMAT)
    workers = workers or int(analysis.get("workers", DEFAULT_WORKERS))
    output_path = Path(output) if output else Path(f"population_statistics.{fmt}")

    try:
        template = load_strategy(strategy)
    except StrategyError as e:
        raise click.ClickException(str(e)) from e

    sample_set = load_sample_set(
        [Path(f) for f in files],
        well_pattern=analysis.get("well_pattern", DEFAULT_WELL_PATTERN),
    )
    for sample_id, reason in sample_set.failures.items():
        click.echo(f"Excluded {sample_id}: {reason}", err=True)
    if len(sample_set) == 0:
        raise click.ClickException("No samples could be loaded")

    try:
        gating_set = template.apply(sample_set, workers=workers)
    except (StrategyError, SchemaMismatchError) as e:
        raise click.ClickException(str(e)) from e

    prepared = gating_set.sample_set
    for sample_id, reason in prepared.failures.items():
        if sample_id not in sample_set.failures:
            click.echo(f"Excluded {sample_id}: {reason}", err=True)

    aggregator = None
    if aggregate:
        kwargs = {"q": q} if aggregate == "quantile" else {}
        aggregator = get_aggregator(aggregate, list(channels) or None, **kwargs)

    records = compute_statistics(gating_set, aggregator=aggregator)
    try:
        report_path = write_report(records, output_path, fmt)
    except OSError as e:
        raise click.ClickException(f"Cannot write report {output_path}: {e}") from e

    failed = gating_set.failed_nodes()
    for node in failed:
        click.echo(
            f"Failed {node.sample_id}:{format_path(node.path)}: {node.error}", err=True
        )

    click.echo(
        f"Gated {len(gating_set.sample_ids)} sample(s), "
        f"{len(gating_set.population_paths)} population(s), {len(failed)} failed node(s)"
    )
    click.echo(f"Report: {report_path}")

    if database:
        from cytogate.database.store import ResultsStore

        with ResultsStore(database) as store:
            run_id = store.save_records(
                records,
                strategy_source=str(Path(strategy).resolve()),
                aggregator=aggregate,
                excluded_samples=prepared.failures,
            )
        click.echo(f"Saved run {run_id} to {store.database_path}")


@cli.command()
@click.option(
    "--database",
    type=click.Path(dir_okay=False),
    default=DEFAULT_DATABASE_PATH,
    show_default=True,
    help="Results database",
)
def runs(database: str) -> None:
    """List analysis runs saved in the results database."""
    from cytogate.database.store import ResultsStore

    with ResultsStore(database) as store:
        saved = store.list_runs()
    if not saved:
        click.echo("No runs saved")
        return

    for run in saved:
        created = run.created_at.strftime("%Y-%m-%d %H:%M") if run.created_at else "-"
        source = Path(run.strategy_source).name if run.strategy_source else "-"
        click.echo(f"{run.id:>5}  {created}  {run.n_samples:>4} sample(s)  {source}")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
def config_show() -> None:
    """Show the current configuration."""
    path = get_config_path()
    current = load_config()
    click.echo(f"Config: {path}")
    if not current:
        click.echo("  (empty)")
        return
    for section, table in current.items():
        click.echo(f"[{section}]")
        if isinstance(table, dict):
            for key, value in table.items():
                click.echo(f"  {key} = {value!r}")
        else:
            click.echo(f"  {table!r}")


@config.command("set")
@click.argument("section")
@click.argument("key")
@click.argument("value")
def config_set(section: str, key: str, value: str) -> None:
    """Set SECTION.KEY to VALUE (parsed as TOML when possible)."""
    parsed = _parse_value(value)
    try:
        set_setting(section, key, parsed)
    except PermissionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ {section}.{key} = {parsed!r}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset")
@click.argument("section")
@click.argument("key")
def config_unset(section: str, key: str) -> None:
    """Remove SECTION.KEY from the configuration."""
    unset_setting(section, key)
    click.echo(f"✓ Removed {section}.{key}")


@cli.command()
def logs() -> None:
    """Show the log file location."""
    click.echo(str(get_log_path()))


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
