"""
Statistics report export.

Records are exported in long form (one row per sample and population) as
CSV, TSV or JSON, or pivoted into a wide population x sample table.
Undefined ratios are written as ``NaN`` (a quoted string in JSON, which has
no NaN literal); absent values (failed populations) are written as empty
cells (CSV/TSV) or ``null`` (JSON).
"""

import csv
import json
import logging
import math

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal

from cytogate.constants import DEFAULT_REPORT_FORMAT, REPORT_COLUMNS, REPORT_FORMATS
from cytogate.stats.records import StatisticsRecord

logger = logging.getLogger(__name__)

VALUE_PREFIX = "value"
META_PREFIX = "meta"

TABLE_VALUES = {
    "percent": "percent_of_parent",
    "percent_of_total": "percent_of_total",
    "count": "count",
}


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return "NaN"
    return value


def _json_value(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        if value != value:
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_json_value(v) for v in value]
    return value


def records_to_rows(records: Sequence[StatisticsRecord]) -> list[dict[str, Any]]:
    """
    Flatten records into report rows.

    Columns are REPORT_COLUMNS, then ``meta:<field>`` for every metadata
    field and ``value:<channel>`` for every aggregator value, then
    ``error`` and ``aggregator_error``. Rows missing a column get None.
    """
    meta_keys: list[str] = []
    value_keys: list[str] = []
    for record in records:
        meta_keys.extend(k for k in record.metadata if k not in meta_keys)
        value_keys.extend(k for k in record.values if k not in value_keys)

    rows = []
    for record in records:
        row: dict[str, Any] = {
            "sample_id": record.sample_id,
            "population": record.population,
            "path": record.path,
            "parent_path": record.parent_path,
            "status": record.status.value,
            "count": record.count,
            "parent_count": record.parent_count,
            "percent_of_parent": record.percent_of_parent,
            "percent_of_total": record.percent_of_total,
        }
        for key in meta_keys:
            row[f"{META_PREFIX}:{key}"] = record.metadata.get(key)
        for key in value_keys:
            row[f"{VALUE_PREFIX}:{key}"] = record.values.get(key)
        row["error"] = record.error
        row["aggregator_error"] = record.aggregator_error
        rows.append(row)
    return rows


def write_report(
    records: Sequence[StatisticsRecord],
    path: Path | str,
    fmt: Literal["csv", "tsv", "json"] = DEFAULT_REPORT_FORMAT,
) -> Path:
    """
    Export statistics records.

    Args:
        records: Records to export
        path: Output file (parent directories are created)
        fmt: "csv", "tsv" or "json"

    Returns:
        Path of the written file

    Raises:
        ValueError: If the format is not supported
    """
    if fmt not in REPORT_FORMATS:
        raise ValueError(f"Unknown report format: {fmt}. Available: {list(REPORT_FORMATS)}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "json":
        payload = [_json_value(record.model_dump()) for record in records]
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, allow_nan=False)
    else:
        rows = records_to_rows(records)
        fieldnames = list(rows[0]) if rows else list(REPORT_COLUMNS)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(
                f, fieldnames=fieldnames, delimiter="\t" if fmt == "tsv" else ","
            )
            writer.writeheader()
            for row in rows:
                writer.writerow({k: _cell(v) for k, v in row.items()})

    logger.info(f"Wrote {len(records)} record(s) to {path} ({fmt})")
    return path


def population_table(
    records: Sequence[StatisticsRecord],
    value: Literal["percent", "percent_of_total", "count"] = "percent",
) -> list[dict[str, Any]]:
    """
    Pivot records into one row per population and one column per sample.

    Example:
        >>> population_table(records, value="count")
        [{"path": "/", "s1": 1000, "s2": 1000}, {"path": "/cells", "s1": 412, ...}]

    Raises:
        ValueError: If ``value`` is not recognized
    """
    if value not in TABLE_VALUES:
        raise ValueError(f"Unknown table value: {value}. Available: {list(TABLE_VALUES)}")
    field = TABLE_VALUES[value]

    samples: list[str] = []
    table: dict[str, dict[str, Any]] = {}
    for record in records:
        if record.sample_id not in samples:
            samples.append(record.sample_id)
        row = table.setdefault(record.path, {"path": record.path})
        row[record.sample_id] = getattr(record, field)

    return [{"path": row["path"], **{s: row.get(s) for s in samples}} for row in table.values()]
