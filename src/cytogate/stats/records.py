"""
Population statistics.

``compute_statistics`` walks every population of every sample in a
GatingSet and produces one StatisticsRecord per (sample, population).

Ratios are fractions in [0, 1]: ``percent_of_parent = count / parent_count``.
Division policy: when the parent count is 0 the ratio is NaN and a
DivisionPolicyWarning is emitted. Failed populations report ``count=None``
(absent) rather than zero.

Aggregator output is coerced channel by channel: a None or non-numeric value
becomes NaN without discarding the other channels. An aggregator that raises
leaves NaN for every channel it covers and the error in ``aggregator_error``.
"""

import logging
import math
import warnings

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cytogate.constants import NodeStatus
from cytogate.events.table import EventTable
from cytogate.exceptions import DivisionPolicyWarning
from cytogate.gating.gating_set import GatingSet
from cytogate.gating.tree import ROOT_PATH, PopulationNode, SampleTree, format_path
from cytogate.stats.aggregators import Aggregator

logger = logging.getLogger(__name__)


class StatisticsRecord(BaseModel):
    """Statistics of one population of one sample."""

    model_config = ConfigDict(frozen=True)

    sample_id: str = Field(description="Sample identifier")
    path: str = Field(description="Population path, e.g. '/cells/singlets'")
    population: str = Field(description="Population name")
    parent_path: str | None = Field(default=None, description="None for the root")
    count: int | None = Field(default=None, description="None when the node failed")
    parent_count: int | None = Field(
        default=None, description="None for the root or a failed node"
    )
    percent_of_parent: float | None = Field(
        default=None, description="count / parent_count; NaN if parent_count is 0"
    )
    percent_of_total: float | None = Field(
        default=None, description="count / root count; NaN if the sample is empty"
    )
    status: NodeStatus = NodeStatus.OK
    error: str | None = None
    values: dict[str, float | None] = Field(
        default_factory=dict, description="Channel-keyed aggregator output"
    )
    aggregator_error: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    def __repr__(self) -> str:
        return (
            f"StatisticsRecord({self.sample_id}:{self.path} count={self.count} "
            f"percent_of_parent={self.percent_of_parent})"
        )


def population_ratio(
    count: int, reference: int, sample_id: str = "", path: str = ""
) -> float:
    """
    count / reference, NaN with a DivisionPolicyWarning when reference is 0.

    Example:
        >>> population_ratio(412, 1000)
        0.412
    """
    if reference == 0:
        warnings.warn(
            f"Population {sample_id}:{path} has an empty reference population; "
            f"ratio is undefined",
            DivisionPolicyWarning,
            stacklevel=3,
        )
        return math.nan
    return count / reference


def _channel_values(
    raw: Mapping[str, Any],
) -> tuple[dict[str, float | None], str | None]:
    """Coerce aggregator output per channel; None and non-numbers become NaN."""
    values: dict[str, float | None] = {}
    bad: list[str] = []
    for channel, value in raw.items():
        if value is None:
            values[channel] = math.nan
            continue
        try:
            values[channel] = float(value)
        except (TypeError, ValueError):
            values[channel] = math.nan
            bad.append(channel)
    error = f"Non-numeric value for channel(s) {bad}" if bad else None
    return values, error


def _aggregated_channels(aggregator: Aggregator, events: EventTable) -> list[str]:
    channels = getattr(aggregator, "channels", None)
    return list(channels) if channels is not None else events.channel_names


def _node_record(
    tree: SampleTree,
    node: PopulationNode,
    total: int,
    metadata: dict[str, str],
    aggregator: Aggregator | None,
) -> StatisticsRecord:
    path = format_path(node.path)
    common: dict[str, Any] = {
        "sample_id": tree.sample_id,
        "path": path,
        "population": node.name,
        "parent_path": None if node.is_root else format_path(node.parent_path),
        "status": node.status,
        "error": node.error,
        "metadata": metadata,
    }

    if node.failed:
        return StatisticsRecord(**common)

    count = node.count
    parent_count = None
    percent_of_parent = None
    if not node.is_root:
        parent_count = tree.get(node.parent_path).count
        percent_of_parent = population_ratio(count, parent_count, tree.sample_id, path)

    values: dict[str, float | None] = {}
    aggregator_error = None
    if aggregator is not None:
        events = tree.events_for(node.path)
        try:
            values, aggregator_error = _channel_values(aggregator(events))
        except Exception as e:
            aggregator_error = f"{type(e).__name__}: {e}"
            values = dict.fromkeys(_aggregated_channels(aggregator, events), math.nan)
        if aggregator_error:
            logger.warning(
                f"Aggregator failed for {tree.sample_id}:{path}: {aggregator_error}"
            )

    return StatisticsRecord(
        **common,
        count=count,
        parent_count=parent_count,
        percent_of_parent=percent_of_parent,
        percent_of_total=population_ratio(count, total, tree.sample_id, path),
        values=values,
        aggregator_error=aggregator_error,
    )


def compute_statistics(
    gating_set: GatingSet,
    path: str | Sequence[str] | None = None,
    aggregator: Aggregator | None = None,
) -> list[StatisticsRecord]:
    """
    Compute statistics for every population of every sample.

    Args:
        gating_set: Realized gating set
        path: Restrict to one population (default: all populations)
        aggregator: Optional per-population aggregator; an aggregator error
            is recorded on the record (``aggregator_error``) and logged

    Returns:
        Records ordered by sample, then topologically by population

    Raises:
        PopulationNotFoundError: If ``path`` does not exist
    """
    records: list[StatisticsRecord] = []
    sample_set = gating_set.sample_set

    for sample_id in gating_set.sample_ids:
        tree = gating_set.tree(sample_id)
        total = tree.get(ROOT_PATH).count
        metadata = sample_set.metadata_for(sample_id)

        nodes = [tree.get(path)] if path is not None else list(tree.nodes())
        for node in nodes:
            records.append(_node_record(tree, node, total, metadata, aggregator))

    failed = sum(1 for r in records if r.failed)
    logger.debug(f"Computed {len(records)} statistics record(s), {failed} failed")
    return records
