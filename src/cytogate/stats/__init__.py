"""Population statistics and aggregators."""

from cytogate.stats.aggregators import (
    AVAILABLE_AGGREGATORS,
    Aggregator,
    get_aggregator,
)
from cytogate.stats.records import StatisticsRecord, compute_statistics, population_ratio

__all__ = [
    "AVAILABLE_AGGREGATORS",
    "Aggregator",
    "StatisticsRecord",
    "compute_statistics",
    "get_aggregator",
    "population_ratio",
]
