"""
Per-population aggregators.

An aggregator is any callable mapping an EventTable (the retained events of
one population) to a channel-keyed numeric mapping. The built-ins below are
factories: ``get_aggregator("mean", channels=["CD3"])`` returns an
aggregator computing the CD3 mean. User-supplied callables are accepted
wherever an aggregator is expected.

Empty populations yield NaN for every channel rather than raising.
"""

import logging

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import numpy as np

from scipy import stats

from cytogate.events.table import EventTable

logger = logging.getLogger(__name__)

Aggregator = Callable[[EventTable], Mapping[str, float]]


def _per_channel(
    reducer: Callable[[np.ndarray], float], channels: Sequence[str] | None
) -> Aggregator:
    selected = list(channels) if channels is not None else None

    def aggregate(events: EventTable) -> dict[str, float]:
        names = selected if selected is not None else events.channel_names
        if events.n_events == 0:
            return {name: float("nan") for name in names}
        return {name: float(reducer(events.column(name))) for name in names}

    # Channels reported on failure; None means every channel of the table
    aggregate.channels = selected  # type: ignore[attr-defined]
    return aggregate


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0 or not np.isfinite(denominator):
        return float("nan")
    return numerator / denominator


def _geometric_mean(values: np.ndarray) -> float:
    # Non-positive events are excluded (log undefined)
    positive = values[values > 0]
    if positive.size == 0:
        return float("nan")
    return float(stats.gmean(positive))


def _cv(values: np.ndarray) -> float:
    """Coefficient of variation, in percent."""
    return 100.0 * _safe_ratio(float(np.std(values, ddof=1)), float(np.mean(values)))


def _fano(values: np.ndarray) -> float:
    return _safe_ratio(float(np.var(values, ddof=1)), float(np.mean(values)))


def mean(channels: Sequence[str] | None = None) -> Aggregator:
    return _per_channel(np.mean, channels)


def median(channels: Sequence[str] | None = None) -> Aggregator:
    return _per_channel(np.median, channels)


def std(channels: Sequence[str] | None = None) -> Aggregator:
    """Sample standard deviation (ddof=1); NaN for a single event."""
    return _per_channel(
        lambda v: np.std(v, ddof=1) if v.size > 1 else float("nan"), channels
    )


def var(channels: Sequence[str] | None = None) -> Aggregator:
    """Sample variance (ddof=1); NaN for a single event."""
    return _per_channel(
        lambda v: np.var(v, ddof=1) if v.size > 1 else float("nan"), channels
    )


def geometric_mean(channels: Sequence[str] | None = None) -> Aggregator:
    return _per_channel(_geometric_mean, channels)


def cv(channels: Sequence[str] | None = None) -> Aggregator:
    return _per_channel(lambda v: _cv(v) if v.size > 1 else float("nan"), channels)


def fano(channels: Sequence[str] | None = None) -> Aggregator:
    return _per_channel(lambda v: _fano(v) if v.size > 1 else float("nan"), channels)


def quantile(channels: Sequence[str] | None = None, q: float = 0.5) -> Aggregator:
    """
    Per-channel quantile.

    Args:
        channels: Channels to summarize (default: all)
        q: Quantile in [0, 1], e.g. 0.75 for the 75th percentile

    Raises:
        ValueError: If q is outside [0, 1]
    """
    if not 0.0 <= q <= 1.0:
        raise ValueError(f"Quantile must be within [0, 1], got {q}")
    return _per_channel(lambda v: np.quantile(v, q), channels)


def count_only(channels: Sequence[str] | None = None) -> Aggregator:
    """No per-channel values; records carry counts only."""

    def aggregate(events: EventTable) -> dict[str, float]:
        return {}

    return aggregate


AVAILABLE_AGGREGATORS: dict[str, Callable[..., Aggregator]] = {
    "mean": mean,
    "median": median,
    "std": std,
    "var": var,
    "geometric_mean": geometric_mean,
    "cv": cv,
    "fano": fano,
    "quantile": quantile,
    "count_only": count_only,
}


def get_aggregator(
    name: str, channels: Sequence[str] | None = None, **kwargs: Any
) -> Aggregator:
    """
    Factory function to get an aggregator by name.

    Args:
        name: Aggregator name (see AVAILABLE_AGGREGATORS)
        channels: Channels to summarize (default: all)
        **kwargs: Extra parameters, e.g. ``q`` for "quantile"

    Raises:
        ValueError: If the name is not recognized
    """
    if name not in AVAILABLE_AGGREGATORS:
        raise ValueError(
            f"Unknown aggregator: {name}. Available: {list(AVAILABLE_AGGREGATORS.keys())}"
        )
    return AVAILABLE_AGGREGATORS[name](channels, **kwargs)
