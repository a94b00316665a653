"""
cytogate: hierarchical population gating for flow cytometry

Loads sample files into immutable event tables, applies a tree of gates to
every sample of an experiment, and reports per-population statistics.
"""

from typing import Any

__all__ = [
    "GatingSet",
    "SampleSet",
    "compute_statistics",
    "load_sample_set",
    "load_strategy",
]

_LAZY = {
    "GatingSet": "cytogate.gating.gating_set",
    "SampleSet": "cytogate.events.sample_set",
    "compute_statistics": "cytogate.stats.records",
    "load_sample_set": "cytogate.events.sample_set",
    "load_strategy": "cytogate.gating.strategy",
}


def __getattr__(name: str) -> Any:
    """Lazy load the public API to keep `import cytogate` cheap."""
    if name in _LAZY:
        from importlib import import_module

        return getattr(import_module(_LAZY[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
