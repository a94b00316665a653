"""Pure EventTable transformations: compensation and scale transforms."""

from cytogate.transforms.compensation import (
    SpilloverMatrix,
    compensate,
    load_spillover_csv,
    parse_spillover,
    spillover_from_keywords,
)
from cytogate.transforms.scales import (
    AVAILABLE_TRANSFORMS,
    AsinhTransform,
    LinearTransform,
    LogicleTransform,
    ScaleTransform,
    get_transform,
    inverse_transform_table,
    transform_table,
)

__all__ = [
    "AVAILABLE_TRANSFORMS",
    "AsinhTransform",
    "LinearTransform",
    "LogicleTransform",
    "ScaleTransform",
    "SpilloverMatrix",
    "compensate",
    "get_transform",
    "inverse_transform_table",
    "load_spillover_csv",
    "parse_spillover",
    "spillover_from_keywords",
    "transform_table",
]
