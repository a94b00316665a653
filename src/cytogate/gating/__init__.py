"""Gates, population trees and gating strategies."""

from cytogate.gating.fitted import DensityGate, FittedGate, QuantileGate, SingletGate
from cytogate.gating.gates import EllipseGate, Gate, PolygonGate, RectangleGate
from cytogate.gating.gating_set import GatingSet
from cytogate.gating.registry import GATE_TYPES, build_gate
from cytogate.gating.strategy import GatingStrategy, load_strategy, parse_strategy
from cytogate.gating.tree import (
    ROOT_PATH,
    PopulationNode,
    PopulationPath,
    SampleTree,
    format_path,
    parse_path,
)

__all__ = [
    "GATE_TYPES",
    "ROOT_PATH",
    "DensityGate",
    "EllipseGate",
    "FittedGate",
    "Gate",
    "GatingSet",
    "GatingStrategy",
    "PolygonGate",
    "PopulationNode",
    "PopulationPath",
    "QuantileGate",
    "RectangleGate",
    "SampleTree",
    "SingletGate",
    "build_gate",
    "format_path",
    "load_strategy",
    "parse_path",
    "parse_strategy",
]
