"""Gate type registry used by strategy templates and the CLI."""

from typing import Any

from pydantic import ValidationError

from cytogate.gating.fitted import DensityGate, QuantileGate, SingletGate
from cytogate.gating.gates import EllipseGate, Gate, PolygonGate, RectangleGate

GATE_TYPES: dict[str, type[Gate]] = {
    cls.kind: cls
    for cls in (
        RectangleGate,
        PolygonGate,
        EllipseGate,
        QuantileGate,
        DensityGate,
        SingletGate,
    )
}


def build_gate(kind: str, **params: Any) -> Gate:
    """
    Factory function to build a gate from its kind and parameters.

    Args:
        kind: Gate type key (see GATE_TYPES)
        **params: Gate fields, including ``name``

    Returns:
        Validated gate instance

    Raises:
        ValueError: If the kind is unknown or the parameters are invalid
    """
    if kind not in GATE_TYPES:
        raise ValueError(f"Unknown gate type: {kind}. Available: {list(GATE_TYPES.keys())}")

    try:
        return GATE_TYPES[kind].model_validate(params)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or kind}: {err['msg']}"
            for err in e.errors()
        )
        raise ValueError(f"Invalid {kind} gate: {errors}") from e
