"""
Gate definitions.

A gate is an immutable, named predicate over one or two channels of an
EventTable. ``apply(events)`` returns a boolean membership mask with one
entry per event.

Deterministic gates (rectangle, polygon, ellipse) have fixed parameters and
``apply`` is a pure function of the events. Fitted gates (see
``cytogate.gating.fitted``) derive their shape from each sample's parent
events; fitting returns one of the deterministic gates defined here.

Gate equality is structural: two gates are equal when they have the same
type and the same parameters.
"""

import logging

from abc import ABC, abstractmethod
from typing import Any, ClassVar

import numpy as np

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cytogate.constants import PATH_SEPARATOR, ROOT_NAME
from cytogate.events.table import EventTable
from cytogate.exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)


class Gate(BaseModel, ABC):
    """
    Abstract base class for all gates.

    Subclasses declare a ``kind`` (registry key) and implement
    ``required_channels`` and ``apply``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[str]
    fitted: ClassVar[bool] = False

    name: str = Field(min_length=1, description="Population name produced by this gate")

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        if PATH_SEPARATOR in v:
            raise ValueError(f"Gate name may not contain '{PATH_SEPARATOR}': {v!r}")
        if v == ROOT_NAME:
            raise ValueError(f"'{ROOT_NAME}' is reserved for the root population")
        return v

    @abstractmethod
    def required_channels(self) -> tuple[str, ...]:
        """Channels the gate reads."""
        pass

    @abstractmethod
    def apply(self, events: EventTable) -> np.ndarray:
        """
        Compute the membership mask for a set of events.

        Args:
            events: Parent population events

        Returns:
            Boolean array of length ``events.n_events``
        """
        pass

    def _check_channels(self, events: EventTable) -> None:
        missing = [ch for ch in self.required_channels() if ch not in events]
        if missing:
            raise SchemaMismatchError(
                f"Gate '{self.name}' needs channel(s) {missing}; "
                f"available: {events.channel_names}"
            )

    def describe(self) -> dict[str, Any]:
        """JSON-safe description including the gate kind."""
        return {"kind": self.kind, **self.model_dump(mode="json")}


class RectangleGate(Gate):
    """
    Axis-aligned range gate over one or two channels.

    Either bound of a channel may be None (open). Bounds are inclusive. A
    single channel with one open bound is a threshold gate.

    Example:
        >>> gate = RectangleGate(name="cells", bounds={"FSC.A": (200, 800)})
    """

    kind: ClassVar[str] = "rectangle"

    bounds: dict[str, tuple[float | None, float | None]] = Field(
        description="channel -> (min, max), inclusive, None for open"
    )

    @field_validator("bounds")
    @classmethod
    def _valid_bounds(
        cls, v: dict[str, tuple[float | None, float | None]]
    ) -> dict[str, tuple[float | None, float | None]]:
        if not 1 <= len(v) <= 2:
            raise ValueError(f"Rectangle gates take 1 or 2 channels, got {len(v)}")
        for channel, (lo, hi) in v.items():
            if lo is None and hi is None:
                raise ValueError(f"Channel '{channel}' has no bounds")
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"Channel '{channel}' has min {lo} > max {hi}")
        return v

    def required_channels(self) -> tuple[str, ...]:
        return tuple(self.bounds)

    def apply(self, events: EventTable) -> np.ndarray:
        self._check_channels(events)
        mask = np.ones(events.n_events, dtype=bool)
        for channel, (lo, hi) in self.bounds.items():
            values = events.column(channel)
            if lo is not None:
                mask &= values >= lo
            if hi is not None:
                mask &= values <= hi
        return mask


class PolygonGate(Gate):
    """
    Two-dimensional polygon gate (even-odd rule).

    Events exactly on an edge may fall on either side.
    """

    kind: ClassVar[str] = "polygon"

    channels: tuple[str, str] = Field(description="(x, y) channel names")
    vertices: tuple[tuple[float, float], ...] = Field(description="Polygon vertices")

    @field_validator("vertices")
    @classmethod
    def _valid_vertices(
        cls, v: tuple[tuple[float, float], ...]
    ) -> tuple[tuple[float, float], ...]:
        if len(v) < 3:
            raise ValueError(f"Polygon gates need at least 3 vertices, got {len(v)}")
        return v

    @model_validator(mode="after")
    def _distinct_channels(self) -> "PolygonGate":
        if self.channels[0] == self.channels[1]:
            raise ValueError("Polygon gate channels must differ")
        return self

    def required_channels(self) -> tuple[str, ...]:
        return self.channels

    def apply(self, events: EventTable) -> np.ndarray:
        self._check_channels(events)
        x = events.column(self.channels[0])
        y = events.column(self.channels[1])
        return points_in_polygon(x, y, self.vertices)


class EllipseGate(Gate):
    """
    Two-dimensional ellipse gate defined by a Mahalanobis distance.

    Membership: (p - mean)^T covariance^-1 (p - mean) <= distance^2.
    """

    kind: ClassVar[str] = "ellipse"

    channels: tuple[str, str] = Field(description="(x, y) channel names")
    mean: tuple[float, float] = Field(description="Ellipse center")
    covariance: tuple[tuple[float, float], tuple[float, float]] = Field(
        description="2 x 2 covariance matrix"
    )
    distance: float = Field(gt=0, description="Mahalanobis radius")

    @model_validator(mode="after")
    def _positive_definite(self) -> "EllipseGate":
        if self.channels[0] == self.channels[1]:
            raise ValueError("Ellipse gate channels must differ")
        cov = np.asarray(self.covariance, dtype=np.float64)
        if not np.allclose(cov, cov.T):
            raise ValueError("Covariance matrix must be symmetric")
        try:
            np.linalg.cholesky(cov)
        except np.linalg.LinAlgError:
            raise ValueError("Covariance matrix must be positive definite") from None
        return self

    def required_channels(self) -> tuple[str, ...]:
        return self.channels

    def apply(self, events: EventTable) -> np.ndarray:
        self._check_channels(events)
        points = events.columns(list(self.channels))
        diff = points - np.asarray(self.mean)
        precision = np.linalg.inv(np.asarray(self.covariance, dtype=np.float64))
        squared = np.einsum("ij,jk,ik->i", diff, precision, diff)
        return squared <= self.distance**2


def points_in_polygon(
    x: np.ndarray, y: np.ndarray, vertices: tuple[tuple[float, float], ...]
) -> np.ndarray:
    """
    Vectorized even-odd (ray casting) point-in-polygon test.

    Args:
        x, y: Point coordinates
        vertices: Polygon vertices, closed implicitly

    Returns:
        Boolean mask, True for points inside the polygon
    """
    inside = np.zeros(len(x), dtype=bool)
    n = len(vertices)

    with np.errstate(divide="ignore", invalid="ignore"):
        j = n - 1
        for i in range(n):
            xi, yi = vertices[i]
            xj, yj = vertices[j]
            straddles = (yi > y) != (yj > y)
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            inside ^= straddles & (x < x_cross)
            j = i

    return inside
