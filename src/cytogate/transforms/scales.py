"""
Display/analysis scale transforms.

Each transform maps data values to a scale and back. Transforms are pure:
``transform_table`` returns a new EventTable and never modifies its input.

Logicle follows Parks, Roederer & Moore (2006) and the Gating-ML 2.0
parameterization (T, W, M, A). The inverse (scale -> data) is the closed-form
biexponential; the forward direction is solved numerically with Newton
iterations started from an interpolated guess.
"""

import logging
import math

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import numpy as np

from scipy.optimize import brentq

from cytogate.constants import DEFAULT_ASINH_COFACTOR
from cytogate.constants import LogicleConstants as LC
from cytogate.events.table import EventTable

logger = logging.getLogger(__name__)


class ScaleTransform(ABC):
    """Invertible, element-wise value transform."""

    name: str

    @abstractmethod
    def apply(self, values: np.ndarray) -> np.ndarray:
        """Map data values to the transformed scale."""
        pass

    @abstractmethod
    def inverse(self, values: np.ndarray) -> np.ndarray:
        """Map transformed values back to data values."""
        pass

    def params(self) -> dict[str, float]:
        return {}

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in self.params().items())
        return f"{self.__class__.__name__}({params})"


class LinearTransform(ScaleTransform):
    """Gating-ML flin: maps [-a, t] onto [0, 1]."""

    name = "linear"

    def __init__(self, t: float = LC.T, a: float = 0.0):
        if t <= 0 or a < 0 or a > t:
            raise ValueError(f"Invalid linear parameters t={t}, a={a}")
        self.t = float(t)
        self.a = float(a)

    def apply(self, values: np.ndarray) -> np.ndarray:
        return (np.asarray(values, dtype=np.float64) + self.a) / (self.t + self.a)

    def inverse(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(values, dtype=np.float64) * (self.t + self.a) - self.a

    def params(self) -> dict[str, float]:
        return {"t": self.t, "a": self.a}


class AsinhTransform(ScaleTransform):
    """Inverse hyperbolic sine with a cofactor, as used for mass cytometry."""

    name = "asinh"

    def __init__(self, cofactor: float = DEFAULT_ASINH_COFACTOR):
        if cofactor <= 0:
            raise ValueError(f"Cofactor must be positive, got {cofactor}")
        self.cofactor = float(cofactor)

    def apply(self, values: np.ndarray) -> np.ndarray:
        return np.arcsinh(np.asarray(values, dtype=np.float64) / self.cofactor)

    def inverse(self, values: np.ndarray) -> np.ndarray:
        return np.sinh(np.asarray(values, dtype=np.float64)) * self.cofactor

    def params(self) -> dict[str, float]:
        return {"cofactor": self.cofactor}


class LogicleTransform(ScaleTransform):
    """
    Logicle transform.

    Args:
        t: Top of scale data value
        w: Width of the linearization region, in decades
        m: Breadth of the display, in decades
        a: Additional negative decades

    Example:
        >>> xform = LogicleTransform()
        >>> scaled = xform.apply(np.array([-100.0, 0.0, 1000.0, 262144.0]))
        >>> np.allclose(xform.inverse(scaled), [-100.0, 0.0, 1000.0, 262144.0])
        True
    """

    name = "logicle"

    def __init__(
        self,
        t: float = LC.T,
        w: float = LC.W,
        m: float = LC.M,
        a: float = LC.A,
    ):
        if t <= 0:
            raise ValueError(f"Logicle T must be positive, got {t}")
        if m <= 0:
            raise ValueError(f"Logicle M must be positive, got {m}")
        if w < 0 or 2 * w > m:
            raise ValueError(f"Logicle W must satisfy 0 <= W <= M/2, got {w}")
        if -a > w or a + w > m - w:
            raise ValueError(f"Logicle A out of range for W={w}, M={m}: {a}")

        self.t, self.w, self.m, self.a = float(t), float(w), float(m), float(a)

        w_scaled = self.w / (self.m + self.a)
        self._x2 = self.a / (self.m + self.a)
        self._x1 = self._x2 + w_scaled
        x0 = self._x2 + 2 * w_scaled
        self._b = (self.m + self.a) * math.log(10.0)
        self._d = self._solve_d(self._b, w_scaled)

        c_a = math.exp(x0 * (self._b + self._d))
        mf_a = math.exp(self._b * self._x1) - c_a / math.exp(self._d * self._x1)
        self._a_coef = self.t / (
            math.exp(self._b) - mf_a - c_a / math.exp(self._d)
        )
        self._c_coef = c_a * self._a_coef
        self._f_coef = -mf_a * self._a_coef

        # Interpolation grid for the Newton starting point (upper branch)
        self._grid_y = np.linspace(self._x1, 1.0, LC.GRID_SIZE)
        self._grid_x = self._biexponential(self._grid_y)

    @staticmethod
    def _solve_d(b: float, w: float) -> float:
        """Solve 2(ln d - ln b) + w(b + d) = 0 for d in (0, b]."""
        if w == 0:
            return b

        def fn(d: float) -> float:
            return 2 * (math.log(d) - math.log(b)) + w * (b + d)

        return float(brentq(fn, 1e-12 * b, b))

    def _biexponential(self, y: np.ndarray) -> np.ndarray:
        return (
            self._a_coef * np.exp(self._b * y)
            - self._c_coef * np.exp(-self._d * y)
            + self._f_coef
        )

    def inverse(self, values: np.ndarray) -> np.ndarray:
        y = np.asarray(values, dtype=np.float64)
        negative = y < self._x1
        reflected = np.where(negative, 2 * self._x1 - y, y)
        x = self._biexponential(reflected)
        return np.where(negative, -x, x)

    def apply(self, values: np.ndarray) -> np.ndarray:
        x = np.asarray(values, dtype=np.float64)
        magnitude = np.abs(x)

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            # Starting point: interpolate on the grid, log-extrapolate above T
            y = np.interp(magnitude, self._grid_x, self._grid_y)
            above = magnitude > self._grid_x[-1]
            if np.any(above):
                y[above] = np.log(
                    (magnitude[above] - self._f_coef) / self._a_coef
                ) / self._b

            for _ in range(LC.NEWTON_ITERATIONS):
                fx = self._biexponential(y) - magnitude
                dfx = self._a_coef * self._b * np.exp(
                    self._b * y
                ) + self._c_coef * self._d * np.exp(-self._d * y)
                step = fx / dfx
                y = y - step
                if np.all(np.abs(step) < 1e-14):
                    break

        return np.where(x < 0, 2 * self._x1 - y, y)

    def params(self) -> dict[str, float]:
        return {"t": self.t, "w": self.w, "m": self.m, "a": self.a}


AVAILABLE_TRANSFORMS: dict[str, type[ScaleTransform]] = {
    "linear": LinearTransform,
    "asinh": AsinhTransform,
    "logicle": LogicleTransform,
}


def get_transform(name: str, **kwargs: Any) -> ScaleTransform:
    """
    Factory function to get a transform by name.

    Raises:
        ValueError: If the name is not recognized
    """
    if name not in AVAILABLE_TRANSFORMS:
        raise ValueError(
            f"Unknown transform: {name}. Available: {list(AVAILABLE_TRANSFORMS.keys())}"
        )
    return AVAILABLE_TRANSFORMS[name](**kwargs)


def transform_table(
    table: EventTable,
    transform: ScaleTransform,
    channels: Sequence[str],
) -> EventTable:
    """Return a new table with the given channels transformed."""
    return table.with_values(
        {ch: transform.apply(table.column(ch)) for ch in channels}
    )


def inverse_transform_table(
    table: EventTable,
    transform: ScaleTransform,
    channels: Sequence[str],
) -> EventTable:
    """Return a new table with the given channels mapped back to data values."""
    return table.with_values(
        {ch: transform.inverse(table.column(ch)) for ch in channels}
    )
