"""
Data-dependent (fitted) gates.

A fitted gate estimates its boundary from the parent population of each
sample. ``fit(events)`` returns a deterministic gate carrying the realized
boundary for that sample; ``apply(events)`` is ``fit(events).apply(events)``.

Fitting is deterministic for a given input (fixed random state). Fitting
failures (too few events, degenerate data, non-convergence) raise
GateFitError; the population tree records them per sample instead of
aborting the analysis.
"""

import logging

from abc import ABC, abstractmethod
from typing import ClassVar, Literal

import numpy as np

from pydantic import Field, model_validator
from scipy import stats
from sklearn.mixture import GaussianMixture

from cytogate.constants import DensityGateConstants as DGC
from cytogate.constants import QuantileGateConstants as QGC
from cytogate.constants import SingletGateConstants as SGC
from cytogate.events.table import EventTable
from cytogate.exceptions import GateFitError
from cytogate.gating.gates import EllipseGate, Gate, PolygonGate, RectangleGate

logger = logging.getLogger(__name__)


class FittedGate(Gate, ABC):
    """
    Base class for gates whose shape is estimated per sample.

    Subclasses implement ``fit``, returning a deterministic gate with the
    same name.
    """

    fitted: ClassVar[bool] = True

    @abstractmethod
    def fit(self, events: EventTable) -> Gate:
        """
        Estimate the gate boundary from parent events.

        Args:
            events: Parent population events

        Returns:
            Deterministic gate with the realized boundary

        Raises:
            GateFitError: If the boundary cannot be estimated
        """
        pass

    def apply(self, events: EventTable) -> np.ndarray:
        return self.fit(events).apply(events)

    def _finite_columns(self, events: EventTable, channels: list[str]) -> np.ndarray:
        """Columns of the given channels with non-finite rows dropped."""
        self._check_channels(events)
        data = events.columns(channels)
        return data[np.all(np.isfinite(data), axis=1)]

    def _require_events(self, n: int, minimum: int) -> None:
        if n < minimum:
            raise GateFitError(
                f"Gate '{self.name}' needs at least {minimum} event(s) to fit, got {n}",
                gate_name=self.name,
            )


class QuantileGate(FittedGate):
    """
    One-dimensional threshold placed at a quantile of the parent events.

    Example:
        >>> gate = QuantileGate(name="bright", channel="CD3", quantile=0.9)
        >>> gate.fit(events)  # RectangleGate with bounds {"CD3": (q90, None)}
    """

    kind: ClassVar[str] = "quantile"

    channel: str = Field(description="Channel to threshold")
    quantile: float = Field(default=QGC.QUANTILE, ge=0.0, le=1.0)
    side: Literal["above", "below"] = Field(
        default="above", description="Keep events above or below the threshold"
    )
    min_events: int = Field(default=QGC.MIN_EVENTS, ge=1)

    def required_channels(self) -> tuple[str, ...]:
        return (self.channel,)

    def fit(self, events: EventTable) -> RectangleGate:
        values = self._finite_columns(events, [self.channel])[:, 0]
        self._require_events(len(values), self.min_events)

        threshold = float(np.quantile(values, self.quantile))
        bounds = (threshold, None) if self.side == "above" else (None, threshold)
        return RectangleGate(name=self.name, bounds={self.channel: bounds})


class DensityGate(FittedGate):
    """
    Two-dimensional Gaussian mixture gate.

    A mixture of ``n_components`` full-covariance Gaussians is fitted to the
    parent events. The selected component is the one whose mean is nearest
    ``target``, or the heaviest component when no target is given. The
    realized gate is that component's ellipse at the ``quantile`` probability
    contour (chi-square with 2 degrees of freedom).
    """

    kind: ClassVar[str] = "density"

    channels: tuple[str, str] = Field(description="(x, y) channel names")
    n_components: int = Field(default=DGC.N_COMPONENTS, ge=1)
    target: tuple[float, float] | None = Field(
        default=None, description="Approximate location of the population"
    )
    quantile: float = Field(default=DGC.QUANTILE, gt=0.0, lt=1.0)
    min_events: int = Field(default=DGC.MIN_EVENTS, ge=1)
    max_iter: int = Field(default=DGC.MAX_ITER, ge=1)
    random_state: int = Field(default=DGC.RANDOM_STATE)

    @model_validator(mode="after")
    def _distinct_channels(self) -> "DensityGate":
        if self.channels[0] == self.channels[1]:
            raise ValueError("Density gate channels must differ")
        return self

    def required_channels(self) -> tuple[str, ...]:
        return self.channels

    def fit(self, events: EventTable) -> EllipseGate:
        data = self._finite_columns(events, list(self.channels))
        self._require_events(len(data), max(self.min_events, self.n_components))

        model = GaussianMixture(
            n_components=self.n_components,
            covariance_type=DGC.COVARIANCE_TYPE,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        try:
            model.fit(data)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise GateFitError(
                f"Gate '{self.name}' mixture fit failed: {e}", gate_name=self.name
            ) from e

        if not model.converged_:
            raise GateFitError(
                f"Gate '{self.name}' mixture did not converge in {self.max_iter} "
                f"iteration(s)",
                gate_name=self.name,
            )

        if self.target is not None:
            offsets = model.means_ - np.asarray(self.target)
            component = int(np.argmin(np.sum(offsets**2, axis=1)))
        else:
            component = int(np.argmax(model.weights_))

        mean = model.means_[component]
        covariance = model.covariances_[component]
        distance = float(np.sqrt(stats.chi2.ppf(self.quantile, df=2)))
        logger.debug(
            f"Gate '{self.name}': component {component} of {self.n_components}, "
            f"weight {model.weights_[component]:.3f}"
        )

        try:
            return EllipseGate(
                name=self.name,
                channels=self.channels,
                mean=(float(mean[0]), float(mean[1])),
                covariance=(
                    (float(covariance[0, 0]), float(covariance[0, 1])),
                    (float(covariance[1, 0]), float(covariance[1, 1])),
                ),
                distance=distance,
            )
        except ValueError as e:
            raise GateFitError(
                f"Gate '{self.name}' produced a degenerate ellipse: {e}",
                gate_name=self.name,
            ) from e


class SingletGate(FittedGate):
    """
    Doublet discrimination on a pulse area vs height plot.

    Height is regressed on area (least squares with one round of outlier
    rejection). Singlets are the events within ``tolerance`` robust standard
    deviations (scaled MAD) of the fitted line. The realized gate is the band
    polygon over the observed area range.
    """

    kind: ClassVar[str] = "singlet"

    area: str = Field(default="FSC.A", description="Pulse area channel")
    height: str = Field(default="FSC.H", description="Pulse height channel")
    tolerance: float = Field(default=SGC.TOLERANCE, gt=0.0)
    min_events: int = Field(default=SGC.MIN_EVENTS, ge=3)

    @model_validator(mode="after")
    def _distinct_channels(self) -> "SingletGate":
        if self.area == self.height:
            raise ValueError("Singlet gate area and height channels must differ")
        return self

    def required_channels(self) -> tuple[str, ...]:
        return (self.area, self.height)

    def fit(self, events: EventTable) -> PolygonGate:
        data = self._finite_columns(events, [self.area, self.height])
        self._require_events(len(data), self.min_events)
        area, height = data[:, 0], data[:, 1]

        if np.ptp(area) == 0:
            raise GateFitError(
                f"Gate '{self.name}': '{self.area}' has no spread", gate_name=self.name
            )

        fit = stats.linregress(area, height)
        residuals = height - (fit.intercept + fit.slope * area)
        scale = _robust_scale(residuals)

        # One refit without gross outliers (the doublet cloud)
        keep = np.abs(residuals) <= self.tolerance * scale
        if keep.sum() >= self.min_events and np.ptp(area[keep]) > 0:
            fit = stats.linregress(area[keep], height[keep])
            residuals = height - (fit.intercept + fit.slope * area)
            scale = _robust_scale(residuals[keep])

        if scale == 0:
            scale = np.finfo(np.float64).eps * max(1.0, float(np.abs(height).max()))

        half_width = self.tolerance * scale
        margin = 0.01 * float(np.ptp(area))
        lo = float(area.min()) - margin
        hi = float(area.max()) + margin
        slope, intercept = float(fit.slope), float(fit.intercept)

        logger.debug(
            f"Gate '{self.name}': height = {slope:.4g} * area + {intercept:.4g}, "
            f"band +/- {half_width:.4g}"
        )
        return PolygonGate(
            name=self.name,
            channels=(self.area, self.height),
            vertices=(
                (lo, slope * lo + intercept - half_width),
                (hi, slope * hi + intercept - half_width),
                (hi, slope * hi + intercept + half_width),
                (lo, slope * lo + intercept + half_width),
            ),
        )


def _robust_scale(residuals: np.ndarray) -> float:
    scale = float(stats.median_abs_deviation(residuals, scale=1.0)) * SGC.MAD_TO_SIGMA
    if scale == 0:
        scale = float(np.std(residuals))
    return scale
