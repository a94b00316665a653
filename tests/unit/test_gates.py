"""Tests for deterministic gates and the gate registry."""

import numpy as np
import pytest

from pydantic import ValidationError

from cytogate.events.table import EventTable
from cytogate.exceptions import SchemaMismatchError
from cytogate.gating.gates import (
    EllipseGate,
    PolygonGate,
    RectangleGate,
    points_in_polygon,
)
from cytogate.gating.registry import GATE_TYPES, build_gate
from tests.helpers.synthetic_data import KNOWN_FSC_INSIDE


class TestRectangleGate:
    def test_known_count(self, scatter_events):
        gate = RectangleGate(name="cells", bounds={"FSC.A": (200, 800)})
        mask = gate.apply(scatter_events)
        assert mask.dtype == bool
        assert mask.shape == (scatter_events.n_events,)
        assert mask.sum() == KNOWN_FSC_INSIDE

    def test_bounds_are_inclusive(self):
        events = EventTable.from_columns({"x": [199.9, 200.0, 500.0, 800.0, 800.1]})
        gate = RectangleGate(name="mid", bounds={"x": (200, 800)})
        np.testing.assert_array_equal(gate.apply(events), [False, True, True, True, False])

    def test_open_bound_is_threshold(self):
        events = EventTable.from_columns({"x": [1.0, 5.0, 10.0]})
        gate = RectangleGate(name="bright", bounds={"x": (5, None)})
        np.testing.assert_array_equal(gate.apply(events), [False, True, True])

    def test_two_channels(self):
        events = EventTable.from_columns({"x": [1, 5, 5], "y": [5, 5, 50]})
        gate = RectangleGate(name="box", bounds={"x": (2, 10), "y": (0, 10)})
        np.testing.assert_array_equal(gate.apply(events), [False, True, False])

    def test_nan_values_are_excluded(self):
        events = EventTable.from_columns({"x": [np.nan, 3.0]})
        gate = RectangleGate(name="any", bounds={"x": (None, 10)})
        np.testing.assert_array_equal(gate.apply(events), [False, True])

    def test_empty_events(self):
        events = EventTable(np.empty((0, 1)), ["x"])
        assert RectangleGate(name="g", bounds={"x": (0, 1)}).apply(events).shape == (0,)

    def test_missing_channel(self, scatter_events):
        gate = RectangleGate(name="cd3", bounds={"CD3": (0, 1)})
        with pytest.raises(SchemaMismatchError, match="CD3"):
            gate.apply(scatter_events)

    @pytest.mark.parametrize(
        "bounds",
        [
            {},
            {"a": (0, 1), "b": (0, 1), "c": (0, 1)},
            {"a": (None, None)},
            {"a": (5, 1)},
        ],
    )
    def test_invalid_bounds(self, bounds):
        with pytest.raises(ValidationError):
            RectangleGate(name="bad", bounds=bounds)

    def test_deterministic(self, scatter_events):
        gate = RectangleGate(name="cells", bounds={"FSC.A": (200, 800)})
        np.testing.assert_array_equal(gate.apply(scatter_events), gate.apply(scatter_events))


class TestGateNames:
    @pytest.mark.parametrize("name", ["", "a/b", "root"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            RectangleGate(name=name, bounds={"x": (0, 1)})

    def test_gates_are_frozen(self):
        gate = RectangleGate(name="g", bounds={"x": (0, 1)})
        with pytest.raises(ValidationError):
            gate.name = "other"

    def test_structural_equality(self):
        a = RectangleGate(name="g", bounds={"x": (0, 1)})
        b = RectangleGate(name="g", bounds={"x": (0, 1)})
        assert a == b
        assert a != RectangleGate(name="g", bounds={"x": (0, 2)})

    def test_describe(self):
        described = RectangleGate(name="g", bounds={"x": (0, None)}).describe()
        assert described["kind"] == "rectangle"
        assert described["name"] == "g"
        assert described["bounds"] == {"x": [0.0, None]}


class TestPolygonGate:
    SQUARE = ((0, 0), (10, 0), (10, 10), (0, 10))

    def test_square(self):
        events = EventTable.from_columns({"x": [5, 15, 1, -1], "y": [5, 5, 9, 5]})
        gate = PolygonGate(name="sq", channels=("x", "y"), vertices=self.SQUARE)
        np.testing.assert_array_equal(gate.apply(events), [True, False, True, False])

    def test_concave_polygon(self):
        # "U" shape: the notch between x=4..6 above y=4 is outside
        vertices = ((0, 0), (10, 0), (10, 10), (6, 10), (6, 4), (4, 4), (4, 10), (0, 10))
        x = np.array([2.0, 5.0, 5.0, 8.0])
        y = np.array([8.0, 8.0, 2.0, 8.0])
        np.testing.assert_array_equal(
            points_in_polygon(x, y, vertices), [True, False, True, True]
        )

    def test_too_few_vertices(self):
        with pytest.raises(ValidationError):
            PolygonGate(name="p", channels=("x", "y"), vertices=((0, 0), (1, 1)))

    def test_same_channel_twice(self):
        with pytest.raises(ValidationError):
            PolygonGate(name="p", channels=("x", "x"), vertices=self.SQUARE)


class TestEllipseGate:
    def test_circle(self):
        gate = EllipseGate(
            name="e",
            channels=("x", "y"),
            mean=(0.0, 0.0),
            covariance=((1.0, 0.0), (0.0, 1.0)),
            distance=2.0,
        )
        events = EventTable.from_columns({"x": [0.0, 2.0, 1.5, 3.0], "y": [0.0, 0.0, 1.5, 0.0]})
        np.testing.assert_array_equal(gate.apply(events), [True, True, False, False])

    def test_scaled_axes(self):
        gate = EllipseGate(
            name="e",
            channels=("x", "y"),
            mean=(10.0, 10.0),
            covariance=((100.0, 0.0), (0.0, 1.0)),
            distance=1.0,
        )
        events = EventTable.from_columns({"x": [19.0, 10.0], "y": [10.0, 11.5]})
        np.testing.assert_array_equal(gate.apply(events), [True, False])

    @pytest.mark.parametrize(
        "covariance",
        [((1.0, 0.5), (0.0, 1.0)), ((1.0, 2.0), (2.0, 1.0)), ((0.0, 0.0), (0.0, 0.0))],
    )
    def test_invalid_covariance(self, covariance):
        with pytest.raises(ValidationError):
            EllipseGate(
                name="e", channels=("x", "y"), mean=(0, 0), covariance=covariance, distance=1
            )

    def test_distance_must_be_positive(self):
        with pytest.raises(ValidationError):
            EllipseGate(
                name="e",
                channels=("x", "y"),
                mean=(0, 0),
                covariance=((1, 0), (0, 1)),
                distance=0,
            )


class TestGateRegistry:
    def test_all_kinds_registered(self):
        assert set(GATE_TYPES) == {
            "rectangle",
            "polygon",
            "ellipse",
            "quantile",
            "density",
            "singlet",
        }

    def test_build_gate(self):
        gate = build_gate("rectangle", name="cells", bounds={"FSC.A": [200, 800]})
        assert gate == RectangleGate(name="cells", bounds={"FSC.A": (200, 800)})

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown gate type"):
            build_gate("hexagon", name="g")

    def test_invalid_parameters(self):
        with pytest.raises(ValueError, match="Invalid polygon gate"):
            build_gate("polygon", name="p", channels=["x", "y"], vertices=[[0, 0]])

    def test_unknown_parameter_rejected(self):
        with pytest.raises(ValueError, match="Invalid rectangle gate"):
            build_gate("rectangle", name="g", bounds={"x": [0, 1]}, colour="red")
