"""Tests for scale transforms."""

import numpy as np
import pytest

from cytogate.constants import LogicleConstants
from cytogate.events.table import EventTable
from cytogate.transforms.scales import (
    AVAILABLE_TRANSFORMS,
    AsinhTransform,
    LinearTransform,
    LogicleTransform,
    get_transform,
    inverse_transform_table,
    transform_table,
)


class TestLogicle:
    VALUES = np.array([-1000.0, -100.0, -1.0, 0.0, 1.0, 50.0, 1000.0, 1e5, 262144.0])

    def test_round_trip(self):
        xform = LogicleTransform()
        recovered = xform.inverse(xform.apply(self.VALUES))
        np.testing.assert_allclose(recovered, self.VALUES, rtol=1e-6, atol=1e-6)

    def test_anchor_points(self):
        xform = LogicleTransform()
        zero, top = xform.apply(np.array([0.0, LogicleConstants.T]))
        assert zero == pytest.approx(LogicleConstants.W / LogicleConstants.M)
        assert top == pytest.approx(1.0)

    def test_monotonic(self):
        xform = LogicleTransform()
        scaled = xform.apply(np.linspace(-500.0, 262144.0, 2000))
        assert np.all(np.diff(scaled) > 0)

    def test_symmetric_around_zero(self):
        xform = LogicleTransform()
        pos, neg, zero = xform.apply(np.array([500.0, -500.0, 0.0]))
        assert pos - zero == pytest.approx(zero - neg)

    def test_above_top_of_scale(self):
        xform = LogicleTransform()
        value = np.array([1e6])
        scaled = xform.apply(value)
        assert scaled[0] > 1.0
        np.testing.assert_allclose(xform.inverse(scaled), value, rtol=1e-6)

    def test_custom_parameters_round_trip(self):
        xform = LogicleTransform(t=10000.0, w=1.0, m=4.0, a=0.5)
        values = np.array([-50.0, 0.0, 10.0, 9999.0])
        np.testing.assert_allclose(
            xform.inverse(xform.apply(values)), values, rtol=1e-6, atol=1e-6
        )

    def test_zero_width(self):
        xform = LogicleTransform(w=0.0)
        values = np.array([1.0, 100.0, 10000.0])
        np.testing.assert_allclose(xform.inverse(xform.apply(values)), values, rtol=1e-6)

    @pytest.mark.parametrize(
        "params",
        [{"t": 0}, {"m": 0}, {"w": -1}, {"w": 3.0, "m": 4.5}, {"a": -1.0}],
    )
    def test_invalid_parameters(self, params):
        with pytest.raises(ValueError):
            LogicleTransform(**params)


class TestAsinh:
    def test_values(self):
        xform = AsinhTransform(cofactor=5.0)
        np.testing.assert_allclose(xform.apply(np.array([0.0, 5.0])), [0.0, np.arcsinh(1.0)])

    def test_round_trip(self):
        xform = AsinhTransform()
        values = np.array([-300.0, 0.0, 12.5, 1e5])
        np.testing.assert_allclose(xform.inverse(xform.apply(values)), values, rtol=1e-9)

    def test_invalid_cofactor(self):
        with pytest.raises(ValueError):
            AsinhTransform(cofactor=0)


class TestLinear:
    def test_maps_range_to_unit_interval(self):
        xform = LinearTransform(t=1000.0, a=100.0)
        np.testing.assert_allclose(xform.apply(np.array([-100.0, 1000.0])), [0.0, 1.0])

    def test_round_trip(self):
        xform = LinearTransform(t=1000.0)
        values = np.array([-5.0, 0.0, 750.0])
        np.testing.assert_allclose(xform.inverse(xform.apply(values)), values)

    def test_invalid(self):
        with pytest.raises(ValueError):
            LinearTransform(t=10.0, a=20.0)


class TestFactory:
    def test_get_transform(self):
        xform = get_transform("asinh", cofactor=5.0)
        assert isinstance(xform, AsinhTransform)
        assert xform.params() == {"cofactor": 5.0}
        assert set(AVAILABLE_TRANSFORMS) == {"linear", "asinh", "logicle"}

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown transform"):
            get_transform("log10")

    def test_repr(self):
        assert repr(LinearTransform(t=10.0)) == "LinearTransform(t=10.0, a=0.0)"


class TestTransformTable:
    def test_only_named_channels_change(self):
        table = EventTable.from_columns({"FSC.A": [100.0, 200.0], "CD3": [10.0, 1000.0]})
        xform = AsinhTransform(cofactor=10.0)
        scaled = transform_table(table, xform, ["CD3"])

        np.testing.assert_array_equal(scaled.column("FSC.A"), table.column("FSC.A"))
        np.testing.assert_allclose(scaled.column("CD3"), np.arcsinh([1.0, 100.0]))
        np.testing.assert_array_equal(table.column("CD3"), [10.0, 1000.0])

    def test_inverse_table(self):
        table = EventTable.from_columns({"CD3": [10.0, 1000.0]})
        xform = LogicleTransform()
        restored = inverse_transform_table(transform_table(table, xform, ["CD3"]), xform, ["CD3"])
        np.testing.assert_allclose(restored.column("CD3"), [10.0, 1000.0], rtol=1e-6)
