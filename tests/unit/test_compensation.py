"""Tests for spillover parsing and compensation."""

import numpy as np
import pytest

from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError
from cytogate.transforms.compensation import (
    SpilloverMatrix,
    compensate,
    load_spillover_csv,
    parse_spillover,
    spillover_from_keywords,
)

SPILL_TEXT = "2,FL1.A,FL2.A,1,0.1,0.05,1"


class TestParseSpillover:
    def test_parse(self):
        spill = parse_spillover(SPILL_TEXT)
        assert spill.channels == ("FL1.A", "FL2.A")
        np.testing.assert_array_equal(spill.as_array(), [[1.0, 0.1], [0.05, 1.0]])

    def test_whitespace_tolerated(self):
        spill = parse_spillover("2, FL1.A , FL2.A, 1, 0, 0, 1")
        assert spill.channels == ("FL1.A", "FL2.A")

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "x,FL1.A,1",
            "2,FL1.A,FL2.A,1,0.1,0.05",
            "0",
            "2,FL1.A,FL2.A,1,abc,0.05,1",
            "2,FL1.A,FL1.A,1,0,0,1",
        ],
    )
    def test_malformed(self, value):
        with pytest.raises(FormatError):
            parse_spillover(value)

    def test_from_keywords(self):
        assert spillover_from_keywords({"$SPILLOVER": SPILL_TEXT}).channels == ("FL1.A", "FL2.A")
        assert spillover_from_keywords({"SPILL": SPILL_TEXT}) is not None
        assert spillover_from_keywords({"$FIL": "a.fcs"}) is None


class TestSpilloverMatrix:
    def test_shape_validated(self):
        with pytest.raises(ValueError):
            SpilloverMatrix(channels=("a", "b"), matrix=((1.0, 0.0),))

    def test_singular_inverse(self):
        spill = SpilloverMatrix.from_array(["a", "b"], np.ones((2, 2)))
        with pytest.raises(FormatError, match="singular"):
            spill.inverse()


class TestCompensate:
    def test_recovers_true_signal(self):
        spill = parse_spillover(SPILL_TEXT)
        rng = np.random.default_rng(0)
        truth = rng.uniform(0.0, 1000.0, size=(50, 2))
        observed = truth @ spill.as_array()
        table = EventTable(
            np.column_stack([rng.uniform(0, 1, 50), observed]), ["FSC.A", "FL1.A", "FL2.A"]
        )

        compensated = compensate(table, spill)

        np.testing.assert_allclose(compensated.columns(["FL1.A", "FL2.A"]), truth, atol=1e-9)
        np.testing.assert_array_equal(compensated.column("FSC.A"), table.column("FSC.A"))
        np.testing.assert_allclose(table.columns(["FL1.A", "FL2.A"]), observed)

    def test_identity_is_noop(self):
        spill = SpilloverMatrix.from_array(["a"], np.eye(1))
        table = EventTable.from_columns({"a": [1.0, 2.0]})
        assert compensate(table, spill) == table

    def test_missing_channel(self):
        table = EventTable.from_columns({"FL1.A": [1.0]})
        with pytest.raises(SchemaMismatchError, match="FL2.A"):
            compensate(table, parse_spillover(SPILL_TEXT))

    def test_singular_matrix(self):
        spill = SpilloverMatrix.from_array(["a", "b"], [[1.0, 1.0], [1.0, 1.0]])
        table = EventTable.from_columns({"a": [1.0], "b": [2.0]})
        with pytest.raises(FormatError):
            compensate(table, spill)


class TestSpilloverCsv:
    def test_plain(self, tmp_path):
        path = tmp_path / "spill.csv"
        path.write_text("FL1.A,FL2.A\n1,0.1\n0.05,1\n")
        spill = load_spillover_csv(path)
        assert spill == parse_spillover(SPILL_TEXT)

    def test_row_labels(self, tmp_path):
        path = tmp_path / "spill.csv"
        path.write_text(",FL1.A,FL2.A\nFL1.A,1,0.1\nFL2.A,0.05,1\n")
        assert load_spillover_csv(path).channels == ("FL1.A", "FL2.A")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FormatError):
            load_spillover_csv(tmp_path / "missing.csv")

    def test_not_square(self, tmp_path):
        path = tmp_path / "spill.csv"
        path.write_text("FL1.A,FL2.A\n1,0.1\n")
        with pytest.raises(FormatError):
            load_spillover_csv(path)
