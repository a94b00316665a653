"""Tests for the per-sample population tree."""

import numpy as np
import pytest

from cytogate.constants import NodeStatus
from cytogate.events.table import EventTable
from cytogate.exceptions import (
    DuplicateNodeError,
    GateFitError,
    PopulationNotFoundError,
    SchemaMismatchError,
)
from cytogate.gating.fitted import DensityGate, QuantileGate
from cytogate.gating.gates import RectangleGate
from cytogate.gating.tree import SampleTree, format_path, parse_path
from tests.helpers.synthetic_data import KNOWN_FSC_INSIDE

CELLS = RectangleGate(name="cells", bounds={"FSC.A": (200, 800)})
HIGH_SSC = RectangleGate(name="high_ssc", bounds={"SSC.A": (500, None)})


@pytest.fixture
def tree(scatter_events):
    return SampleTree.from_gates(
        "s1", scatter_events, [((), CELLS), (("cells",), HIGH_SSC)]
    )


class TestPaths:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("/", ()),
            ("root", ()),
            ("/root/cells", ("cells",)),
            ("/cells/singlets", ("cells", "singlets")),
            ("cells/singlets/", ("cells", "singlets")),
            (["cells", "singlets"], ("cells", "singlets")),
        ],
    )
    def test_parse_path(self, raw, expected):
        assert parse_path(raw) == expected

    def test_format_path(self):
        assert format_path(()) == "/"
        assert format_path(("cells", "singlets")) == "/cells/singlets"


class TestRoot:
    def test_root_holds_every_event(self, scatter_events):
        tree = SampleTree.create("s1", scatter_events)
        root = tree.get("/")
        assert root.is_root
        assert root.name == "root"
        assert root.count == scatter_events.n_events
        assert root.parent_path is None
        assert len(tree) == 1

    def test_events_for_root(self, scatter_events):
        assert SampleTree.create("s1", scatter_events).events_for("/") == scatter_events


class TestAddGate:
    def test_known_count(self, tree):
        assert tree.get("/cells").count == KNOWN_FSC_INSIDE

    def test_child_is_subset_of_parent(self, tree):
        parent = tree.get("/cells").event_mask
        child = tree.get("/cells/high_ssc").event_mask
        assert not np.any(child & ~parent)
        assert tree.get("/cells/high_ssc").count <= tree.get("/cells").count

    def test_local_mask_is_over_parent_events(self, tree):
        node = tree.get("/cells/high_ssc")
        assert node.mask.shape == (KNOWN_FSC_INSIDE,)
        assert node.mask.sum() == node.count

    def test_child_applies_to_parent_events(self, tree, scatter_events):
        fsc = scatter_events.column("FSC.A")
        ssc = scatter_events.column("SSC.A")
        expected = (fsc >= 200) & (fsc <= 800) & (ssc >= 500)
        np.testing.assert_array_equal(tree.get("/cells/high_ssc").event_mask, expected)

    def test_masks_are_read_only(self, tree):
        with pytest.raises(ValueError):
            tree.get("/cells").event_mask[0] = True

    def test_original_tree_unchanged(self, scatter_events):
        base = SampleTree.create("s1", scatter_events)
        grown = base.add_gate("/", CELLS)
        assert "/cells" not in base
        assert "/cells" in grown

    def test_duplicate_name(self, tree):
        with pytest.raises(DuplicateNodeError) as exc_info:
            tree.add_gate("/", RectangleGate(name="cells", bounds={"FSC.A": (0, 1)}))
        assert exc_info.value.path == ("cells",)
        assert tree.get("/cells").count == KNOWN_FSC_INSIDE
        assert len(tree) == 3

    def test_same_name_under_other_parent(self, tree):
        grown = tree.add_gate("/cells", RectangleGate(name="cells", bounds={"SSC.A": (0, 10)}))
        assert "/cells/cells" in grown

    def test_unknown_parent(self, tree):
        with pytest.raises(PopulationNotFoundError):
            tree.add_gate("/lymphocytes", HIGH_SSC)

    def test_unknown_parent_is_key_error(self, tree):
        with pytest.raises(KeyError):
            tree.get("/nope")

    def test_missing_channel(self, tree):
        with pytest.raises(SchemaMismatchError):
            tree.add_gate("/", RectangleGate(name="cd3", bounds={"CD3": (0, 1)}))

    def test_children_and_descendants(self, tree):
        assert [n.name for n in tree.children("/")] == ["cells"]
        assert [n.name for n in tree.descendants("/")] == ["cells", "high_ssc"]
        assert tree.children("/cells/high_ssc") == []

    def test_gates_round_trip(self, tree, scatter_events):
        rebuilt = SampleTree.from_gates("s1", scatter_events, tree.gates)
        assert rebuilt.paths == tree.paths


class TestFittedNodes:
    def test_shape_recorded(self, scatter_events):
        gate = QuantileGate(name="upper", channel="SSC.A", quantile=0.5)
        node = SampleTree.create("s1", scatter_events).add_gate("/", gate).get("/upper")
        assert node.gate == gate
        assert isinstance(node.shape, RectangleGate)
        assert node.count == 500

    def test_deterministic_gate_has_no_shape(self, tree):
        assert tree.get("/cells").shape is None


class TestFailures:
    @pytest.fixture
    def failed_tree(self):
        events = EventTable.from_columns(
            {"CD3": [1.0, 2.0, 3.0], "CD4": [1.0, 2.0, 3.0]}
        )
        tree = SampleTree.create("tiny", events)
        tree = tree.add_gate("/", DensityGate(name="t_cells", channels=("CD3", "CD4")))
        return tree.add_gate(
            "/t_cells", RectangleGate(name="cd4", bounds={"CD4": (2, None)})
        )

    def test_fit_failure_marks_node(self, failed_tree):
        node = failed_tree.get("/t_cells")
        assert node.status == NodeStatus.FAILED
        assert node.failed
        assert node.count is None
        assert "at least" in node.error

    def test_failure_propagates_to_descendants(self, failed_tree):
        child = failed_tree.get("/t_cells/cd4")
        assert child.failed
        assert "Ancestor '/t_cells' failed" in child.error
        assert [n.name for n in failed_tree.failed_nodes()] == ["t_cells", "cd4"]

    def test_events_for_failed_node(self, failed_tree):
        with pytest.raises(GateFitError) as exc_info:
            failed_tree.events_for("/t_cells")
        assert exc_info.value.sample_id == "tiny"

    def test_root_never_fails(self, failed_tree):
        assert not failed_tree.get("/").failed

    def test_mark_failed(self, tree):
        failed = tree.mark_failed("boom")
        assert all(n.failed for n in failed.nodes() if not n.is_root)
        assert failed.get("/cells").error == "boom"
        assert failed.paths == tree.paths


class TestEdits:
    def test_replace_gate_recomputes_subtree(self, tree, scatter_events):
        wider = RectangleGate(name="cells", bounds={"FSC.A": (0, 1000)})
        replaced = tree.replace_gate("/cells", wider)

        assert replaced.get("/cells").count == scatter_events.n_events
        expected = int(np.count_nonzero(scatter_events.column("SSC.A") >= 500))
        assert replaced.get("/cells/high_ssc").count == expected
        assert tree.get("/cells").count == KNOWN_FSC_INSIDE

    def test_replace_keeps_unrelated_nodes(self, scatter_events):
        other = RectangleGate(name="low_fsc", bounds={"FSC.A": (None, 100)})
        tree = SampleTree.from_gates("s1", scatter_events, [((), CELLS), ((), other)])
        replaced = tree.replace_gate(
            "/cells", RectangleGate(name="cells", bounds={"FSC.A": (0, 10)})
        )
        assert replaced.get("/low_fsc") is tree.get("/low_fsc")

    def test_replace_must_keep_name(self, tree):
        with pytest.raises(ValueError, match="keep the name"):
            tree.replace_gate("/cells", RectangleGate(name="other", bounds={"FSC.A": (0, 1)}))

    def test_replace_root(self, tree):
        with pytest.raises(ValueError):
            tree.replace_gate("/", CELLS)

    def test_remove_population_drops_subtree(self, tree):
        trimmed = tree.remove_population("/cells")
        assert trimmed.paths == [()]
        assert len(tree) == 3

    def test_remove_root(self, tree):
        with pytest.raises(ValueError):
            tree.remove_population("/")

    def test_recompute_is_idempotent(self, tree):
        recomputed = tree.recompute()
        for path in tree.paths:
            np.testing.assert_array_equal(
                recomputed.get(path).event_mask, tree.get(path).event_mask
            )
