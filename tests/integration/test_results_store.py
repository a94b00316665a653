"""Tests for the SQLite results store."""

import math

import pytest

from sqlalchemy import func, select

from cytogate.constants import NodeStatus
from cytogate.database import models
from cytogate.database.store import ResultsStore
from cytogate.events.sample_set import SampleSet
from cytogate.exceptions import DivisionPolicyWarning
from cytogate.gating.gates import RectangleGate
from cytogate.gating.gating_set import GatingSet
from cytogate.stats.aggregators import get_aggregator
from cytogate.stats.records import compute_statistics
from tests.helpers.synthetic_data import KNOWN_FSC_INSIDE, make_scatter_events


@pytest.fixture
def records(scatter_sample_set):
    gs = GatingSet.from_strategy(
        scatter_sample_set,
        [("/", RectangleGate(name="cells", bounds={"FSC.A": (200, 800)}))],
    )
    return compute_statistics(gs, aggregator=get_aggregator("median", ["SSC.A"]))


class TestSaveLoad:
    def test_round_trip(self, temp_db, records):
        store = ResultsStore(temp_db)
        run_id = store.save_records(
            records,
            strategy_source="panel.toml",
            aggregator="median",
            excluded_samples={"bad": "truncated"},
            notes="first pass",
        )

        loaded = store.load_records(run_id)

        assert len(loaded) == len(records)
        for original, restored in zip(records, loaded, strict=True):
            assert restored.sample_id == original.sample_id
            assert restored.path == original.path
            assert restored.count == original.count
            assert restored.percent_of_parent == original.percent_of_parent
            assert restored.values == pytest.approx(original.values)
            assert restored.metadata == original.metadata
        assert loaded[1].count == KNOWN_FSC_INSIDE

    def test_run_metadata(self, temp_db, records):
        store = ResultsStore(temp_db)
        store.save_records(records, strategy_source="panel.toml", excluded_samples={"x": "bad"})

        [run] = store.list_runs()
        assert run.n_samples == 3
        assert run.strategy_source == "panel.toml"
        assert run.excluded_samples == {"x": "bad"}
        assert run.created_at is not None

    def test_rows_per_record(self, temp_db, records):
        store = ResultsStore(temp_db)
        store.save_records(records)
        with store.session() as session:
            count = session.scalar(select(func.count(models.PopulationStatistic.id)))
        assert count == len(records)

    def test_newest_first(self, temp_db, records):
        store = ResultsStore(temp_db)
        first = store.save_records(records[:2])
        second = store.save_records(records[2:])
        assert [run.id for run in store.list_runs()] == [second, first]

    def test_missing_run(self, temp_db):
        with pytest.raises(KeyError):
            ResultsStore(temp_db).load_records(42)


class TestUndefinedValues:
    def test_nan_and_failed_are_distinct(self, temp_db):
        sample_set = SampleSet({"s1": make_scatter_events()})
        gs = GatingSet.from_strategy(
            sample_set,
            [
                ("/", RectangleGate(name="none", bounds={"FSC.A": (1e9, None)})),
                ("/none", RectangleGate(name="child", bounds={"SSC.A": (0, None)})),
            ],
        )
        with pytest.warns(DivisionPolicyWarning):
            records = compute_statistics(gs)
        failed = records[1].model_copy(
            update={
                "path": "/failed",
                "status": NodeStatus.FAILED,
                "count": None,
                "parent_count": None,
                "percent_of_parent": None,
                "percent_of_total": None,
                "error": "boom",
            }
        )

        store = ResultsStore(temp_db)
        run_id = store.save_records(records + [failed])
        loaded = {r.path: r for r in store.load_records(run_id)}

        assert math.isnan(loaded["/none/child"].percent_of_parent)
        assert loaded["/none/child"].count == 0
        assert loaded["/"].percent_of_parent is None
        assert loaded["/failed"].failed
        assert loaded["/failed"].percent_of_parent is None
        assert loaded["/failed"].count is None


class TestSeparateStores:
    def test_two_stores_write_to_their_own_files(self, tmp_path, records):
        with ResultsStore(tmp_path / "a.db") as store_a, ResultsStore(tmp_path / "b.db") as store_b:
            run_id = store_a.save_records(records, strategy_source="a.toml")

            assert [run.id for run in store_a.list_runs()] == [run_id]
            assert store_b.list_runs() == []

            store_b.save_records(records[:1], strategy_source="b.toml")
            assert [run.strategy_source for run in store_a.list_runs()] == ["a.toml"]
            assert [run.strategy_source for run in store_b.list_runs()] == ["b.toml"]

        assert store_a.database_path == str(tmp_path / "a.db")
        assert store_b.database_path == str(tmp_path / "b.db")

    def test_reopen_sees_saved_runs(self, temp_db, records):
        with ResultsStore(temp_db) as store:
            run_id = store.save_records(records)
        with ResultsStore(temp_db) as reopened:
            assert len(reopened.load_records(run_id)) == len(records)
