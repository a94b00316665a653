"""
Persistent storage of population statistics.

ResultsStore saves the records of one analysis as an AnalysisRun with its
PopulationStatistic rows and loads them back as StatisticsRecord objects.
"""

import logging
import math

from collections.abc import Mapping, Sequence
from contextlib import AbstractContextManager
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from cytogate.constants import NodeStatus
from cytogate.database import models
from cytogate.database.session import (
    create_session_factory,
    create_sqlite_engine,
    session_scope,
)
from cytogate.stats.records import StatisticsRecord

logger = logging.getLogger(__name__)


def _nullable(value: float | None) -> float | None:
    if value is None or math.isnan(value):
        return None
    return value


class ResultsStore:
    """
    SQLite-backed store of analysis runs.

    Each store owns its engine, so stores on different files are independent.

    Example:
        >>> with ResultsStore("results.db") as store:
        ...     run_id = store.save_records(records, strategy_source="panel.toml")
        ...     store.load_records(run_id)
    """

    def __init__(self, database_path: Path | str | None = None):
        self._engine = create_sqlite_engine(database_path)
        self._session_factory = create_session_factory(self._engine)
        self.database_path = self._engine.url.database

    def close(self) -> None:
        """Dispose of the engine's connections."""
        self._engine.dispose()

    def __enter__(self) -> "ResultsStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def session(self) -> AbstractContextManager[Session]:
        """Transactional session scope on this store's database."""
        return session_scope(self._session_factory)

    def save_records(
        self,
        records: Sequence[StatisticsRecord],
        strategy_source: str | None = None,
        aggregator: str | None = None,
        excluded_samples: Mapping[str, str] | None = None,
        notes: str | None = None,
    ) -> int:
        """
        Save one analysis run.

        Args:
            records: Statistics records of the run
            strategy_source: Strategy template the run used
            aggregator: Aggregator name, if any
            excluded_samples: sample id -> reason for samples excluded at load
            notes: Free-form notes

        Returns:
            The new run id
        """
        with self.session() as session:
            run = models.AnalysisRun(
                strategy_source=strategy_source,
                aggregator=aggregator,
                n_samples=len({r.sample_id for r in records}),
                excluded_samples=dict(excluded_samples or {}),
                notes=notes,
            )
            for record in records:
                run.statistics.append(
                    models.PopulationStatistic(
                        sample_id=record.sample_id,
                        path=record.path,
                        population=record.population,
                        parent_path=record.parent_path,
                        status=record.status.value,
                        error=record.error,
                        count=record.count,
                        parent_count=record.parent_count,
                        percent_of_parent=_nullable(record.percent_of_parent),
                        percent_of_total=_nullable(record.percent_of_total),
                        values=dict(record.values),
                        aggregator_error=record.aggregator_error,
                        sample_metadata=dict(record.metadata),
                    )
                )
            session.add(run)
            session.flush()
            run_id = run.id

        logger.info(f"Saved run {run_id} with {len(records)} record(s)")
        return run_id

    def load_records(self, run_id: int) -> list[StatisticsRecord]:
        """
        Load the records of a run.

        Ratios stored as NULL for a non-failed, non-root population are
        restored as NaN (undefined), not None (absent).

        Raises:
            KeyError: If the run does not exist
        """
        with self.session() as session:
            run = session.get(models.AnalysisRun, run_id)
            if run is None:
                raise KeyError(f"Analysis run {run_id} not found")

            records = []
            for row in run.statistics:
                status = NodeStatus(row.status)
                ok = status == NodeStatus.OK
                percent_of_parent = row.percent_of_parent
                if ok and row.parent_path is not None and percent_of_parent is None:
                    percent_of_parent = math.nan
                percent_of_total = row.percent_of_total
                if ok and percent_of_total is None:
                    percent_of_total = math.nan

                records.append(
                    StatisticsRecord(
                        sample_id=row.sample_id,
                        path=row.path,
                        population=row.population,
                        parent_path=row.parent_path,
                        count=row.count,
                        parent_count=row.parent_count,
                        percent_of_parent=percent_of_parent,
                        percent_of_total=percent_of_total,
                        status=status,
                        error=row.error,
                        values=row.values,
                        aggregator_error=row.aggregator_error,
                        metadata=row.sample_metadata,
                    )
                )
        return records

    def list_runs(self) -> list[models.AnalysisRun]:
        """All runs, newest first."""
        with self.session() as session:
            runs = session.scalars(
                select(models.AnalysisRun).order_by(models.AnalysisRun.id.desc())
            ).all()
            return list(runs)
