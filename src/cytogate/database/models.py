"""
SQLAlchemy ORM models for the cytogate results database.

One AnalysisRun row per ``cytogate gate`` invocation (or ``ResultsStore``
save), with one PopulationStatistic row per (sample, population).
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from cytogate.database.types import JSONMapping


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC timestamp for database defaults."""
    return datetime.now(UTC)


class AnalysisRun(Base):
    """One gating analysis over a sample set."""

    __tablename__ = "analysis_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    strategy_source: Mapped[str | None] = mapped_column(String)
    aggregator: Mapped[str | None] = mapped_column(String(50))
    n_samples: Mapped[int] = mapped_column(Integer, default=0)
    excluded_samples: Mapped[dict[str, Any]] = mapped_column(JSONMapping, default=dict)
    notes: Mapped[str | None] = mapped_column(Text)

    statistics = relationship(
        "PopulationStatistic",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PopulationStatistic.id",
    )

    __table_args__ = (CheckConstraint("n_samples >= 0", name="chk_n_samples"),)

    def __repr__(self) -> str:
        return f"<AnalysisRun(id={self.id}, samples={self.n_samples})>"


class PopulationStatistic(Base):
    """Statistics of one population of one sample within a run."""

    __tablename__ = "population_statistics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("analysis_runs.id", ondelete="CASCADE"), index=True
    )
    sample_id: Mapped[str] = mapped_column(String, index=True)
    path: Mapped[str] = mapped_column(String)
    population: Mapped[str] = mapped_column(String)
    parent_path: Mapped[str | None] = mapped_column(String)
    status: Mapped[str] = mapped_column(String(10))
    error: Mapped[str | None] = mapped_column(Text)

    # NaN is stored as NULL by SQLite; status disambiguates on load
    count: Mapped[int | None] = mapped_column(Integer)
    parent_count: Mapped[int | None] = mapped_column(Integer)
    percent_of_parent: Mapped[float | None] = mapped_column(Float)
    percent_of_total: Mapped[float | None] = mapped_column(Float)

    values: Mapped[dict[str, Any]] = mapped_column(JSONMapping, default=dict)
    aggregator_error: Mapped[str | None] = mapped_column(Text)
    sample_metadata: Mapped[dict[str, Any]] = mapped_column(JSONMapping, default=dict)

    run = relationship("AnalysisRun", back_populates="statistics")

    __table_args__ = (
        UniqueConstraint("run_id", "sample_id", "path", name="uq_run_sample_path"),
        CheckConstraint("status IN ('ok', 'failed')", name="chk_status"),
        CheckConstraint("count IS NULL OR count >= 0", name="chk_count"),
    )

    def __repr__(self) -> str:
        return (
            f"<PopulationStatistic(run={self.run_id}, sample={self.sample_id}, "
            f"path={self.path}, count={self.count})>"
        )
