"""Engine and session handling for results databases (SQLite files)."""

import logging

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from cytogate.constants import DEFAULT_DATABASE_PATH
from cytogate.database.models import Base

logger = logging.getLogger(__name__)

SessionFactory = sessionmaker[Session]


def create_sqlite_engine(database_path: Path | str | None = None) -> Engine:
    """
    Open (and create if needed) a results database file.

    Args:
        database_path: SQLite file, defaults to DEFAULT_DATABASE_PATH

    Returns:
        Engine with the schema created

    Raises:
        ValueError: If the path is empty
        PermissionError: If the parent directory cannot be created
    """
    path = str(database_path) if database_path is not None else DEFAULT_DATABASE_PATH
    if not path:
        raise ValueError("Database path must not be empty")

    parent = Path(path).parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(f"Cannot create database directory {parent}: {e}") from e

    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_conn: Any, _record: Any) -> None:
        # Needed for ON DELETE CASCADE from runs to statistics
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    logger.debug(f"Results database ready at {path}")
    return engine


def create_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: SessionFactory) -> Generator[Session]:
    """
    Session that commits when the block exits cleanly and rolls back otherwise.

    Usage:
        with session_scope(factory) as session:
            session.add(obj)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
