from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from scanstore.config import get_settings


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


engine = create_engine(
    get_settings().db_url,
    echo=False,
    connect_args={"check_same_thread": False},
)


def create_db_and_tables(bind: Engine | None = None) -> bool:
    """Create all tables. Returns True if the documents table was new."""
    import scanstore.models  # noqa: F401  register SQLModel tables

    bind = bind or engine
    fresh = not inspect(bind).has_table("documents")
    SQLModel.metadata.create_all(bind)
    return fresh


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
