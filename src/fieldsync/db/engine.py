"""SQLModel engine singleton and schema bootstrap."""
from typing import Generator

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from fieldsync.config import get_settings

_engine = None


def build_engine(database_url: str):
    """Create an engine for the outbox store with the schema brought up to date."""
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},  # SQLite only; shared with FastAPI threads
    )
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        event.listen(engine, "connect", _enable_wal)
    init_schema(engine)
    return engine


def init_schema(engine) -> None:
    """Create missing tables, then apply versioned migrations. Idempotent."""
    # Import all models so metadata is populated before create_all
    from fieldsync.models.event import OfflineEvent  # noqa
    from fieldsync.models.sync import SyncLog  # noqa
    SQLModel.metadata.create_all(engine)
    from fieldsync.db.migrations import run_migrations
    run_migrations(engine)


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """Yield a DB session on the module-level engine."""
    with Session(get_engine()) as session:
        yield session


def _enable_wal(dbapi_connection, connection_record) -> None:
    # WAL lets the API read while a sync run writes
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
