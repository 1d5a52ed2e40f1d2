"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from fieldsync.models.event import OfflineEvent  # noqa: F401
from fieldsync.models.sync import SyncLog  # noqa: F401
from fieldsync.db.engine import init_schema
from fieldsync.outbox.queue import OutboxQueue
from fieldsync.outbox.recorder import EventRecorder


def memory_engine():
    return create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine with the full, migrated schema."""
    engine = memory_engine()
    init_schema(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="queue")
def queue_fixture(engine) -> OutboxQueue:
    return OutboxQueue(engine)


@pytest.fixture(name="recorder")
def recorder_fixture(queue) -> EventRecorder:
    return EventRecorder(queue)
