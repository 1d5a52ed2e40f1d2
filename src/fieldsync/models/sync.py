"""Sync audit log model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from fieldsync.models.event import utcnow


class SyncLog(SQLModel, table=True):
    """Records each outbox sync run for audit and the status view."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running", "success", "partial", "error"
    events_synced: int = 0
    events_failed: int = 0
    error_message: Optional[str] = None
