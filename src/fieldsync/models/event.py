"""Outbox event record: one row per producer action awaiting (or done with) delivery."""
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ServerStage(str, Enum):
    RECEIVED = "received"
    APPLIED = "applied"


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC view of a stored timestamp; SQLite may hand back naive UTC values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OfflineEvent(SQLModel, table=True):
    """
    A single queued action.

    payload_json and file_refs_json are written once by append() and never
    updated; a trigger installed by the migrations rejects any attempt.
    Only the sync service moves sync_status / server_stage / error_text.
    """

    __tablename__ = "offline_events"
    __table_args__ = (
        Index("ix_offline_events_sync", "sync_status", "created_at"),
        Index("ix_offline_events_type", "event_type", "created_at"),
        Index("ix_offline_events_org", "org_id", "created_at"),
        Index("ix_offline_events_entity_ref", "entity_ref", "created_at"),
        # ids stay unique across purges
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_type: str
    org_id: Optional[str] = None
    user_id: Optional[str] = None
    entity_ref: Optional[str] = None  # project/task/group/reg number; not a FK

    payload_json: str = "{}"
    file_refs_json: str = "[]"

    sync_status: str = Field(default=SyncStatus.PENDING.value)
    server_stage: Optional[str] = None  # "received" | "applied", after ack only
    error_text: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Held by a running sync; NULL when unclaimed
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None

    @property
    def payload(self) -> Dict[str, Any]:
        try:
            value = json.loads(self.payload_json or "{}")
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}

    @property
    def file_refs(self) -> List[str]:
        try:
            value = json.loads(self.file_refs_json or "[]")
        except ValueError:
            return []
        return [str(v) for v in value if v] if isinstance(value, list) else []
