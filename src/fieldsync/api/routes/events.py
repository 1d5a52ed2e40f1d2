"""Outbox history routes (read-only, plus the explicit purge)."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fieldsync.api.deps import get_queue
from fieldsync.models.event import OfflineEvent, SyncStatus, as_utc
from fieldsync.outbox.queue import OutboxQueue

router = APIRouter()


class EventView(BaseModel):
    id: int
    event_type: str
    org_id: Optional[str]
    user_id: Optional[str]
    entity_ref: Optional[str]
    payload: Dict[str, Any]
    file_refs: List[str]
    sync_status: str
    server_stage: Optional[str]
    error_text: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_event(cls, event: OfflineEvent) -> "EventView":
        return cls(
            id=event.id,
            event_type=event.event_type,
            org_id=event.org_id,
            user_id=event.user_id,
            entity_ref=event.entity_ref,
            payload=event.payload,
            file_refs=event.file_refs,
            sync_status=event.sync_status,
            server_stage=event.server_stage,
            error_text=event.error_text,
            created_at=as_utc(event.created_at),
            updated_at=as_utc(event.updated_at),
        )


class TypeCount(BaseModel):
    event_type: str
    count: int


class CountsResponse(BaseModel):
    by_status: Dict[str, int]
    by_type: List[TypeCount]


@router.get("/recent", response_model=List[EventView])
def list_recent(
    limit: int = 50,
    status: Optional[SyncStatus] = None,
    queue: OutboxQueue = Depends(get_queue),
):
    """History view: newest events first, optionally one status only."""
    events = queue.list_recent(limit=limit, status=status.value if status else None)
    return [EventView.from_event(e) for e in events]


@router.get("/counts", response_model=CountsResponse)
def counts(queue: OutboxQueue = Depends(get_queue)):
    return CountsResponse(
        by_status=queue.counts_by_status(),
        by_type=[TypeCount(event_type=t, count=n) for t, n in queue.counts_by_type()],
    )


@router.post("/purge-synced")
def purge_synced(confirm: bool = False, queue: OutboxQueue = Depends(get_queue)):
    """Delete synced events from this device. Requires ?confirm=true."""
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail="Purging synced events is irreversible; repeat with confirm=true",
        )
    return {"purged": queue.purge_synced()}


@router.get("/{event_id}", response_model=EventView)
def get_event(event_id: int, queue: OutboxQueue = Depends(get_queue)):
    event = queue.get(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return EventView.from_event(event)
