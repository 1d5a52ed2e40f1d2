"""Sync trigger, retry and status routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from fieldsync.api.deps import get_queue, get_sync_service
from fieldsync.config import get_settings
from fieldsync.db.engine import get_session
from fieldsync.models.event import as_utc
from fieldsync.models.sync import SyncLog
from fieldsync.outbox.queue import OutboxQueue
from fieldsync.sync.service import OutboxSyncService

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    limit: Optional[int] = None  # If None, uses FIELDSYNC_SYNC_BATCH_LIMIT


class SyncStatusResponse(BaseModel):
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    events_synced: Optional[int]
    events_failed: Optional[int]
    error_message: Optional[str]


async def _do_sync(service: OutboxSyncService, limit: int) -> None:
    """Background task: one sync pass."""
    result = await service.sync_outbox(limit=limit)
    logger.info("Triggered sync: %d synced, %d failed", result.synced, result.failed)


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    service: OutboxSyncService = Depends(get_sync_service),
):
    """
    Trigger an on-demand outbox sync.
    Returns immediately; the sync runs in the background.
    """
    limit = request.limit or get_settings().sync_batch_limit
    background_tasks.add_task(_do_sync, service, limit)
    return {"message": "Sync started", "limit": limit}


@router.post("/reset-failed")
def reset_failed(queue: OutboxQueue = Depends(get_queue)):
    """Explicit retry: failed events go back to pending for the next run."""
    return {"reset": queue.reset_failed_to_pending()}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(session: Session = Depends(get_session)):
    """Return the status of the most recent sync run."""
    log = session.exec(
        select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
    ).first()
    if not log:
        return SyncStatusResponse(
            status="never_run",
            started_at=None,
            finished_at=None,
            events_synced=None,
            events_failed=None,
            error_message=None,
        )
    return SyncStatusResponse(
        status=log.status,
        started_at=as_utc(log.started_at),
        finished_at=as_utc(log.finished_at),
        events_synced=log.events_synced,
        events_failed=log.events_failed,
        error_message=log.error_message,
    )
