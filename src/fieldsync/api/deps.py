"""FastAPI dependencies: the outbox queue and the shared sync service."""
from typing import Optional

from fieldsync.config import get_settings
from fieldsync.db.engine import get_engine
from fieldsync.outbox.queue import OutboxQueue
from fieldsync.sync.client import IngestClient
from fieldsync.sync.service import OutboxSyncService

_service: Optional[OutboxSyncService] = None


def get_queue() -> OutboxQueue:
    return OutboxQueue(get_engine())


def get_sync_service() -> OutboxSyncService:
    """One service per process, so every trigger goes through the same run lock."""
    global _service
    if _service is None:
        settings = get_settings()
        _service = OutboxSyncService(
            queue=get_queue(),
            client=IngestClient.from_settings(settings),
            claim_ttl_seconds=settings.claim_ttl_seconds,
        )
    return _service


async def close_sync_service() -> None:
    global _service
    if _service is not None:
        await _service.client.aclose()
        _service = None
