"""
OutboxSyncService: delivers pending outbox events to the remote system.

Flow for one run:
  1. Take the run lock (overlapping triggers in this process queue up)
  2. Claim up to `limit` pending events, oldest first, under a fresh token.
     Nothing claimed: return at once, no SyncLog row is written
  3. Create SyncLog (status="running")
  4. Submit each claimed event, one at a time. The claim is renewed first;
     an event whose claim another run has taken over is skipped.
       applied ack → mark_applied, other ack → mark_synced,
       SubmissionError → mark_failed and carry on with the next event
     Marks only apply while this run still holds the claim, and only rows
     actually changed are counted.
  5. Release leftover claims, update SyncLog, return SyncResult

Delivery is at-least-once: a crash between submit and mark leaves the event
pending, and it is sent again on a later run under the same localId.
Failed events stay failed until reset_failed_to_pending() is called; there
is no automatic retry.

A StorageError aborts the run and propagates. Events already marked keep
their new status.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fieldsync.errors import SubmissionError
from fieldsync.models.event import ServerStage, utcnow
from fieldsync.models.sync import SyncLog
from fieldsync.outbox.queue import OutboxQueue
from fieldsync.sync.client import infer_server_stage

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome counts for one sync run."""
    synced: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.synced + self.failed


class OutboxSyncService:
    """Runs outbox sync passes; one pass at a time per instance."""

    def __init__(self, queue: OutboxQueue, client, claim_ttl_seconds: int = 300):
        """
        Args:
            queue: OutboxQueue holding the events.
            client: IngestClient (or AsyncMock in tests) with async submit(event).
            claim_ttl_seconds: Age after which another run's claim is treated
                               as abandoned.
        """
        self.queue = queue
        self.client = client
        self.claim_ttl_seconds = claim_ttl_seconds
        self._lock = asyncio.Lock()

    async def sync_outbox(self, limit: int = 25) -> SyncResult:
        """
        Deliver up to `limit` pending events.

        Returns:
            SyncResult with synced/failed counts (both 0 when nothing was pending).

        Raises:
            StorageError: if the outbox cannot be read or updated.
        """
        async with self._lock:
            return await self._run(limit)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _run(self, limit: int) -> SyncResult:
        token = uuid.uuid4().hex
        result = SyncResult()
        log = None

        try:
            try:
                claimed = self.queue.claim_pending(
                    limit, token, ttl_seconds=self.claim_ttl_seconds
                )
                if not claimed:
                    return result
                log = self._create_sync_log()
                for event in claimed:
                    await self._deliver(event, token, result)
            finally:
                self.queue.release_claims(token)
        except Exception as exc:
            logger.error("Outbox sync aborted after %d event(s): %s", result.attempted, exc)
            if log is not None:
                self._finish_sync_log(log, status="error", result=result, error_message=str(exc))
            raise

        status = "partial" if result.failed else "success"
        self._finish_sync_log(log, status=status, result=result)
        logger.info("Outbox sync: %d synced, %d failed", result.synced, result.failed)
        return result

    async def _deliver(self, event, token: str, result: SyncResult) -> None:
        if not self.queue.renew_claim(event.id, token):
            logger.warning("Event %s skipped: claim taken over by another run", event.id)
            return

        try:
            response = await self.client.submit(event)
        except SubmissionError as exc:
            reason = str(exc) or "Sync failed"
            logger.warning("Event %s (%s) not delivered: %s", event.id, event.event_type, reason)
            if self.queue.mark_failed(event.id, reason, token=token):
                result.failed += 1
            return

        if infer_server_stage(response) == ServerStage.APPLIED.value:
            marked = self.queue.mark_applied(event.id, token=token)
        else:
            marked = self.queue.mark_synced(event.id, token=token)
        if marked:
            result.synced += 1

    def _create_sync_log(self) -> SyncLog:
        log = SyncLog(started_at=utcnow(), status="running")
        with self.queue.session("sync_log") as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def _finish_sync_log(
        self,
        log: SyncLog,
        *,
        status: str,
        result: SyncResult,
        error_message: Optional[str] = None,
    ) -> None:
        with self.queue.session("sync_log") as s:
            db_log = s.get(SyncLog, log.id)
            db_log.status = status
            db_log.finished_at = utcnow()
            db_log.events_synced = result.synced
            db_log.events_failed = result.failed
            db_log.error_message = error_message
            s.add(db_log)
            s.commit()
