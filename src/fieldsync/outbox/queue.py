"""
OutboxQueue: the durable local event queue.

Every producer action lands here as an OfflineEvent row with
sync_status="pending". The sync service is the only writer of status
fields; producers only insert. Rows leave the table only through
purge_synced(), and only once they are synced.

All SQLAlchemy failures surface as StorageError. Callers must not treat
them as retriable.
"""
import json
import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from fieldsync.errors import StorageError
from fieldsync.models.event import OfflineEvent, ServerStage, SyncStatus, utcnow

logger = logging.getLogger(__name__)


class OutboxQueue:
    """Crash-safe storage of outbox events on a SQLModel engine."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    # ─── Schema ───────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Create the schema if absent and apply pending migrations. Idempotent."""
        from fieldsync.db.engine import init_schema

        try:
            init_schema(self.engine)
        except SQLAlchemyError as exc:
            logger.error("Outbox initialize failed: %s", exc)
            raise StorageError(f"initialize failed: {exc}") from exc

    # ─── Producer side ────────────────────────────────────────────────────────

    def append(
        self,
        event_type: str,
        *,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
        entity_ref: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        file_refs: Optional[Sequence[str]] = None,
    ) -> int:
        """Insert a pending event and return its assigned id.

        Raises:
            StorageError: if the row could not be written.
        """
        now = utcnow()
        event = OfflineEvent(
            event_type=str(event_type),
            org_id=_opt_str(org_id),
            user_id=_opt_str(user_id),
            entity_ref=_opt_str(entity_ref),
            payload_json=json.dumps(payload or {}, default=str),
            file_refs_json=json.dumps([str(f) for f in (file_refs or []) if f]),
            sync_status=SyncStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self.session("append") as s:
            s.add(event)
            s.commit()
            s.refresh(event)
            event_id = event.id
        logger.info("Queued %s event %s (entity_ref=%s)", event_type, event_id, entity_ref)
        return event_id

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get(self, event_id: int) -> Optional[OfflineEvent]:
        with self.session("get") as s:
            return s.get(OfflineEvent, event_id)

    def list_pending(self, limit: int = 50) -> List[OfflineEvent]:
        """Up to `limit` pending events, oldest first."""
        with self.session("list_pending") as s:
            return list(
                s.exec(
                    select(OfflineEvent)
                    .where(OfflineEvent.sync_status == SyncStatus.PENDING.value)
                    .order_by(OfflineEvent.created_at, OfflineEvent.id)
                    .limit(limit)
                ).all()
            )

    def list_recent(
        self, limit: int = 50, status: Optional[str] = None
    ) -> List[OfflineEvent]:
        """Newest events first, optionally filtered by sync status (history view)."""
        query = select(OfflineEvent)
        if status is not None:
            query = query.where(OfflineEvent.sync_status == SyncStatus(status).value)
        query = query.order_by(OfflineEvent.created_at.desc(), OfflineEvent.id.desc())
        with self.session("list_recent") as s:
            return list(s.exec(query.limit(limit)).all())

    def recent_of_types(
        self, event_types: Iterable[str], window: int
    ) -> List[OfflineEvent]:
        """The `window` most recent events of the given types, returned oldest first."""
        with self.session("recent_of_types") as s:
            rows = s.exec(
                select(OfflineEvent)
                .where(OfflineEvent.event_type.in_(list(event_types)))
                .order_by(OfflineEvent.created_at.desc(), OfflineEvent.id.desc())
                .limit(window)
            ).all()
        return list(reversed(rows))

    def counts_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SyncStatus}
        with self.session("counts_by_status") as s:
            rows = s.exec(
                select(OfflineEvent.sync_status, func.count(OfflineEvent.id))
                .group_by(OfflineEvent.sync_status)
            ).all()
        for status, count in rows:
            key = (status or "").lower()
            if key in counts:
                counts[key] = count
        counts["all"] = sum(counts.values())
        return counts

    def counts_by_type(self) -> List[Tuple[str, int]]:
        count = func.count(OfflineEvent.id)
        with self.session("counts_by_type") as s:
            rows = s.exec(
                select(OfflineEvent.event_type, count)
                .group_by(OfflineEvent.event_type)
                .order_by(count.desc(), OfflineEvent.event_type)
            ).all()
        return [(event_type, n) for event_type, n in rows]

    # ─── Sync claims ──────────────────────────────────────────────────────────

    def claim_pending(
        self, limit: int, token: str, ttl_seconds: int = 300
    ) -> List[OfflineEvent]:
        """Stamp up to `limit` unclaimed pending events with `token`; return them oldest first.

        The claim is a single UPDATE, so two runs sharing the store never
        receive the same row. Claims older than `ttl_seconds` belong to a run
        that died and are taken over.
        """
        now = utcnow()
        expired = now - timedelta(seconds=ttl_seconds)
        claimable = (
            select(OfflineEvent.id)
            .where(OfflineEvent.sync_status == SyncStatus.PENDING.value)
            .where(
                or_(
                    OfflineEvent.claim_token.is_(None),
                    OfflineEvent.claimed_at < expired,
                )
            )
            .order_by(OfflineEvent.created_at, OfflineEvent.id)
            .limit(limit)
        )
        with self.session("claim_pending") as s:
            s.exec(
                update(OfflineEvent)
                .where(OfflineEvent.id.in_(claimable))
                .values(claim_token=token, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            return list(
                s.exec(
                    select(OfflineEvent)
                    .where(OfflineEvent.claim_token == token)
                    .where(OfflineEvent.sync_status == SyncStatus.PENDING.value)
                    .order_by(OfflineEvent.created_at, OfflineEvent.id)
                ).all()
            )

    def renew_claim(self, event_id: int, token: str) -> bool:
        """Refresh claimed_at on a row `token` still holds. False if another run took it over."""
        with self.session("renew_claim") as s:
            result = s.exec(
                update(OfflineEvent)
                .where(OfflineEvent.id == event_id)
                .where(OfflineEvent.claim_token == token)
                .where(OfflineEvent.sync_status == SyncStatus.PENDING.value)
                .values(claimed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            s.commit()
            return result.rowcount == 1

    def release_claims(self, token: str) -> int:
        """Drop whatever claims `token` still holds. Returns the number released."""
        with self.session("release_claims") as s:
            result = s.exec(
                update(OfflineEvent)
                .where(OfflineEvent.claim_token == token)
                .values(claim_token=None, claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            return result.rowcount

    # ─── Status transitions ───────────────────────────────────────────────────

    def mark_synced(self, event_id: int, token: Optional[str] = None) -> bool:
        """pending → synced, stage "received".

        With `token`, only a row still claimed by that run is changed.
        """
        return self._acknowledge(event_id, ServerStage.RECEIVED, token)

    def mark_applied(self, event_id: int, token: Optional[str] = None) -> bool:
        """pending → synced, stage "applied"."""
        return self._acknowledge(event_id, ServerStage.APPLIED, token)

    def mark_failed(
        self, event_id: int, reason: Optional[str], token: Optional[str] = None
    ) -> bool:
        """pending → failed with the failure reason."""
        return self._transition(
            "mark_failed",
            event_id,
            token,
            sync_status=SyncStatus.FAILED.value,
            error_text=str(reason or "Unknown error"),
        )

    def reset_failed_to_pending(self) -> int:
        """Bulk failed → pending, clearing error_text. Returns the number of rows reset."""
        with self.session("reset_failed_to_pending") as s:
            result = s.exec(
                update(OfflineEvent)
                .where(OfflineEvent.sync_status == SyncStatus.FAILED.value)
                .values(
                    sync_status=SyncStatus.PENDING.value,
                    error_text=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            s.commit()
            count = result.rowcount
        logger.info("Reset %d failed event(s) to pending", count)
        return count

    def purge_synced(self) -> int:
        """Delete every synced event. Irreversible; pending/failed rows are kept."""
        with self.session("purge_synced") as s:
            result = s.exec(
                delete(OfflineEvent)
                .where(OfflineEvent.sync_status == SyncStatus.SYNCED.value)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            count = result.rowcount
        logger.info("Purged %d synced event(s)", count)
        return count

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _acknowledge(
        self, event_id: int, stage: ServerStage, token: Optional[str]
    ) -> bool:
        return self._transition(
            "mark_" + ("applied" if stage is ServerStage.APPLIED else "synced"),
            event_id,
            token,
            sync_status=SyncStatus.SYNCED.value,
            server_stage=stage.value,
            error_text=None,
        )

    def _transition(
        self, op: str, event_id: int, token: Optional[str], **values
    ) -> bool:
        """Apply a pending → * transition to one row; False if the row was not pending
        (or, with a token, no longer claimed by that run)."""
        statement = (
            update(OfflineEvent)
            .where(OfflineEvent.id == event_id)
            .where(OfflineEvent.sync_status == SyncStatus.PENDING.value)
        )
        if token is not None:
            statement = statement.where(OfflineEvent.claim_token == token)
        with self.session(op) as s:
            result = s.exec(
                statement
                .values(claim_token=None, claimed_at=None, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            changed = result.rowcount == 1
        if not changed:
            logger.warning("%s ignored for event %s: not pending or not claimed", op, event_id)
        return changed

    @contextmanager
    def session(self, op: str) -> Iterator[Session]:
        """Session on the outbox engine; SQLAlchemy errors surface as StorageError."""
        try:
            with Session(self.engine, expire_on_commit=False) as s:
                yield s
        except SQLAlchemyError as exc:
            logger.error("Outbox %s failed: %s", op, exc)
            raise StorageError(f"{op} failed: {exc}") from exc


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
