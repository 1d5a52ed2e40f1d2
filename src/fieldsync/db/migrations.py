"""
Versioned schema migrations for the outbox store.

create_all() builds any table that is missing from the models; the list
below then brings existing stores forward. Each migration runs at most once
per store, tracked in SQLite's PRAGMA user_version, and only ever adds
(columns, indexes, triggers). Nothing is dropped or renamed.

An ADD COLUMN for a column that already exists counts as applied: stores
created from the current models already have it, legacy stores get it here.

A failing migration is reported as SchemaMigrationWarning and stops the
pass; startup continues on whatever schema the store has.
"""
import logging
import warnings
from dataclasses import dataclass
from typing import Tuple

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from fieldsync.errors import SchemaMigrationWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    statements: Tuple[str, ...]


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        1,
        "server acknowledgement stage",
        ("ALTER TABLE offline_events ADD COLUMN server_stage VARCHAR",),
    ),
    Migration(
        2,
        "last failure reason",
        ("ALTER TABLE offline_events ADD COLUMN error_text VARCHAR",),
    ),
    Migration(
        3,
        "sync run claims",
        (
            "ALTER TABLE offline_events ADD COLUMN claim_token VARCHAR",
            "ALTER TABLE offline_events ADD COLUMN claimed_at DATETIME",
        ),
    ),
    Migration(
        4,
        "sync scan and diagnostic indexes",
        (
            "CREATE INDEX IF NOT EXISTS ix_offline_events_sync "
            "ON offline_events (sync_status, created_at)",
            "CREATE INDEX IF NOT EXISTS ix_offline_events_type "
            "ON offline_events (event_type, created_at)",
            "CREATE INDEX IF NOT EXISTS ix_offline_events_org "
            "ON offline_events (org_id, created_at)",
            "CREATE INDEX IF NOT EXISTS ix_offline_events_entity_ref "
            "ON offline_events (entity_ref, created_at)",
        ),
    ),
    Migration(
        5,
        "immutable payloads",
        (
            """
            CREATE TRIGGER IF NOT EXISTS offline_events_payload_immutable
            BEFORE UPDATE OF payload_json, file_refs_json ON offline_events
            WHEN NEW.payload_json IS NOT OLD.payload_json
              OR NEW.file_refs_json IS NOT OLD.file_refs_json
            BEGIN
              SELECT RAISE(ABORT, 'offline event payload is immutable');
            END
            """,
        ),
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version


def current_version(engine) -> int:
    """Return the store's PRAGMA user_version (0 for a store never migrated)."""
    with engine.connect() as conn:
        return int(conn.execute(text("PRAGMA user_version")).scalar() or 0)


def run_migrations(engine) -> int:
    """Apply every migration newer than the store's version, in order.

    Safe to call on every startup. Never raises for a failed migration;
    emits SchemaMigrationWarning instead.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).

    Returns:
        The schema version the store ended up at.
    """
    version = current_version(engine)
    for migration in MIGRATIONS:
        if migration.version <= version:
            continue
        try:
            for statement in migration.statements:
                _execute_additive(engine, statement)
            with engine.begin() as conn:
                conn.execute(text(f"PRAGMA user_version = {int(migration.version)}"))
        except SQLAlchemyError as exc:
            message = (
                f"Schema migration {migration.version} "
                f"({migration.description}) failed: {exc}"
            )
            logger.warning(message)
            warnings.warn(message, SchemaMigrationWarning, stacklevel=2)
            break
        version = migration.version
        logger.info("Applied schema migration %d: %s", version, migration.description)
    return version


def _execute_additive(engine, statement: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(text(statement))
    except OperationalError as exc:
        if "duplicate column name" not in str(exc).lower():
            raise
