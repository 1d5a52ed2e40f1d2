"""
Main entrypoint: outbox maintenance commands and the background sync loop.

FastAPI runs separately under uvicorn (history view and manual trigger).

Usage:
    python -m fieldsync                      # periodic sync until Ctrl+C
    python -m fieldsync sync --limit 25      # one sync pass
    python -m fieldsync status               # counts by status and type
    python -m fieldsync reset-failed         # failed → pending
    python -m fieldsync purge-synced --yes   # delete synced history
    uvicorn fieldsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build_service():
    from fieldsync.config import get_settings
    from fieldsync.db.engine import get_engine
    from fieldsync.outbox.queue import OutboxQueue
    from fieldsync.sync.client import IngestClient
    from fieldsync.sync.service import OutboxSyncService

    settings = get_settings()
    return OutboxSyncService(
        queue=OutboxQueue(get_engine()),
        client=IngestClient.from_settings(settings),
        claim_ttl_seconds=settings.claim_ttl_seconds,
    )


def _queue():
    from fieldsync.db.engine import get_engine
    from fieldsync.outbox.queue import OutboxQueue

    return OutboxQueue(get_engine())


async def _run_loop() -> None:
    from fieldsync.config import get_settings
    from fieldsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    service = _build_service()
    scheduler = build_scheduler(service)
    scheduler.start()
    logger.info(
        "Scheduler started (outbox sync every %d min)", settings.sync_interval_minutes
    )

    try:
        # Drain anything queued while we were down, then wait for the scheduler
        await service.sync_outbox(limit=settings.sync_batch_limit)
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await service.client.aclose()
        logger.info("Goodbye.")


async def _sync_once(limit: int) -> None:
    service = _build_service()
    try:
        result = await service.sync_outbox(limit=limit)
    finally:
        await service.client.aclose()
    print(f"synced={result.synced} failed={result.failed}")


def _print_status() -> None:
    queue = _queue()
    counts = queue.counts_by_status()
    print(
        f"pending={counts['pending']} synced={counts['synced']} "
        f"failed={counts['failed']} all={counts['all']}"
    )
    for event_type, count in queue.counts_by_type():
        print(f"  {event_type}: {count}")


def main(argv=None) -> int:
    from fieldsync.config import get_settings

    parser = argparse.ArgumentParser(prog="fieldsync", description="Offline outbox tools")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="periodic background sync (default)")
    sync_parser = sub.add_parser("sync", help="run one sync pass")
    sync_parser.add_argument("--limit", type=int, default=None)
    sub.add_parser("status", help="show outbox counts")
    sub.add_parser("reset-failed", help="move failed events back to pending")
    purge_parser = sub.add_parser("purge-synced", help="delete synced events")
    purge_parser.add_argument("--yes", action="store_true", help="confirm the purge")
    args = parser.parse_args(argv)

    if args.command in (None, "run"):
        asyncio.run(_run_loop())
    elif args.command == "sync":
        asyncio.run(_sync_once(args.limit or get_settings().sync_batch_limit))
    elif args.command == "status":
        _print_status()
    elif args.command == "reset-failed":
        print(f"reset={_queue().reset_failed_to_pending()}")
    elif args.command == "purge-synced":
        if not args.yes:
            print("Refusing to purge without --yes (pending/failed events are always kept).")
            return 2
        print(f"purged={_queue().purge_synced()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
