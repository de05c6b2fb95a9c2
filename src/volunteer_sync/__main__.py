"""
Main entrypoint.

Usage:
    python -m volunteer_sync setup                  # store the Google service-account key
    python -m volunteer_sync sync [--full] [--download-only] [--entity volunteers ...]
    python -m volunteer_sync reset                  # forget sync history; next sync is full
    python -m volunteer_sync                        # daemon: periodic + cleanup jobs
    uvicorn volunteer_sync.api.main:app --host 0.0.0.0 --port 8000  # API (+ scheduler)
"""
import argparse
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from volunteer_sync.scripts.setup import run_setup
    run_setup()


async def _run_sync(args) -> int:
    from volunteer_sync.bootstrap import build_services
    from volunteer_sync.sync.service import SyncOptions

    services = build_services()
    outcome = await services.service.perform_sync(
        SyncOptions(
            force_full=args.full,
            download_only=args.download_only,
            entity_types=args.entity or None,
        )
    )
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.success else 1


async def _run_reset() -> None:
    from volunteer_sync.bootstrap import build_services

    services = build_services()
    await services.service.reset()
    print("Sync state and change tracking cleared. The next sync will be a full sync.")


async def _run_daemon() -> None:
    from volunteer_sync.bootstrap import build_services
    from volunteer_sync.scheduler.jobs import attach_delta_trigger, build_scheduler

    services = build_services()
    settings = services.settings

    if not services.client.is_authenticated():
        logger.error(
            "No Google service-account key found. Run `python -m volunteer_sync setup` first."
        )
        sys.exit(1)

    scheduler = build_scheduler(services.service)
    unsubscribe = attach_delta_trigger(scheduler, services.service, services.store)
    scheduler.start()
    logger.info(
        "Scheduler started (sync every %ds, change cleanup at %02d:00 UTC)",
        settings.sync_interval_ms // 1000,
        settings.cleanup_hour,
    )

    # Catch-up sync before the first interval fires
    outcome = await services.service.perform_sync()
    if not outcome.success:
        logger.warning("Initial sync did not succeed: %s", outcome.error or outcome.reason)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        unsubscribe()
        scheduler.shutdown()
        logger.info("Goodbye.")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="volunteer_sync")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("setup", help="Store the Google service-account key")

    sync = sub.add_parser("sync", help="Run one sync and exit")
    sync.add_argument("--full", action="store_true", help="Force a full sync")
    sync.add_argument("--download-only", action="store_true", help="Skip the upload phase")
    sync.add_argument(
        "--entity",
        action="append",
        choices=["volunteers", "events", "attendance"],
        help="Restrict to an entity type (repeatable)",
    )

    sub.add_parser("reset", help="Clear sync state and tracked changes")
    sub.add_parser("daemon", help="Run the scheduler (default)")
    return parser


def main(argv=None) -> None:
    args = _parser().parse_args(argv)

    if args.command == "setup":
        _run_setup()
    elif args.command == "sync":
        sys.exit(asyncio.run(_run_sync(args)))
    elif args.command == "reset":
        asyncio.run(_run_reset())
    else:
        asyncio.run(_run_daemon())


if __name__ == "__main__":
    main()
