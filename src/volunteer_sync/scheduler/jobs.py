"""
APScheduler jobs for background sync.

  periodic_sync   every sync_interval_ms; the strategy selector decides
                  whether anything actually needs to move
  change_cleanup  daily at cleanup_hour; drops synced change entries older
                  than change_retention_days
  delta_sync      one-shot, (re)scheduled after each local mutation so a
                  burst of edits produces a single sync

The scheduler runs in the daemon process (wired in __main__) or inside the
API process when create_app(start_scheduler=True).
"""
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from volunteer_sync.config import get_settings
from volunteer_sync.store.local import ORIGIN_LOCAL, RecordMutation

logger = logging.getLogger(__name__)

DELTA_SYNC_JOB_ID = "delta_sync"
MAX_DEBOUNCE_SECONDS = 5.0


def build_scheduler(service) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        service: SyncService the jobs drive.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        seconds=settings.sync_interval_ms / 1000,
        id="periodic_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"service": service},
    )

    scheduler.add_job(
        _cleanup_changes,
        trigger="cron",
        hour=settings.cleanup_hour,
        minute=0,
        id="change_cleanup",
        replace_existing=True,
        kwargs={"service": service, "days": settings.change_retention_days},
    )

    return scheduler


def debounce_seconds(delta_sync_interval_ms: int) -> float:
    """Delay before a mutation-triggered sync: half the delta interval, at most 5s."""
    return min(delta_sync_interval_ms / 2000, MAX_DEBOUNCE_SECONDS)


class DeltaSyncTrigger:
    """
    LocalStore subscriber that schedules a debounced one-shot sync.

    Every local mutation pushes the pending job's run time back; sync-origin
    writes are ignored.
    """

    def __init__(self, scheduler: AsyncIOScheduler, service, delay_seconds: float):
        self.scheduler = scheduler
        self.service = service
        self.delay_seconds = delay_seconds

    def __call__(self, mutation: RecordMutation) -> None:
        if mutation.origin != ORIGIN_LOCAL:
            return
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.delay_seconds)
        self.scheduler.add_job(
            _delta_sync,
            trigger="date",
            run_date=run_date,
            id=DELTA_SYNC_JOB_ID,
            replace_existing=True,
            kwargs={"service": self.service},
        )


def attach_delta_trigger(scheduler: AsyncIOScheduler, service, store):
    """Subscribe a DeltaSyncTrigger to the store; returns the unsubscribe callable."""
    settings = get_settings()
    trigger = DeltaSyncTrigger(scheduler, service, debounce_seconds(settings.delta_sync_interval_ms))
    return store.subscribe(trigger)


async def _periodic_sync(service) -> None:
    """Scheduled sync. Never raises, so the scheduler stays alive."""
    try:
        outcome = await service.perform_sync()
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)
        return
    if outcome.reason == "already_syncing":
        logger.info("Periodic sync skipped: previous sync still running")
    elif not outcome.success:
        logger.error("Periodic sync failed: %s", outcome.error or outcome.reason)


async def _delta_sync(service) -> None:
    """Mutation-triggered sync; the selector will normally pick delta."""
    try:
        outcome = await service.perform_sync()
    except Exception as exc:
        logger.error("Delta sync failed: %s", exc)
        return
    if not outcome.success and outcome.reason != "already_syncing":
        logger.error("Delta sync failed: %s", outcome.error or outcome.reason)


def _cleanup_changes(service, days: int) -> None:
    try:
        removed = service.cleanup_changes(days)
    except Exception as exc:
        logger.error("Change cleanup failed: %s", exc)
        return
    logger.info("Change cleanup removed %d entries", removed)
