"""Background task scheduler for incremental syncs and run bookkeeping."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from syncengine.config import get_settings
from syncengine.database import async_session_maker
from syncengine.models import SyncRunStatus, SyncSource
from syncengine.services.ingestion import SyncInProgressError, SyncJobError, SyncService
from syncengine.services.sync_runs import SyncRunLedger

logger = logging.getLogger(__name__)
settings = get_settings()

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sync_source_job(source: SyncSource) -> None:
    """Incremental sync of one source, from the end of its coverage to now."""
    logger.info(f"Starting scheduled {source.value} sync")
    try:
        async with async_session_maker() as db:
            service = SyncService(db)
            outcome = await service.run(source)
            logger.info(f"Scheduled {source.value} sync {outcome.status}: {outcome.synced} records")
            if outcome.continuation:
                await continue_sync_job(source, outcome.continuation)
    except SyncInProgressError as e:
        logger.info(f"Skipping scheduled sync: {e}")
    except SyncJobError as e:
        # Already recorded on the run and in sync_state
        logger.error(f"Scheduled {source.value} sync failed (run {e.run_id}): {e}")
    except Exception as e:
        logger.error(f"Scheduled {source.value} sync failed: {e}", exc_info=True)


async def continue_sync_job(source: SyncSource, continuation: dict[str, Any]) -> None:
    """Drive a chunked run to completion, one invocation at a time."""
    while continuation:
        try:
            async with async_session_maker() as db:
                outcome = await SyncService(db).run(source, continuation=continuation)
        except SyncJobError as e:
            logger.error(f"Continuation of {source.value} run {e.run_id} failed: {e}")
            return
        except Exception as e:
            logger.error(f"Continuation of {source.value} sync failed: {e}", exc_info=True)
            return

        logger.info(f"{source.value} run {outcome.run_id} {outcome.status}: {outcome.synced} records so far")
        continuation = outcome.continuation if outcome.status == SyncRunStatus.CONTINUING else None


async def reconcile_stuck_runs_job() -> None:
    """Fail runs that have stayed active past the stuck-run timeout."""
    try:
        async with async_session_maker() as db:
            reset = await SyncRunLedger(db).reset_stuck_runs(settings.stuck_run_timeout_minutes)
            if reset:
                logger.warning(f"Reconciler reset {len(reset)} stuck runs")
    except Exception as e:
        logger.error(f"Stuck run reconciliation failed: {e}", exc_info=True)


async def prune_sync_runs_job() -> None:
    try:
        async with async_session_maker() as db:
            pruned = await SyncRunLedger(db).prune(settings.sync_run_retention_days)
            logger.info(f"Pruned {pruned} old sync runs")
    except Exception as e:
        logger.error(f"Sync run pruning failed: {e}", exc_info=True)


def setup_scheduler() -> AsyncIOScheduler:
    """Set up and start the background task scheduler."""
    global scheduler

    scheduler = AsyncIOScheduler()
    now = datetime.now(UTC)

    poll_intervals = {
        SyncSource.PAYMENTS_PRIMARY: settings.payments_poll_interval_minutes,
        SyncSource.INVOICES: settings.payments_poll_interval_minutes,
        SyncSource.PAYMENTS_SECONDARY: settings.payments_poll_interval_minutes,
        SyncSource.CRM: settings.crm_poll_interval_minutes,
        SyncSource.MESSAGING: settings.crm_poll_interval_minutes,
    }

    # Stagger first runs so sources sharing a limiter do not start together
    for offset, (source, minutes) in enumerate(poll_intervals.items()):
        scheduler.add_job(
            sync_source_job,
            trigger=IntervalTrigger(minutes=minutes),
            args=[source],
            next_run_time=now + timedelta(seconds=30 * offset),
            id=f"sync_{source.value}",
            name=f"Incremental {source.value} sync",
            replace_existing=True,
        )

    scheduler.add_job(
        reconcile_stuck_runs_job,
        trigger=IntervalTrigger(minutes=settings.reconcile_interval_minutes),
        next_run_time=now,
        id="reconcile_stuck_runs",
        name="Reset stuck sync runs",
        replace_existing=True,
    )

    scheduler.add_job(
        prune_sync_runs_job,
        trigger=IntervalTrigger(hours=settings.prune_interval_hours),
        id="prune_sync_runs",
        name="Prune old sync runs",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")

    return scheduler


def shutdown_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global scheduler

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
        scheduler = None
