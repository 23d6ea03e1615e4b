"""SyncRun ledger and stuck-run reconciler."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.models import ACTIVE_STATUSES, SyncRun, SyncRunStatus

logger = logging.getLogger(__name__)

# pending -> running -> {continuing <-> running}* -> {completed | failed}
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    SyncRunStatus.PENDING: {SyncRunStatus.RUNNING, SyncRunStatus.FAILED},
    SyncRunStatus.RUNNING: {
        SyncRunStatus.CONTINUING,
        SyncRunStatus.COMPLETED,
        SyncRunStatus.FAILED,
    },
    SyncRunStatus.CONTINUING: {
        SyncRunStatus.RUNNING,
        SyncRunStatus.COMPLETED,
        SyncRunStatus.FAILED,
    },
    SyncRunStatus.COMPLETED: set(),
    SyncRunStatus.FAILED: set(),
}

MANUAL_RESET_MESSAGE = "Manual emergency reset"


class InvalidRunTransition(Exception):
    """Raised when a run is moved to a status its current status forbids."""

    pass


class SyncRunNotFound(Exception):
    pass


class SyncRunLedger:
    """
    Audit trail of sync invocations.

    Every mutation commits immediately so the ledger reflects progress even
    if the process dies mid-run.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def start(
        self,
        source: str,
        metadata: dict[str, Any] | None = None,
        status: SyncRunStatus = SyncRunStatus.RUNNING,
    ) -> SyncRun:
        """Create a run row for a new invocation."""
        run = SyncRun(
            source=str(source),
            status=status.value,
            started_at=datetime.now(UTC),
            completed_at=None,
            error_message=None,
            total_fetched=0,
            total_inserted=0,
            total_skipped=0,
            checkpoint=None,
            run_metadata=metadata or {},
        )
        self.db.add(run)
        await self.db.commit()
        logger.info(f"Started sync run {run.id} for {source}")
        return run

    async def get(self, run_id: uuid.UUID) -> SyncRun | None:
        return await self.db.get(SyncRun, run_id, populate_existing=True)

    async def _require(self, run_id: uuid.UUID) -> SyncRun:
        run = await self.get(run_id)
        if run is None:
            raise SyncRunNotFound(f"Sync run {run_id} not found")
        return run

    async def _transition(self, run_id: uuid.UUID, status: SyncRunStatus, **values: Any) -> SyncRun:
        run = await self._require(run_id)
        if status not in ALLOWED_TRANSITIONS[SyncRunStatus(run.status)]:
            raise InvalidRunTransition(
                f"Sync run {run_id} cannot move from {run.status} to {status.value}"
            )

        run.status = status.value
        for key, value in values.items():
            setattr(run, key, value)
        await self.db.commit()
        return run

    async def mark_running(self, run_id: uuid.UUID) -> SyncRun:
        return await self._transition(run_id, SyncRunStatus.RUNNING)

    async def mark_continuing(
        self,
        run_id: uuid.UUID,
        checkpoint: dict[str, Any],
        counters: dict[str, int] | None = None,
    ) -> SyncRun:
        """Park a chunked run until its next invocation resumes it."""
        return await self._transition(
            run_id, SyncRunStatus.CONTINUING, checkpoint=checkpoint, **(counters or {})
        )

    async def save_checkpoint(
        self,
        run_id: uuid.UUID,
        checkpoint: dict[str, Any],
        counters: dict[str, int] | None = None,
    ) -> SyncRun:
        """Persist partial progress without changing status."""
        run = await self._require(run_id)
        run.checkpoint = checkpoint
        for key, value in (counters or {}).items():
            setattr(run, key, value)
        await self.db.commit()
        return run

    async def complete(
        self,
        run_id: uuid.UUID,
        counters: dict[str, int] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SyncRun:
        values: dict[str, Any] = {"completed_at": datetime.now(UTC), **(counters or {})}
        if metadata is not None:
            values["run_metadata"] = metadata
        run = await self._transition(run_id, SyncRunStatus.COMPLETED, **values)
        logger.info(f"Sync run {run_id} completed")
        return run

    async def fail(
        self,
        run_id: uuid.UUID,
        error_message: str,
        counters: dict[str, int] | None = None,
    ) -> SyncRun:
        run = await self._transition(
            run_id,
            SyncRunStatus.FAILED,
            completed_at=datetime.now(UTC),
            error_message=error_message,
            **(counters or {}),
        )
        logger.warning(f"Sync run {run_id} failed: {error_message}")
        return run

    async def list_runs(
        self,
        source: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[SyncRun]:
        """Most recent runs first."""
        query = select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)
        if source:
            query = query.where(SyncRun.source == source)
        if status:
            query = query.where(SyncRun.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def active_runs(
        self,
        source: str | None = None,
        younger_than_minutes: int | None = None,
    ) -> list[SyncRun]:
        """Runs in running/continuing, optionally only those not yet stale."""
        query = select(SyncRun).where(SyncRun.status.in_([s.value for s in ACTIVE_STATUSES]))
        if source:
            query = query.where(SyncRun.source == source)
        if younger_than_minutes is not None:
            cutoff = datetime.now(UTC) - timedelta(minutes=younger_than_minutes)
            query = query.where(SyncRun.started_at >= cutoff)
        result = await self.db.execute(query.order_by(SyncRun.started_at.desc()))
        return list(result.scalars().all())

    async def reset_stuck_runs(self, timeout_minutes: int) -> list[uuid.UUID]:
        """
        Force-fail runs left active past `timeout_minutes`.

        A timeout of 0 resets every active run regardless of age. Records the
        stuck runs already wrote stay in place (upserts are idempotent).
        """
        if timeout_minutes < 0:
            raise ValueError("timeout_minutes must be >= 0")

        now = datetime.now(UTC)
        query = select(SyncRun.id).where(SyncRun.status.in_([s.value for s in ACTIVE_STATUSES]))
        if timeout_minutes > 0:
            query = query.where(SyncRun.started_at < now - timedelta(minutes=timeout_minutes))
            message = f"Stuck run reset: still active after {timeout_minutes} minute timeout"
        else:
            message = MANUAL_RESET_MESSAGE

        stuck_ids = list((await self.db.execute(query)).scalars().all())
        if not stuck_ids:
            return []

        await self.db.execute(
            update(SyncRun)
            .where(SyncRun.id.in_(stuck_ids))
            .where(SyncRun.status.in_([s.value for s in ACTIVE_STATUSES]))
            .values(
                status=SyncRunStatus.FAILED.value,
                completed_at=now,
                error_message=message,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.warning(f"Reset {len(stuck_ids)} stuck sync runs ({message})")
        return stuck_ids

    async def prune(self, retention_days: int) -> int:
        """
        Delete runs older than the retention window.

        The most recent completed run of each source is always kept.
        """
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)

        completed = await self.db.execute(
            select(SyncRun.id, SyncRun.source)
            .where(SyncRun.status == SyncRunStatus.COMPLETED.value)
            .order_by(SyncRun.started_at.desc())
        )
        preserve: dict[str, uuid.UUID] = {}
        for run_id, source in completed.all():
            preserve.setdefault(source, run_id)

        stmt = delete(SyncRun).where(SyncRun.started_at < cutoff)
        if preserve:
            stmt = stmt.where(SyncRun.id.not_in(list(preserve.values())))
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        await self.db.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Pruned {deleted} sync runs older than {retention_days} days")
        return deleted
