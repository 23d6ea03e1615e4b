"""Cumulative sync coverage per source, kept apart from run history."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any
from weakref import WeakKeyDictionary

from sqlalchemy import DateTime, func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.models import SyncRunStatus, SyncState
from syncengine.services.store import dialect_insert

logger = logging.getLogger(__name__)

# Whether the coverage table exists, probed once per engine
_table_available: "WeakKeyDictionary[Engine, bool]" = WeakKeyDictionary()


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_missing_relation_error(error: BaseException) -> bool:
    """Recognize "coverage table not there (yet)" failures from the store."""
    orig = getattr(error, "orig", None) or error
    code = ""
    for attr in ("sqlstate", "pgcode", "code"):
        value = getattr(orig, attr, None)
        if value:
            code = str(value)
            break

    message = str(error).lower()
    table = SyncState.__tablename__
    if code == "42P01" or f'relation "{table}" does not exist' in message:
        return True
    if f"no such table: {table}" in message:
        return True
    if code.upper().startswith("PGRST") and "schema cache" in message and table in message:
        return True
    return "could not find the table" in message and table in message


class FreshnessBucket(StrEnum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


def freshness_bucket(fresh_until: datetime | None, now: datetime | None = None) -> FreshnessBucket:
    """Classify how stale a source is: <=24h green, <=7d yellow, else red."""
    if fresh_until is None:
        return FreshnessBucket.RED
    now = as_utc(now) or datetime.now(UTC)
    age = now - as_utc(fresh_until)
    if age <= timedelta(hours=24):
        return FreshnessBucket.GREEN
    if age <= timedelta(days=7):
        return FreshnessBucket.YELLOW
    return FreshnessBucket.RED


def recommended_range(bucket: FreshnessBucket) -> str | None:
    """Sync window to run next for a bucket (None when nothing is needed)."""
    if bucket == FreshnessBucket.RED:
        return "last7d"
    if bucket == FreshnessBucket.YELLOW:
        return "last24h"
    return None


class SyncStateTracker:
    """
    Best-effort writer for SyncState.

    Never raises: a missing table or a failed write is logged and reported
    as None so coverage tracking cannot abort a sync job.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_available(self) -> bool:
        """Probe (once per engine) whether the coverage table exists."""
        bind = self.db.get_bind()
        cached = _table_available.get(bind)
        if cached is not None:
            return cached

        try:
            conn = await self.db.connection()
            available = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).has_table(SyncState.__tablename__)
            )
        except SQLAlchemyError as e:
            logger.warning(f"Could not probe {SyncState.__tablename__} table: {e}")
            return False

        if not available:
            logger.warning(
                f"{SyncState.__tablename__} table not found; coverage tracking disabled"
            )
        _table_available[bind] = available
        return available

    async def _handle_error(self, action: str, source: str, error: SQLAlchemyError) -> None:
        await self.db.rollback()
        if is_missing_relation_error(error):
            _table_available[self.db.get_bind()] = False
            logger.warning(f"[sync_state] table missing during {action} for {source}")
            return
        logger.warning(f"[sync_state] {action} failed for {source}: {error}")

    async def _read(self, source: str) -> SyncState | None:
        result = await self.db.execute(
            select(SyncState)
            .where(SyncState.source == source)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def read(self, source: str) -> SyncState | None:
        """Current coverage row for a source (None if absent or unavailable)."""
        if not await self.is_available():
            return None
        try:
            return await self._read(source)
        except SQLAlchemyError as e:
            await self._handle_error("read", source, e)
            return None

    async def read_all(self) -> list[SyncState]:
        if not await self.is_available():
            return []
        try:
            result = await self.db.execute(select(SyncState).order_by(SyncState.source))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            await self._handle_error("read", "*", e)
            return []

    async def record_success(
        self,
        source: str,
        run_id: uuid.UUID | None = None,
        status: str | None = SyncRunStatus.COMPLETED,
        meta: dict[str, Any] | None = None,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
    ) -> SyncState | None:
        """
        Merge a successful run's range into coverage and clear the last error.

        The widening happens inside the upsert itself, so concurrent writers
        for one source cannot shrink each other's coverage.
        """
        if not await self.is_available():
            return None

        try:
            now = datetime.now(UTC)
            stmt = dialect_insert(self.db, SyncState).values(
                source=source,
                backfill_start=as_utc(range_start),
                fresh_until=as_utc(range_end),
                last_success_at=now,
                last_success_run_id=run_id,
                last_success_status=status or SyncRunStatus.COMPLETED.value,
                last_success_meta=meta or {},
                last_error_at=None,
                last_error_message=None,
                updated_at=now,
            )
            table, excluded = SyncState.__table__, stmt.excluded
            earliest, latest = self._extremes()
            stmt = stmt.on_conflict_do_update(
                index_elements=["source"],
                set_={
                    # A NULL on either side yields the other
                    "backfill_start": earliest(
                        func.coalesce(table.c.backfill_start, excluded.backfill_start),
                        func.coalesce(excluded.backfill_start, table.c.backfill_start),
                        type_=DateTime(timezone=True),
                    ),
                    "fresh_until": latest(
                        func.coalesce(table.c.fresh_until, excluded.fresh_until),
                        func.coalesce(excluded.fresh_until, table.c.fresh_until),
                        type_=DateTime(timezone=True),
                    ),
                    "last_success_at": excluded.last_success_at,
                    "last_success_run_id": excluded.last_success_run_id,
                    "last_success_status": excluded.last_success_status,
                    "last_success_meta": excluded.last_success_meta,
                    "last_error_at": None,
                    "last_error_message": None,
                    "updated_at": excluded.updated_at,
                },
            )
            await self.db.execute(stmt)
            await self.db.commit()

            state = await self._read(source)
            if state is not None:
                logger.info(
                    f"[sync_state] {source} coverage: {state.backfill_start} -> {state.fresh_until}"
                )
            return state
        except SQLAlchemyError as e:
            await self._handle_error("record_success", source, e)
            return None

    async def record_failure(self, source: str, error_message: str) -> SyncState | None:
        """Record the latest error; coverage and last_success_* stay untouched."""
        if not await self.is_available():
            return None

        try:
            now = datetime.now(UTC)
            stmt = dialect_insert(self.db, SyncState).values(
                source=source,
                last_error_at=now,
                last_error_message=error_message,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["source"],
                set_={
                    "last_error_at": stmt.excluded.last_error_at,
                    "last_error_message": stmt.excluded.last_error_message,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.db.execute(stmt)
            await self.db.commit()
            return await self._read(source)
        except SQLAlchemyError as e:
            await self._handle_error("record_failure", source, e)
            return None

    def _extremes(self):
        """Scalar (not aggregate) min/max functions for the session's dialect."""
        if self.db.get_bind().dialect.name == "postgresql":
            return func.least, func.greatest
        # SQLite's multi-argument min()/max() are scalar
        return func.min, func.max
