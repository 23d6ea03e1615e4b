"""Health endpoints."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.database import get_db
from syncengine.models import Contact, Invoice, SyncSource, Transaction
from syncengine.services.sync_runs import SyncRunLedger
from syncengine.services.sync_state import SyncStateTracker, freshness_bucket

router = APIRouter(tags=["health"])


class SourceStatus(BaseModel):
    """Status of one sync source."""

    last_sync: datetime | None
    fresh_until: datetime | None = None
    freshness: str
    record_count: int
    active_runs: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    sources: dict[str, SourceStatus]


async def _record_count(db: AsyncSession, source: SyncSource) -> int:
    if source == SyncSource.INVOICES:
        query = select(func.count(Invoice.id))
    elif source in (SyncSource.CRM, SyncSource.MESSAGING):
        query = select(func.count(Contact.id)).where(Contact.source == source.value)
    else:
        query = select(func.count(Transaction.id)).where(Transaction.source == source.value)
    result = await db.execute(query)
    return result.scalar() or 0


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """
    Health check endpoint with sync status.

    Returns last successful sync, freshness and record counts per source.
    """
    tracker = SyncStateTracker(db)
    states = {state.source: state for state in await tracker.read_all()}
    active = await SyncRunLedger(db).active_runs()

    sources = {}
    for source in SyncSource:
        state = states.get(source.value)
        fresh_until = state.fresh_until if state else None
        sources[source.value] = SourceStatus(
            last_sync=state.last_success_at if state else None,
            fresh_until=fresh_until,
            freshness=freshness_bucket(fresh_until).value,
            record_count=await _record_count(db, source),
            active_runs=sum(1 for run in active if run.source == source.value),
        )

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        sources=sources,
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Simple readiness probe for container orchestration."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict:
    """Simple liveness probe for container orchestration."""
    return {"status": "alive"}
