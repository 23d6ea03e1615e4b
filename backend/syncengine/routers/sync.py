"""Trigger surface and run history for sync jobs."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.config import get_settings
from syncengine.database import get_db
from syncengine.models import SyncRunStatus, SyncSource
from syncengine.schemas import (
    ResetStuckResponse,
    SyncRequest,
    SyncRunOut,
    SyncRunsResponse,
    SyncStateOut,
    SyncStatesResponse,
)
from syncengine.security import limiter, require_admin_key
from syncengine.services.ingestion import (
    SyncInProgressError,
    SyncJobError,
    SyncService,
)
from syncengine.services.sync_runs import InvalidRunTransition, SyncRunLedger
from syncengine.services.sync_state import (
    SyncStateTracker,
    freshness_bucket,
    recommended_range,
)
from syncengine.tasks.scheduler import continue_sync_job

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/sync", tags=["sync"])


async def get_sync_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SyncService:
    """Dependency building a SyncService with the configured provider clients."""
    return SyncService(db)


def _parse_source(source: str) -> SyncSource:
    try:
        return SyncSource(source)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown sync source: {source}") from None


@router.post("/runs/reset-stuck", response_model=ResetStuckResponse, dependencies=[Depends(require_admin_key)])
async def reset_stuck_runs(
    db: Annotated[AsyncSession, Depends(get_db)],
    timeout_minutes: int = Query(settings.stuck_run_timeout_minutes, ge=0, le=24 * 60),
) -> ResetStuckResponse:
    """
    Force-fail runs stuck in running/continuing.

    timeout_minutes=0 resets every active run (emergency reset).
    """
    run_ids = await SyncRunLedger(db).reset_stuck_runs(timeout_minutes)
    return ResetStuckResponse(
        reset_count=len(run_ids),
        run_ids=run_ids,
        timeout_minutes=timeout_minutes,
    )


@router.get("/runs", response_model=SyncRunsResponse, dependencies=[Depends(require_admin_key)])
async def list_sync_runs(
    db: Annotated[AsyncSession, Depends(get_db)],
    source: str | None = None,
    status: SyncRunStatus | None = None,
    limit: int = Query(50, ge=1, le=500),
) -> SyncRunsResponse:
    """Most recent sync runs, newest first."""
    if source is not None:
        _parse_source(source)
    runs = await SyncRunLedger(db).list_runs(
        source=source, status=status.value if status else None, limit=limit
    )
    return SyncRunsResponse(runs=[SyncRunOut.model_validate(run) for run in runs])


@router.get("/state", response_model=SyncStatesResponse, dependencies=[Depends(require_admin_key)])
async def get_sync_state(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SyncStatesResponse:
    """Coverage per source with a freshness bucket and a suggested next window."""
    tracker = SyncStateTracker(db)
    available = await tracker.is_available()
    states = await tracker.read_all() if available else []

    sources = []
    for state in states:
        bucket = freshness_bucket(state.fresh_until)
        sources.append(
            SyncStateOut(
                source=state.source,
                backfill_start=state.backfill_start,
                fresh_until=state.fresh_until,
                last_success_at=state.last_success_at,
                last_success_run_id=state.last_success_run_id,
                last_success_status=state.last_success_status,
                last_error_at=state.last_error_at,
                last_error_message=state.last_error_message,
                freshness=bucket.value,
                recommended_range=recommended_range(bucket),
            )
        )
    return SyncStatesResponse(available=available, sources=sources)


@router.post("/{source}", dependencies=[Depends(require_admin_key)])
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def trigger_sync(
    request: Request,
    source: str,
    service: Annotated[SyncService, Depends(get_sync_service)],
    background_tasks: BackgroundTasks,
    body: SyncRequest | None = None,
) -> JSONResponse:
    """
    Run one sync invocation for a source.

    Responds 200 when the run completed, or 202 with a continuation when a
    chunked job has more windows left (resumed in the background when
    auto_continue is on).
    """
    sync_source = _parse_source(source)
    params = body or SyncRequest()

    try:
        outcome = await service.run(
            sync_source,
            start_date=params.start_date,
            end_date=params.end_date,
            force=params.force,
            fetch_all=params.fetch_all,
            continuation=params.continuation_payload(),
        )
    except SyncInProgressError as e:
        return JSONResponse(
            status_code=409,
            content={"error": str(e), "sync_run_id": str(e.run_id)},
        )
    except InvalidRunTransition as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except SyncJobError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "error": str(e),
                "sync_run_id": str(e.run_id) if e.run_id else None,
                "processed": e.processed,
            },
        )

    content = {
        "success": True,
        outcome.count_field: outcome.synced,
        "duration_ms": outcome.duration_ms,
        "sync_run_id": str(outcome.run_id),
        "status": outcome.status,
        "pages_fetched": outcome.pages_fetched,
        "truncated": outcome.truncated,
    }

    if outcome.continuation:
        content["continuation"] = outcome.continuation
        if settings.auto_continue:
            background_tasks.add_task(continue_sync_job, sync_source, outcome.continuation)
            content["auto_continue"] = True
        return JSONResponse(status_code=202, content=content)

    return JSONResponse(status_code=200, content=content)
