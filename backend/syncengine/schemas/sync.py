"""Pydantic schemas for sync triggers and run history."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncContinuation(BaseModel):
    """Resume marker handed back by a chunked run that has windows left."""

    sync_run_id: uuid.UUID
    chunk_index: int | None = Field(None, ge=0)
    chunks_total: int | None = Field(None, ge=0)
    total_synced: int | None = Field(None, ge=0)


class SyncRequest(BaseModel):
    """Body of POST /sync/{source}; every field is optional."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime | None = Field(None, alias="startDate")
    end_date: datetime | None = Field(None, alias="endDate")
    force: bool = False
    fetch_all: bool = Field(False, alias="fetchAll")
    continuation: SyncContinuation | None = None

    @model_validator(mode="after")
    def check_range(self) -> "SyncRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self

    def continuation_payload(self) -> dict[str, Any] | None:
        if self.continuation is None:
            return None
        return self.continuation.model_dump(mode="json", exclude_none=True)


class SyncRunOut(BaseModel):
    """One entry of the sync run ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    source: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    error_message: str | None = None
    total_fetched: int = 0
    total_inserted: int = 0
    total_skipped: int = 0
    checkpoint: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="run_metadata")


class SyncRunsResponse(BaseModel):
    runs: list[SyncRunOut]


class SyncStateOut(BaseModel):
    """Coverage of one source plus how stale it is."""

    model_config = ConfigDict(from_attributes=True)

    source: str
    backfill_start: datetime | None = None
    fresh_until: datetime | None = None
    last_success_at: datetime | None = None
    last_success_run_id: uuid.UUID | None = None
    last_success_status: str | None = None
    last_error_at: datetime | None = None
    last_error_message: str | None = None
    freshness: str
    recommended_range: str | None = None


class SyncStatesResponse(BaseModel):
    available: bool
    sources: list[SyncStateOut]


class ResetStuckResponse(BaseModel):
    reset_count: int
    run_ids: list[uuid.UUID]
    timeout_minutes: int
