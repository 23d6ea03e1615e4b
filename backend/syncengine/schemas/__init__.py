"""Pydantic schemas for API request/response validation."""

from syncengine.schemas.sync import (
    ResetStuckResponse,
    SyncContinuation,
    SyncRequest,
    SyncRunOut,
    SyncRunsResponse,
    SyncStateOut,
    SyncStatesResponse,
)

__all__ = [
    "ResetStuckResponse",
    "SyncContinuation",
    "SyncRequest",
    "SyncRunOut",
    "SyncRunsResponse",
    "SyncStateOut",
    "SyncStatesResponse",
]
