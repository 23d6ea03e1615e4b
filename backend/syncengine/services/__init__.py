"""Services for syncing external sources and tracking sync runs."""

from syncengine.services.ingestion import SyncInProgressError, SyncJobError, SyncOutcome, SyncService
from syncengine.services.sync_runs import SyncRunLedger
from syncengine.services.sync_state import SyncStateTracker

__all__ = [
    "SyncInProgressError",
    "SyncJobError",
    "SyncOutcome",
    "SyncRunLedger",
    "SyncService",
    "SyncStateTracker",
]
