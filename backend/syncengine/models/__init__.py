"""Database models."""

from syncengine.models.contact import Contact
from syncengine.models.invoice import Invoice
from syncengine.models.sync_run import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    SyncRun,
    SyncRunStatus,
    SyncSource,
)
from syncengine.models.sync_state import SyncState
from syncengine.models.transaction import Transaction

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Contact",
    "Invoice",
    "SyncRun",
    "SyncRunStatus",
    "SyncSource",
    "SyncState",
    "Transaction",
]
