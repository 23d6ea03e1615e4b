"""SyncRun model: one row per invocation of a sync job."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from syncengine.database import Base


class SyncSource(StrEnum):
    """External API integrations the engine pulls from."""

    PAYMENTS_PRIMARY = "payments-primary"
    PAYMENTS_SECONDARY = "payments-secondary"
    INVOICES = "invoices"
    CRM = "crm"
    MESSAGING = "messaging"


class SyncRunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    CONTINUING = "continuing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (SyncRunStatus.RUNNING, SyncRunStatus.CONTINUING)
TERMINAL_STATUSES = (SyncRunStatus.COMPLETED, SyncRunStatus.FAILED)


def utcnow() -> datetime:
    return datetime.now(UTC)


class SyncRun(Base):
    """
    Audit trail of a single sync invocation.

    Rows are operational history and may be pruned; cumulative coverage
    lives in SyncState.
    """

    __tablename__ = "sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncRunStatus.RUNNING.value
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)

    # Progress counters
    total_fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_inserted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Resume point for chunked / long-running jobs
    checkpoint: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    # "metadata" is reserved on declarative classes
    run_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)

    __table_args__ = (
        Index("idx_sync_runs_source_status", source, status),
        Index("idx_sync_runs_started_at", started_at),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<SyncRun {self.source} {self.id}: {self.status}>"
