"""SyncState model: cumulative sync coverage per source."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from syncengine.database import Base


class SyncState(Base):
    """
    Best-known synchronized interval for each data source.

    Independent of any single SyncRun so that it survives ledger retention.
    backfill_start <= fresh_until whenever both are set.
    """

    __tablename__ = "sync_state"

    source: Mapped[str] = mapped_column(String(50), primary_key=True)
    backfill_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    fresh_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_success_run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    last_success_status: Mapped[str | None] = mapped_column(String(20))
    last_success_meta: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error_message: Mapped[str | None] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<SyncState {self.source}: {self.backfill_start} -> {self.fresh_until}>"
