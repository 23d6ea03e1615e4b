"""Transaction model for payments synced from either payments provider."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from syncengine.database import Base


class Transaction(Base):
    """
    A payment as reported by an external payments provider.

    Keyed by (source, external_id) so re-syncing overwrites instead of
    duplicating.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)

    customer_email: Mapped[str | None] = mapped_column(String(320), index=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(255))

    # Minor currency units (cents)
    amount: Mapped[int | None] = mapped_column(Integer)
    currency: Mapped[str | None] = mapped_column(String(10))
    status: Mapped[str | None] = mapped_column(String(50))

    external_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    raw: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_transactions_source_external_id"),
        Index("idx_transactions_created", external_created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.source}:{self.external_id} {self.status}>"
