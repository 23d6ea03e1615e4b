"""Idempotent batched upserts keyed by external stable identifiers."""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.config import get_settings
from syncengine.database import Base

logger = logging.getLogger(__name__)
settings = get_settings()


def dialect_insert(db: AsyncSession, model: type[Base]):
    """INSERT construct with ON CONFLICT support for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert not supported on dialect {dialect!r}")


async def upsert_rows(
    db: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    conflict_keys: Sequence[str],
    batch_size: int = settings.upsert_batch_size,
) -> int:
    """
    Insert-or-overwrite rows, committing once per batch.

    Rows sharing a conflict key within one call collapse to the last one.
    Returns the number of rows written.
    """
    if not rows:
        return 0

    deduped: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        deduped[tuple(row[key] for key in conflict_keys)] = row
    unique_rows = list(deduped.values())

    written = 0
    for i in range(0, len(unique_rows), batch_size):
        batch = unique_rows[i:i + batch_size]
        stmt = dialect_insert(db, model).values(batch)
        update_columns = {
            column: stmt.excluded[column]
            for column in batch[0]
            if column not in conflict_keys
        }
        if "synced_at" in model.__table__.c and "synced_at" not in update_columns:
            update_columns["synced_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=update_columns)

        await db.execute(stmt)
        # Commit each batch so earlier pages survive a later failure
        await db.commit()
        written += len(batch)
        logger.debug(f"Upserted batch {i // batch_size + 1} into {model.__tablename__}: {len(batch)} rows")

    return written
