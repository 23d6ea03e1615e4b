#!/usr/bin/env python3
"""
Emergency reset of stuck sync runs.

Marks every running/continuing sync run as failed so new syncs can start.
Pass a timeout in minutes to only reset runs older than that (default 0:
reset all active runs).

    python scripts/reset_stuck_runs.py [timeout_minutes]
"""

import asyncio
import os
import sys

import asyncpg
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").replace("+asyncpg", "").replace("postgresql://", "postgres://")

MANUAL_RESET_MESSAGE = "Manual emergency reset"


def log(msg):
    """Print with flush for immediate output."""
    print(msg, flush=True)


async def reset_stuck_runs(timeout_minutes: int) -> int:
    """Fail active runs; returns how many were reset."""
    conn = await asyncpg.connect(DATABASE_URL)
    try:
        if timeout_minutes > 0:
            message = f"Stuck run reset: still active after {timeout_minutes} minute timeout"
            rows = await conn.fetch(
                """
                UPDATE sync_runs
                SET status = 'failed', completed_at = NOW(), error_message = $1
                WHERE status IN ('running', 'continuing')
                  AND started_at < NOW() - make_interval(mins => $2)
                RETURNING id, source, started_at
                """,
                message,
                timeout_minutes,
            )
        else:
            rows = await conn.fetch(
                """
                UPDATE sync_runs
                SET status = 'failed', completed_at = NOW(), error_message = $1
                WHERE status IN ('running', 'continuing')
                RETURNING id, source, started_at
                """,
                MANUAL_RESET_MESSAGE,
            )
    finally:
        await conn.close()

    for row in rows:
        log(f"  reset {row['source']} run {row['id']} (started {row['started_at']})")
    return len(rows)


if __name__ == "__main__":
    if not DATABASE_URL:
        log("Error: DATABASE_URL is not set (environment or .env)")
        sys.exit(1)

    try:
        timeout = int(sys.argv[1]) if len(sys.argv) > 1 else 0
    except ValueError:
        log(f"Error: timeout must be an integer number of minutes, got {sys.argv[1]!r}")
        sys.exit(1)
    if timeout < 0:
        log("Error: timeout must be >= 0")
        sys.exit(1)

    count = asyncio.run(reset_stuck_runs(timeout))
    log(f"Reset {count} stuck sync runs")
