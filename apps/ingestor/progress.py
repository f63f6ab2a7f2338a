"""
Progress store: the durable cursor/checkpoint record of a feed.

One row per feed name. The row is only ever written inside the transaction
that persists the page it describes, or by the cursor-invalidation recovery.
"""

import sqlite3
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Progress:
    """Resumable position in the feed.

    Attributes:
        until_ms: Upper time bound sent as `until`, if any
        cursor: Continuation token for the next page, None when none is held
        checkpoint_ms: Oldest event timestamp of the last committed page
    """

    until_ms: Optional[int] = None
    cursor: Optional[str] = None
    checkpoint_ms: Optional[int] = None


def ensure(conn: sqlite3.Connection, name: str) -> None:
    conn.execute(
        "INSERT INTO ingestion_progress (name) VALUES (?) ON CONFLICT (name) DO NOTHING",
        (name,),
    )


def load(conn: sqlite3.Connection, name: str) -> Progress:
    row = conn.execute(
        "SELECT until_ms, cursor, checkpoint_ms FROM ingestion_progress WHERE name = ? LIMIT 1",
        (name,),
    ).fetchone()
    if row is None:
        return Progress()

    until_ms, cursor, checkpoint_ms = row[0], row[1], row[2]
    return Progress(
        until_ms=None if until_ms is None else int(until_ms),
        cursor=cursor or None,
        checkpoint_ms=None if checkpoint_ms is None else int(checkpoint_ms),
    )


def save(conn: sqlite3.Connection, name: str, progress: Progress) -> None:
    """Write progress for `name` and stamp updated_at. Does not commit."""
    conn.execute(
        """
        UPDATE ingestion_progress
        SET until_ms = ?, cursor = ?, checkpoint_ms = ?,
            updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
        WHERE name = ?
        """,
        (progress.until_ms, progress.cursor, progress.checkpoint_ms, name),
    )
