"""
Idempotent persistence of normalized feed events.

Functions here run on a caller-supplied connection and never commit, so a
batch insert can share a transaction with the progress update for the same
page.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

import orjson

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

INSERT_EVENT_SQL = """
    INSERT INTO ingested_events (
        id, timestamp_ms, timestamp, type, name, user_id, session_id, properties, session, raw
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO NOTHING
"""


@dataclass(frozen=True)
class EventRecord:
    """Persistence-ready event."""

    id: str
    timestamp_ms: int
    type: Optional[str]
    name: Optional[str]
    user_id: Optional[str]
    session_id: Optional[str]
    properties: Any
    session: Any
    raw: dict[str, Any]


def _json_arg(value: Any) -> Optional[str]:
    if value is None:
        return None
    return orjson.dumps(value).decode("utf-8")


def _iso_timestamp(timestamp_ms: int) -> str:
    return (_EPOCH + timedelta(milliseconds=timestamp_ms)).isoformat().replace("+00:00", "Z")


def _row(record: EventRecord) -> tuple:
    return (
        record.id,
        record.timestamp_ms,
        _iso_timestamp(record.timestamp_ms),
        record.type,
        record.name,
        record.user_id,
        record.session_id,
        _json_arg(record.properties),
        _json_arg(record.session),
        _json_arg(record.raw),
    )


def upsert_batch(conn: sqlite3.Connection, records: Sequence[EventRecord]) -> int:
    """
    Insert a batch of events, leaving already-stored ids untouched.

    Args:
        conn: Open connection; the caller owns the transaction
        records: Normalized events

    Returns:
        Number of rows actually inserted (conflicts are not counted)

    Raises:
        sqlite3.Error: If the insert fails
    """
    if not records:
        return 0

    cursor = conn.executemany(INSERT_EVENT_SQL, [_row(r) for r in records])
    inserted = max(cursor.rowcount, 0)

    logger.debug(
        "Batch upserted",
        extra={"records": len(records), "inserted": inserted},
    )
    return inserted


def count_events(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM ingested_events").fetchone()
    return int(row[0]) if row else 0
