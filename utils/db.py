"""
Database utilities for SQLite operations.

Provides connection management and schema initialization for the ingestion
worker. Connections are short-lived: open one per unit of work with
connection() and use `with conn:` for a transaction.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


def get_conn(db_path: str) -> sqlite3.Connection:
    """
    Get SQLite database connection with dict-friendly row factory.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        sqlite3.Error: If connection fails
    """
    # Ensure database directory exists
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection and close it on every exit path."""
    conn = get_conn(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_schema(db_path: str) -> None:
    """
    Initialize database schema by creating required tables if they don't exist.

    Creates:
    - ingested_events: one row per feed event, keyed by event id
    - ingestion_progress: one resumable cursor/checkpoint row per feed name

    Raises:
        sqlite3.Error: If schema creation fails
    """
    with connection(db_path) as conn, conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ingested_events (
                id TEXT PRIMARY KEY,
                timestamp_ms INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                type TEXT,
                name TEXT,
                user_id TEXT,
                session_id TEXT,
                properties TEXT,
                session TEXT,
                raw TEXT NOT NULL,
                inserted_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
        """)

        conn.execute(
            "CREATE INDEX IF NOT EXISTS ingested_events_timestamp_ms_idx ON ingested_events (timestamp_ms)"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS ingestion_progress (
                name TEXT PRIMARY KEY,
                until_ms INTEGER,
                cursor TEXT,
                checkpoint_ms INTEGER,
                updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
        """)

    logger.info("DB schema ready", extra={"db_path": db_path})
