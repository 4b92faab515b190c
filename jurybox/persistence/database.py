"""SQLite database layer for durable logs and session snapshots.

Manages the SQLite connection and schema creation. Uses aiosqlite for
async access with WAL mode so audit readers do not block writers.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS log_topics (
    topic_id    TEXT PRIMARY KEY,
    memo        TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS log_entries (
    topic_id    TEXT NOT NULL REFERENCES log_topics(topic_id) ON DELETE CASCADE,
    seq         INTEGER NOT NULL,
    data        BLOB NOT NULL,
    appended_at TEXT NOT NULL,
    PRIMARY KEY (topic_id, seq)
);

CREATE TABLE IF NOT EXISTS sessions (
    session_id   TEXT PRIMARY KEY,
    phase        TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_phase ON sessions(phase);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Open the database and create tables if needed.

    Args:
        db_path: Path to the SQLite file (supports ~), or ":memory:".

    Returns:
        An open aiosqlite connection ready for use.
    """
    if db_path != ":memory:":
        resolved = Path(db_path).expanduser()
        resolved.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(resolved)

    db = await aiosqlite.connect(db_path)
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("JuryBox database initialized at %s", db_path)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
