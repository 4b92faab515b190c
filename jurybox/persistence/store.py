"""Session stores for evaluation sessions.

The orchestrator persists its EvaluationSession after every phase
transition through a SessionStore so that progress polling and result
retrieval survive the orchestrator object. The in-memory store backs
tests and single-process use; the SQLite store keeps one JSON payload
per session.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

import aiosqlite

from jurybox.schemas.session import EvaluationSession, SessionPhase

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Keyed storage for EvaluationSession snapshots."""

    @abstractmethod
    async def get(self, session_id: str) -> EvaluationSession | None:
        """Return the stored session, or None when unknown."""

    @abstractmethod
    async def put(self, session: EvaluationSession) -> None:
        """Insert or replace the stored snapshot of a session."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session. Returns True if it existed."""

    @abstractmethod
    async def list_ids(self, phase: SessionPhase | None = None) -> list[str]:
        """Session ids, oldest first, optionally filtered by phase."""


class InMemorySessionStore(SessionStore):
    """Dict-backed store holding deep copies of each snapshot."""

    def __init__(self) -> None:
        self._sessions: dict[str, EvaluationSession] = {}

    async def get(self, session_id: str) -> EvaluationSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def put(self, session: EvaluationSession) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_ids(self, phase: SessionPhase | None = None) -> list[str]:
        ordered = sorted(self._sessions.values(), key=lambda s: s.created_at)
        return [s.session_id for s in ordered if phase is None or s.phase == phase]


class SQLiteSessionStore(SessionStore):
    """Session store backed by SQLite.

    Operates on an aiosqlite connection initialized by
    database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def get(self, session_id: str) -> EvaluationSession | None:
        async with self._db.execute(
            "SELECT payload_json FROM sessions WHERE session_id = ?", (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return EvaluationSession.model_validate_json(row[0])

    async def put(self, session: EvaluationSession) -> None:
        await self._db.execute(
            """
            INSERT OR REPLACE INTO sessions (session_id, phase, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.phase.value,
                session.model_dump_json(),
                datetime.now(UTC).isoformat(),
            ),
        )
        await self._db.commit()
        logger.debug("Saved session %s (%s)", session.session_id, session.phase)

    async def delete(self, session_id: str) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM sessions WHERE session_id = ?", (session_id,),
        )
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted session %s", session_id)
        return deleted

    async def list_ids(self, phase: SessionPhase | None = None) -> list[str]:
        query = "SELECT session_id, payload_json FROM sessions"
        params: tuple = ()
        if phase is not None:
            query += " WHERE phase = ?"
            params = (phase.value,)
        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        sessions = [EvaluationSession.model_validate_json(row[1]) for row in rows]
        sessions.sort(key=lambda s: s.created_at)
        return [s.session_id for s in sessions]
