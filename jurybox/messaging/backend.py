"""Durable log backends.

A backend stores opaque byte payloads in append-only topics and hands
out a strictly increasing sequence marker per topic. The MessageLog is
a thin typed adapter on top of this interface.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

import aiosqlite

logger = logging.getLogger(__name__)


class LogBackend(ABC):
    """Append-only topic storage with replayable subscriptions."""

    @abstractmethod
    async def create_topic(self, memo: str) -> str:
        """Allocate a new topic and return its id."""

    @abstractmethod
    async def append(self, topic_id: str, data: bytes) -> int:
        """Append a payload and return its sequence marker (starting at 1)."""

    @abstractmethod
    async def read(self, topic_id: str, since: int = 0) -> list[tuple[bytes, int]]:
        """Return every (payload, sequence) with sequence > since, in order."""

    @abstractmethod
    async def latest_sequence(self, topic_id: str) -> int:
        """Highest sequence marker in the topic, 0 when empty."""

    @abstractmethod
    async def get_memo(self, topic_id: str) -> str:
        """Memo the topic was created with."""

    @abstractmethod
    def subscribe(self, topic_id: str, since: int = 0) -> AsyncIterator[tuple[bytes, int]]:
        """Stream (payload, sequence) pairs after since, waiting for new ones."""


@dataclass
class _Topic:
    memo: str
    entries: list[bytes] = field(default_factory=list)
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemoryLogBackend(LogBackend):
    """Process-local backend used in tests and single-process deployments."""

    def __init__(self) -> None:
        self._topics: dict[str, _Topic] = {}

    def _topic(self, topic_id: str) -> _Topic:
        try:
            return self._topics[topic_id]
        except KeyError:
            raise KeyError(f"Unknown topic: {topic_id}") from None

    async def create_topic(self, memo: str) -> str:
        topic_id = f"topic-{uuid.uuid4().hex[:12]}"
        self._topics[topic_id] = _Topic(memo=memo)
        return topic_id

    async def append(self, topic_id: str, data: bytes) -> int:
        topic = self._topic(topic_id)
        async with topic.changed:
            topic.entries.append(data)
            sequence = len(topic.entries)
            topic.changed.notify_all()
        return sequence

    async def read(self, topic_id: str, since: int = 0) -> list[tuple[bytes, int]]:
        topic = self._topic(topic_id)
        return [
            (data, seq)
            for seq, data in enumerate(topic.entries, start=1)
            if seq > since
        ]

    async def latest_sequence(self, topic_id: str) -> int:
        return len(self._topic(topic_id).entries)

    async def get_memo(self, topic_id: str) -> str:
        return self._topic(topic_id).memo

    async def subscribe(
        self, topic_id: str, since: int = 0,
    ) -> AsyncIterator[tuple[bytes, int]]:
        topic = self._topic(topic_id)
        cursor = since
        while True:
            async with topic.changed:
                await topic.changed.wait_for(lambda: len(topic.entries) > cursor)
                batch = topic.entries[cursor:]
            for data in batch:
                cursor += 1
                yield data, cursor


class SQLiteLogBackend(LogBackend):
    """Backend persisting topics in SQLite via aiosqlite.

    Subscriptions poll for new rows every poll_interval seconds.
    Operates on a connection opened by persistence.database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection, poll_interval: float = 0.05) -> None:
        self._db = db
        self._poll_interval = poll_interval
        self._write_lock = asyncio.Lock()

    async def _ensure_topic(self, topic_id: str) -> None:
        async with self._db.execute(
            "SELECT 1 FROM log_topics WHERE topic_id = ?", (topic_id,),
        ) as cursor:
            if await cursor.fetchone() is None:
                raise KeyError(f"Unknown topic: {topic_id}")

    async def create_topic(self, memo: str) -> str:
        topic_id = f"topic-{uuid.uuid4().hex[:12]}"
        await self._db.execute(
            "INSERT INTO log_topics (topic_id, memo, created_at) VALUES (?, ?, ?)",
            (topic_id, memo, datetime.now(UTC).isoformat()),
        )
        await self._db.commit()
        logger.debug("Created topic %s", topic_id)
        return topic_id

    async def append(self, topic_id: str, data: bytes) -> int:
        async with self._write_lock:
            await self._ensure_topic(topic_id)
            sequence = await self.latest_sequence(topic_id) + 1
            await self._db.execute(
                "INSERT INTO log_entries (topic_id, seq, data, appended_at)"
                " VALUES (?, ?, ?, ?)",
                (topic_id, sequence, data, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        return sequence

    async def read(self, topic_id: str, since: int = 0) -> list[tuple[bytes, int]]:
        await self._ensure_topic(topic_id)
        async with self._db.execute(
            "SELECT data, seq FROM log_entries WHERE topic_id = ? AND seq > ?"
            " ORDER BY seq",
            (topic_id, since),
        ) as cursor:
            rows = await cursor.fetchall()
        return [(bytes(row[0]), int(row[1])) for row in rows]

    async def latest_sequence(self, topic_id: str) -> int:
        async with self._db.execute(
            "SELECT COALESCE(MAX(seq), 0) FROM log_entries WHERE topic_id = ?",
            (topic_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_memo(self, topic_id: str) -> str:
        async with self._db.execute(
            "SELECT memo FROM log_topics WHERE topic_id = ?", (topic_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise KeyError(f"Unknown topic: {topic_id}")
        return row[0]

    async def subscribe(
        self, topic_id: str, since: int = 0,
    ) -> AsyncIterator[tuple[bytes, int]]:
        cursor = since
        while True:
            for data, seq in await self.read(topic_id, cursor):
                cursor = seq
                yield data, seq
            await asyncio.sleep(self._poll_interval)
