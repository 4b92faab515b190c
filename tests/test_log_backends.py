"""Tests for jurybox.messaging.backend — in-memory and SQLite log backends."""

from __future__ import annotations

import asyncio

import pytest

from jurybox.messaging.backend import InMemoryLogBackend, SQLiteLogBackend
from jurybox.messaging.log import MessageLog
from jurybox.persistence.database import close_db, init_db
from jurybox.schemas.messages import AgentMessage, LogMetadata, MessageKind


async def _first(backend, topic_id: str, since: int = 0) -> tuple[bytes, int]:
    stream = backend.subscribe(topic_id, since)
    try:
        return await asyncio.wait_for(anext(stream), 1)
    finally:
        await stream.aclose()


class TestInMemoryLogBackend:
    @pytest.mark.asyncio()
    async def test_sequences_start_at_one(self):
        backend = InMemoryLogBackend()
        topic = await backend.create_topic("memo")
        assert await backend.latest_sequence(topic) == 0
        assert await backend.append(topic, b"x") == 1
        assert await backend.append(topic, b"y") == 2
        assert await backend.latest_sequence(topic) == 2

    @pytest.mark.asyncio()
    async def test_read_since(self):
        backend = InMemoryLogBackend()
        topic = await backend.create_topic("memo")
        for payload in (b"a", b"b", b"c"):
            await backend.append(topic, payload)
        assert await backend.read(topic, since=1) == [(b"b", 2), (b"c", 3)]

    @pytest.mark.asyncio()
    async def test_memo(self):
        backend = InMemoryLogBackend()
        topic = await backend.create_topic('{"title": "t"}')
        assert await backend.get_memo(topic) == '{"title": "t"}'

    @pytest.mark.asyncio()
    async def test_topics_are_isolated(self):
        backend = InMemoryLogBackend()
        first = await backend.create_topic("one")
        second = await backend.create_topic("two")
        await backend.append(first, b"x")
        assert await backend.read(second) == []

    @pytest.mark.asyncio()
    async def test_unknown_topic(self):
        backend = InMemoryLogBackend()
        with pytest.raises(KeyError):
            await backend.append("topic-missing", b"x")

    @pytest.mark.asyncio()
    async def test_subscribe_waits_for_new_entries(self):
        backend = InMemoryLogBackend()
        topic = await backend.create_topic("memo")
        await backend.append(topic, b"old")

        waiter = asyncio.create_task(_first(backend, topic, since=1))
        await asyncio.sleep(0.01)
        assert not waiter.done()
        await backend.append(topic, b"new")
        assert await waiter == (b"new", 2)


class TestSQLiteLogBackend:
    @pytest.mark.asyncio()
    async def test_append_and_read(self, tmp_path):
        db = await init_db(str(tmp_path / "log.db"))
        backend = SQLiteLogBackend(db)
        topic = await backend.create_topic("memo")

        assert await backend.append(topic, b"a") == 1
        assert await backend.append(topic, b"b") == 2
        assert await backend.read(topic) == [(b"a", 1), (b"b", 2)]
        assert await backend.latest_sequence(topic) == 2
        assert await backend.get_memo(topic) == "memo"
        await close_db(db)

    @pytest.mark.asyncio()
    async def test_unknown_topic(self):
        db = await init_db(":memory:")
        backend = SQLiteLogBackend(db)
        with pytest.raises(KeyError):
            await backend.append("topic-missing", b"x")
        with pytest.raises(KeyError):
            await backend.get_memo("topic-missing")
        await close_db(db)

    @pytest.mark.asyncio()
    async def test_survives_reconnect(self, tmp_path):
        path = str(tmp_path / "log.db")
        db = await init_db(path)
        topic = await SQLiteLogBackend(db).create_topic("memo")
        await SQLiteLogBackend(db).append(topic, b"kept")
        await close_db(db)

        db = await init_db(path)
        assert await SQLiteLogBackend(db).read(topic) == [(b"kept", 1)]
        await close_db(db)

    @pytest.mark.asyncio()
    async def test_concurrent_appends_get_distinct_sequences(self):
        db = await init_db(":memory:")
        backend = SQLiteLogBackend(db)
        topic = await backend.create_topic("memo")
        seqs = await asyncio.gather(*(backend.append(topic, b"x") for _ in range(10)))
        assert sorted(seqs) == list(range(1, 11))
        await close_db(db)

    @pytest.mark.asyncio()
    async def test_subscribe_polls_new_rows(self):
        db = await init_db(":memory:")
        backend = SQLiteLogBackend(db, poll_interval=0.01)
        topic = await backend.create_topic("memo")

        waiter = asyncio.create_task(_first(backend, topic))
        await asyncio.sleep(0.03)
        await backend.append(topic, b"late")
        assert await waiter == (b"late", 1)
        await close_db(db)

    @pytest.mark.asyncio()
    async def test_message_log_over_sqlite(self, tmp_path):
        db = await init_db(str(tmp_path / "log.db"))
        log = MessageLog(SQLiteLogBackend(db))
        handle = await log.create_log("s-1", LogMetadata(
            title="Evaluation s-1", participants=["a"], participant_count=1, max_rounds=2,
        ))
        await log.append(handle, AgentMessage(
            kind=MessageKind.SCORE, agent_id="a", round_number=0, score=6.5,
        ))

        reopened = await log.open_log(handle.log_id)
        messages = await log.query(reopened)
        assert reopened.session_id == "s-1"
        assert [m.score for m in messages] == [6.5]
        await close_db(db)
