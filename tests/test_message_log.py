"""Tests for jurybox.messaging.log — MessageLog invariants and subscriptions."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from jurybox.clock import ManualClock
from jurybox.errors import LogAppendError
from jurybox.messaging.backend import InMemoryLogBackend
from jurybox.messaging.log import MessageLog, for_round
from jurybox.schemas.messages import (
    COORDINATOR_ID,
    AgentMessage,
    LogMetadata,
    MessageKind,
)

# ── Factories ──────────────────────────────────────────────────────


def _make_metadata(participants=("a", "b", "c"), **overrides) -> LogMetadata:
    defaults = {
        "title": "Evaluation s-1",
        "participants": list(participants),
        "participant_count": len(participants),
        "max_rounds": 3,
    }
    defaults.update(overrides)
    return LogMetadata(**defaults)


def _score(agent_id: str, score: float, **overrides) -> AgentMessage:
    defaults = {
        "kind": MessageKind.SCORE,
        "agent_id": agent_id,
        "round_number": 0,
        "score": score,
    }
    defaults.update(overrides)
    return AgentMessage(**defaults)


def _adjust(agent_id: str, round_number: int, original: float, adjusted: float) -> AgentMessage:
    return AgentMessage(
        kind=MessageKind.ADJUSTMENT,
        agent_id=agent_id,
        round_number=round_number,
        original_score=original,
        adjusted_score=adjusted,
    )


def _final(score: float = 7.0) -> AgentMessage:
    return AgentMessage(
        kind=MessageKind.FINAL,
        agent_id=COORDINATOR_ID,
        round_number=0,
        score=score,
        individual_scores={"a": score},
        algorithm="simple_average",
        total_rounds=1,
    )


async def _make_log(clock=None, **metadata):
    log = MessageLog(InMemoryLogBackend(), clock=clock or ManualClock())
    handle = await log.create_log("s-1", _make_metadata(**metadata))
    return log, handle


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


# ── create_log / open_log ─────────────────────────────────────────


class TestCreateLog:
    @pytest.mark.asyncio()
    async def test_handle_carries_metadata(self):
        log, handle = await _make_log()
        assert handle.session_id == "s-1"
        assert handle.metadata.participants == ["a", "b", "c"]
        assert handle.log_id.startswith("topic-")

    @pytest.mark.asyncio()
    async def test_open_log_rebuilds_handle(self):
        log, handle = await _make_log()
        reopened = await log.open_log(handle.log_id)
        assert reopened == handle

    @pytest.mark.asyncio()
    async def test_backend_failure_wrapped(self):
        backend = InMemoryLogBackend()
        backend.create_topic = AsyncMock(side_effect=OSError("disk full"))
        log = MessageLog(backend)
        with pytest.raises(LogAppendError, match="disk full"):
            await log.create_log("s-1", _make_metadata())


# ── append invariants ─────────────────────────────────────────────


class TestAppend:
    @pytest.mark.asyncio()
    async def test_sequence_strictly_increasing(self):
        log, handle = await _make_log()
        seqs = [
            await log.append(handle, _score("a", 7.0)),
            await log.append(handle, _score("b", 8.0)),
            await log.append(handle, _score("c", 9.0)),
        ]
        assert seqs == [1, 2, 3]

    @pytest.mark.asyncio()
    async def test_rejects_non_participant(self):
        log, handle = await _make_log()
        with pytest.raises(ValueError, match="not a participant"):
            await log.append(handle, _score("mallory", 5.0))
        assert await log.query(handle) == []

    @pytest.mark.asyncio()
    async def test_coordinator_only_for_final(self):
        log, handle = await _make_log()
        with pytest.raises(ValueError, match="reserved"):
            await log.append(handle, _score(COORDINATOR_ID, 5.0))

    @pytest.mark.asyncio()
    async def test_rejects_decreasing_round(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, AgentMessage(
            kind=MessageKind.DISCUSSION, agent_id="a", round_number=2,
        ))
        with pytest.raises(ValueError, match="precedes"):
            await log.append(handle, AgentMessage(
                kind=MessageKind.DISCUSSION, agent_id="a", round_number=1,
            ))

    @pytest.mark.asyncio()
    async def test_adjustment_must_start_from_latest_score(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        with pytest.raises(ValueError, match="latest recorded score"):
            await log.append(handle, _adjust("a", 1, 6.0, 8.0))

    @pytest.mark.asyncio()
    async def test_adjustment_chain_tracks_latest(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, _adjust("a", 1, 7.0, 8.0))
        await log.append(handle, _adjust("a", 2, 8.0, 8.5))
        with pytest.raises(ValueError):
            await log.append(handle, _adjust("a", 3, 7.0, 9.0))

    @pytest.mark.asyncio()
    async def test_adjustment_before_score_rejected(self):
        log, handle = await _make_log()
        with pytest.raises(ValueError, match="before any score"):
            await log.append(handle, _adjust("a", 1, 7.0, 8.0))

    @pytest.mark.asyncio()
    async def test_discussion_before_score_rejected(self):
        log, handle = await _make_log()
        with pytest.raises(ValueError, match="before any score"):
            await log.append(handle, AgentMessage(
                kind=MessageKind.DISCUSSION, agent_id="a", round_number=1,
            ))

    @pytest.mark.asyncio()
    async def test_single_final_then_sealed(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, _final())
        with pytest.raises(ValueError, match="final"):
            await log.append(handle, _final())
        with pytest.raises(ValueError, match="final"):
            await log.append(handle, _score("b", 5.0))

    @pytest.mark.asyncio()
    async def test_backend_failure_raises_log_append_error(self):
        backend = InMemoryLogBackend()
        log = MessageLog(backend)
        handle = await log.create_log("s-1", _make_metadata())
        backend.append = AsyncMock(side_effect=RuntimeError("unreachable"))
        with pytest.raises(LogAppendError) as exc_info:
            await log.append(handle, _score("a", 7.0))
        assert exc_info.value.log_id == handle.log_id

    @pytest.mark.asyncio()
    async def test_failed_append_leaves_state_untouched(self):
        backend = InMemoryLogBackend()
        log = MessageLog(backend)
        handle = await log.create_log("s-1", _make_metadata())
        original_append = backend.append
        backend.append = AsyncMock(side_effect=RuntimeError("blip"))
        with pytest.raises(LogAppendError):
            await log.append(handle, _score("a", 7.0))
        backend.append = original_append
        # No score was recorded, so an adjustment is still premature
        with pytest.raises(ValueError):
            await log.append(handle, _adjust("a", 1, 7.0, 8.0))

    @pytest.mark.asyncio()
    async def test_concurrent_appends_all_land(self):
        log, handle = await _make_log(participants=[f"j{i}" for i in range(20)])
        seqs = await asyncio.gather(*(
            log.append(handle, _score(f"j{i}", 5.0)) for i in range(20)
        ))
        assert sorted(seqs) == list(range(1, 21))
        assert len(await log.query(handle)) == 20


# ── close_log / reopened logs ─────────────────────────────────────


class TestCloseLog:
    @pytest.mark.asyncio()
    async def test_close_releases_bookkeeping(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        log.close_log(handle)
        assert log._states == {}

    @pytest.mark.asyncio()
    async def test_close_unknown_log_is_noop(self):
        log, handle = await _make_log()
        log.close_log(handle)
        log.close_log(handle)
        assert log._states == {}

    @pytest.mark.asyncio()
    async def test_sealed_log_stays_sealed_after_close(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, _final())
        log.close_log(handle)
        with pytest.raises(ValueError, match="final"):
            await log.append(handle, _score("b", 5.0))
        assert len(await log.query(handle)) == 2

    @pytest.mark.asyncio()
    async def test_latest_score_survives_close(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, _adjust("a", 1, 7.0, 8.0))
        log.close_log(handle)
        with pytest.raises(ValueError, match="latest recorded score is 8.0"):
            await log.append(handle, _adjust("a", 2, 7.0, 6.0))
        await log.append(handle, _adjust("a", 2, 8.0, 6.0))

    @pytest.mark.asyncio()
    async def test_reopened_log_replays_rounds(self):
        backend = InMemoryLogBackend()
        writer = MessageLog(backend)
        handle = await writer.create_log("s-1", _make_metadata())
        await writer.append(handle, _score("a", 7.0))
        await writer.append(handle, _adjust("a", 2, 7.0, 8.0))

        reader = MessageLog(backend)
        reopened = await reader.open_log(handle.log_id)
        with pytest.raises(ValueError, match="precedes round 2"):
            await reader.append(reopened, _adjust("a", 1, 8.0, 9.0))
        with pytest.raises(ValueError, match="not a participant"):
            await reader.append(reopened, _score("z", 5.0))

    @pytest.mark.asyncio()
    async def test_unreadable_log_raises_log_append_error(self):
        backend = InMemoryLogBackend()
        log = MessageLog(backend)
        handle = await log.create_log("s-1", _make_metadata())
        log.close_log(handle)
        backend.read = AsyncMock(side_effect=RuntimeError("gone"))
        with pytest.raises(LogAppendError, match="gone"):
            await log.append(handle, _score("a", 7.0))


# ── query / has_final ─────────────────────────────────────────────


class TestQuery:
    @pytest.mark.asyncio()
    async def test_returns_in_append_order(self):
        log, handle = await _make_log()
        await log.append(handle, _score("b", 8.0))
        await log.append(handle, _score("a", 7.0))
        assert [m.agent_id for m in await log.query(handle)] == ["b", "a"]

    @pytest.mark.asyncio()
    async def test_time_range(self):
        clock = ManualClock()
        log, handle = await _make_log(clock=clock)
        t0 = clock.now()
        await log.append(handle, _score("a", 7.0, timestamp=t0))
        clock.advance(10)
        t1 = clock.now()
        await log.append(handle, _score("b", 8.0, timestamp=t1))
        clock.advance(10)
        await log.append(handle, _score("c", 9.0, timestamp=clock.now()))

        assert [m.agent_id for m in await log.query(handle, start=t1)] == ["b", "c"]
        assert [m.agent_id for m in await log.query(handle, end=t1)] == ["a", "b"]
        assert [m.agent_id for m in await log.query(handle, start=t1, end=t1)] == ["b"]

    @pytest.mark.asyncio()
    async def test_has_final(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        assert await log.has_final(handle) is False
        await log.append(handle, _final())
        assert await log.has_final(handle) is True

    @pytest.mark.asyncio()
    async def test_messages_round_trip_intact(self):
        log, handle = await _make_log()
        message = _score("a", 7.25, confidence=0.6, aspects={"Clarity": 8.0}, reasoning="ok")
        await log.append(handle, message)
        assert (await log.query(handle)) == [message]


# ── subscribe ─────────────────────────────────────────────────────


class TestSubscribe:
    @pytest.mark.asyncio()
    async def test_replay_from_start(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, _score("b", 8.0))

        async with await log.subscribe(handle, replay_from_start=True) as sub:
            first = await asyncio.wait_for(anext(sub), 1)
            second = await asyncio.wait_for(anext(sub), 1)
        assert [first.agent_id, second.agent_id] == ["a", "b"]

    @pytest.mark.asyncio()
    async def test_without_replay_only_new_messages(self):
        log, handle = await _make_log()
        await log.append(handle, _score("a", 7.0))

        sub = await log.subscribe(handle)
        await log.append(handle, _score("b", 8.0))
        message = await asyncio.wait_for(anext(sub), 1)
        sub.cancel()
        assert message.agent_id == "b"

    @pytest.mark.asyncio()
    async def test_predicate_filters(self):
        log, handle = await _make_log()
        sub = await log.subscribe(
            handle, for_round(1, MessageKind.ADJUSTMENT), replay_from_start=True,
        )
        await log.append(handle, _score("a", 7.0))
        await log.append(handle, AgentMessage(
            kind=MessageKind.DISCUSSION, agent_id="a", round_number=1,
        ))
        await log.append(handle, _adjust("a", 1, 7.0, 8.0))

        message = await asyncio.wait_for(anext(sub), 1)
        sub.cancel()
        assert message.kind == MessageKind.ADJUSTMENT

    @pytest.mark.asyncio()
    async def test_cancel_ends_iteration(self):
        log, handle = await _make_log()
        sub = await log.subscribe(handle)

        async def _collect():
            return [m async for m in sub]

        collector = asyncio.create_task(_collect())
        await asyncio.sleep(0.01)
        sub.cancel()
        assert await asyncio.wait_for(collector, 1) == []
        assert sub.closed

    @pytest.mark.asyncio()
    async def test_run_survives_handler_errors(self, caplog):
        log, handle = await _make_log()
        received: list[AgentMessage] = []

        def _handler(message: AgentMessage) -> None:
            if message.agent_id == "a":
                raise RuntimeError("handler bug")
            received.append(message)

        sub = await log.subscribe(handle, replay_from_start=True)
        runner = asyncio.create_task(sub.run(_handler))
        with caplog.at_level(logging.ERROR, logger="jurybox.messaging.log"):
            await log.append(handle, _score("a", 7.0))
            await log.append(handle, _score("b", 8.0))
            await _wait_until(lambda: len(received) == 1)
            sub.cancel()
            await asyncio.wait_for(runner, 1)

        assert received[0].agent_id == "b"
        assert "Subscriber failed" in caplog.text
        # The log itself is unaffected
        assert len(await log.query(handle)) == 2

    @pytest.mark.asyncio()
    async def test_run_awaits_async_handler(self):
        log, handle = await _make_log()
        received: list[str] = []

        async def _handler(message: AgentMessage) -> None:
            await asyncio.sleep(0)
            received.append(message.agent_id)

        sub = await log.subscribe(handle, replay_from_start=True)
        runner = asyncio.create_task(sub.run(_handler))
        await log.append(handle, _score("c", 9.0))
        await _wait_until(lambda: received == ["c"])
        sub.cancel()
        await asyncio.wait_for(runner, 1)

    @pytest.mark.asyncio()
    async def test_slow_consumer_does_not_block_appends(self):
        log, handle = await _make_log(participants=[f"j{i}" for i in range(10)])
        sub = await log.subscribe(handle, replay_from_start=True, max_buffer=2)
        for i in range(10):
            await asyncio.wait_for(log.append(handle, _score(f"j{i}", 5.0)), 1)

        delivered = [await asyncio.wait_for(anext(sub), 1) for _ in range(10)]
        sub.cancel()
        assert [m.agent_id for m in delivered] == [f"j{i}" for i in range(10)]

    @pytest.mark.asyncio()
    async def test_undecodable_entries_skipped(self, caplog):
        backend = InMemoryLogBackend()
        log = MessageLog(backend)
        handle = await log.create_log("s-1", _make_metadata())
        await backend.append(handle.log_id, b"not json")
        await log.append(handle, _score("a", 7.0))

        with caplog.at_level(logging.WARNING, logger="jurybox.messaging.log"):
            sub = await log.subscribe(handle, replay_from_start=True)
            message = await asyncio.wait_for(anext(sub), 1)
            sub.cancel()
        assert message.agent_id == "a"
        assert "undecodable" in caplog.text
