"""Typed, append-only message log per evaluation session.

MessageLog adapts a LogBackend to AgentMessage values. It owns the
per-log invariants (participants only, per-agent rounds never go
backwards, adjustments start from the agent's latest score, at most one
final message) and exposes stream subscriptions with bounded buffers and
an explicit cancel() so slow consumers never stall producers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from jurybox.clock import Clock, SystemClock
from jurybox.errors import LogAppendError
from jurybox.messaging.backend import LogBackend
from jurybox.schemas.messages import (
    COORDINATOR_ID,
    AgentMessage,
    LogHandle,
    LogMetadata,
    MessageKind,
)

logger = logging.getLogger(__name__)

MessagePredicate = Callable[[AgentMessage], bool]
MessageHandler = Callable[[AgentMessage], Any]

# Tolerance when matching an adjustment's original score to the latest score
_SCORE_EPSILON = 1e-9

_CLOSED = object()


def for_round(round_number: int, kind: MessageKind | None = None) -> MessagePredicate:
    """Predicate matching one round, optionally one message kind."""

    def _match(message: AgentMessage) -> bool:
        if message.round_number != round_number:
            return False
        return kind is None or message.kind == kind

    return _match


@dataclass
class _LogState:
    """Invariant bookkeeping for one log."""

    participants: frozenset[str]
    latest_scores: dict[str, float] = field(default_factory=dict)
    latest_rounds: dict[str, int] = field(default_factory=dict)
    sealed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def check(self, message: AgentMessage) -> None:
        """Raise ValueError if appending message would break an invariant."""
        if self.sealed:
            raise ValueError("Log already holds a final message")

        agent_id = message.agent_id
        if message.kind == MessageKind.FINAL:
            return
        if agent_id == COORDINATOR_ID:
            raise ValueError(f"Only the final message may use the reserved id {COORDINATOR_ID!r}")
        if self.participants and agent_id not in self.participants:
            raise ValueError(f"Agent {agent_id!r} is not a participant of this log")

        last_round = self.latest_rounds.get(agent_id)
        if last_round is not None and message.round_number < last_round:
            raise ValueError(
                f"Round {message.round_number} precedes round {last_round} "
                f"already logged for {agent_id!r}"
            )

        if message.kind == MessageKind.SCORE and message.score is None:
            raise ValueError("Score message without a score")
        if message.kind == MessageKind.DISCUSSION and agent_id not in self.latest_scores:
            raise ValueError(f"Discussion from {agent_id!r} before any score")

        if message.kind == MessageKind.ADJUSTMENT:
            if message.original_score is None or message.adjusted_score is None:
                raise ValueError("Adjustment message needs original and adjusted scores")
            latest = self.latest_scores.get(agent_id)
            if latest is None:
                raise ValueError(f"Adjustment for {agent_id!r} before any score")
            if abs(message.original_score - latest) > _SCORE_EPSILON:
                raise ValueError(
                    f"Adjustment for {agent_id!r} starts from {message.original_score}, "
                    f"latest recorded score is {latest}"
                )

    def record(self, message: AgentMessage) -> None:
        if message.kind == MessageKind.FINAL:
            self.sealed = True
            return
        self.latest_rounds[message.agent_id] = message.round_number
        if message.kind == MessageKind.SCORE and message.score is not None:
            self.latest_scores[message.agent_id] = message.score
        elif message.kind == MessageKind.ADJUSTMENT and message.adjusted_score is not None:
            self.latest_scores[message.agent_id] = message.adjusted_score


class Subscription:
    """Async stream of log messages matching a predicate.

    A background pump reads the backend and fills a bounded queue; when
    the queue is full only the pump waits. Iterate with ``async for`` or
    hand a callback to run(). cancel() ends the stream.
    """

    def __init__(
        self,
        log_id: str,
        backend: LogBackend,
        since: int,
        predicate: MessagePredicate | None,
        max_buffer: int,
    ) -> None:
        self._log_id = log_id
        self._backend = backend
        self._predicate = predicate
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_buffer)
        self._closed = False
        self._pump = asyncio.get_running_loop().create_task(self._run_pump(since))

    @property
    def closed(self) -> bool:
        return self._closed

    async def _run_pump(self, since: int) -> None:
        try:
            async for data, sequence in self._backend.subscribe(self._log_id, since):
                try:
                    message = AgentMessage.model_validate_json(data)
                except ValidationError:
                    logger.warning(
                        "Skipping undecodable entry %d on log %s", sequence, self._log_id,
                    )
                    continue
                try:
                    if self._predicate is not None and not self._predicate(message):
                        continue
                except Exception:
                    logger.exception("Subscription predicate failed on log %s", self._log_id)
                    continue
                await self._queue.put(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Subscription delivery stopped on log %s", self._log_id)
            self._close()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer is not blocked; it sees _closed once the queue drains
            pass

    def cancel(self) -> None:
        """Stop delivery. Buffered messages can still be drained."""
        self._pump.cancel()
        self._close()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> AgentMessage:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.cancel()

    async def run(self, on_message: MessageHandler) -> None:
        """Deliver every message to on_message until cancelled.

        Sync and async handlers are supported. Handler exceptions are
        logged and delivery continues with the next message.
        """
        async for message in self:
            try:
                result = on_message(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "Subscriber failed on %s message from %s",
                    message.kind, message.agent_id,
                )


class MessageLog:
    """Append-only AgentMessage log per session over a LogBackend."""

    def __init__(self, backend: LogBackend, clock: Clock | None = None) -> None:
        self._backend = backend
        self._clock = clock or SystemClock()
        self._states: dict[str, _LogState] = {}

    async def _state(self, handle: LogHandle) -> _LogState:
        """Invariant bookkeeping for a log, replayed from the backend if not held."""
        state = self._states.get(handle.log_id)
        if state is not None:
            return state

        state = _LogState(participants=frozenset(handle.metadata.participants))
        try:
            entries = await self._backend.read(handle.log_id)
        except Exception as e:
            raise LogAppendError(
                f"Could not load log {handle.log_id}: {e}", log_id=handle.log_id,
            ) from e
        for data, sequence in entries:
            try:
                message = AgentMessage.model_validate_json(data)
            except ValidationError:
                logger.warning("Skipping undecodable entry %d on log %s", sequence, handle.log_id)
                continue
            state.record(message)
        return self._states.setdefault(handle.log_id, state)

    async def create_log(self, session_id: str, metadata: LogMetadata) -> LogHandle:
        """Allocate a new log for a session.

        Raises:
            LogAppendError: If the backend cannot allocate the topic.
        """
        created_at = self._clock.now()
        memo = json.dumps({
            "session_id": session_id,
            "created_at": created_at.isoformat(),
            **metadata.model_dump(),
        })
        try:
            log_id = await self._backend.create_topic(memo)
        except Exception as e:
            raise LogAppendError(
                f"Could not allocate log for session {session_id}: {e}",
            ) from e

        handle = LogHandle(
            log_id=log_id,
            session_id=session_id,
            metadata=metadata,
            created_at=created_at,
        )
        self._states[log_id] = _LogState(participants=frozenset(metadata.participants))
        logger.info("Created log %s for session %s", log_id, session_id)
        return handle

    async def open_log(self, log_id: str) -> LogHandle:
        """Rebuild a handle for an existing log from its memo."""
        memo = json.loads(await self._backend.get_memo(log_id))
        return LogHandle(
            log_id=log_id,
            session_id=memo.pop("session_id"),
            created_at=datetime.fromisoformat(memo.pop("created_at")),
            metadata=LogMetadata.model_validate(memo),
        )

    def close_log(self, handle: LogHandle) -> None:
        """Release the bookkeeping held for a log.

        The log itself is untouched. A later append replays the stored
        messages so its invariants still hold.
        """
        if self._states.pop(handle.log_id, None) is not None:
            logger.debug("Closed log %s", handle.log_id)

    async def append(self, handle: LogHandle, message: AgentMessage) -> int:
        """Append one message and return its sequence marker.

        Messages appended through one MessageLog keep call order.

        Raises:
            ValueError: If the message breaks a log invariant.
            LogAppendError: If the backend rejects the write.
        """
        state = await self._state(handle)
        async with state.lock:
            state.check(message)
            try:
                sequence = await self._backend.append(
                    handle.log_id, message.model_dump_json().encode("utf-8"),
                )
            except Exception as e:
                raise LogAppendError(
                    f"Append of {message.kind} from {message.agent_id} failed: {e}",
                    log_id=handle.log_id,
                    details={"round": message.round_number},
                ) from e
            state.record(message)

        logger.debug(
            "Log %s #%d: %s from %s (round %d)",
            handle.log_id, sequence, message.kind, message.agent_id, message.round_number,
        )
        return sequence

    async def subscribe(
        self,
        handle: LogHandle,
        predicate: MessagePredicate | None = None,
        *,
        replay_from_start: bool = False,
        max_buffer: int = 256,
    ) -> Subscription:
        """Open a stream of messages matching predicate.

        Args:
            handle: Log to follow.
            predicate: Optional filter (see for_round()).
            replay_from_start: Also deliver messages appended before now.
            max_buffer: Messages buffered before the pump waits.
        """
        since = 0 if replay_from_start else await self._backend.latest_sequence(handle.log_id)
        return Subscription(handle.log_id, self._backend, since, predicate, max_buffer)

    async def query(
        self,
        handle: LogHandle,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AgentMessage]:
        """Ordered batch of messages whose timestamp lies in [start, end]."""
        messages: list[AgentMessage] = []
        for data, sequence in await self._backend.read(handle.log_id):
            try:
                message = AgentMessage.model_validate_json(data)
            except ValidationError:
                logger.warning("Skipping undecodable entry %d on log %s", sequence, handle.log_id)
                continue
            if start is not None and message.timestamp < start:
                continue
            if end is not None and message.timestamp > end:
                continue
            messages.append(message)
        return messages

    async def has_final(self, handle: LogHandle) -> bool:
        """Whether the log holds a final message (False means abandoned or in flight)."""
        return any(m.kind == MessageKind.FINAL for m in await self.query(handle))
