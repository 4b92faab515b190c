"""Concurrent fan-out of per-agent calls with a deadline and a cancel signal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

AgentCall = Callable[[], Awaitable[T]]


@dataclass
class FanOutResult(Generic[T]):
    """Outcome of one fan-out, keyed by agent id."""

    results: dict[str, T] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)
    cancelled: bool = False


class FanOut:
    """Runs per-agent calls concurrently and joins on them.

    Calls abandoned by a cancellation keep running; the instance holds a
    reference to them until they finish and discards their results.
    """

    def __init__(self) -> None:
        self._detached: set[asyncio.Task] = set()

    @property
    def detached(self) -> frozenset[asyncio.Task]:
        """Abandoned calls that are still running."""
        return frozenset(self._detached)

    def _discard(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Discarded call finished with %r", task.exception())

    async def run(
        self,
        calls: Mapping[str, AgentCall[T]],
        *,
        timeout: float,
        cancel_event: asyncio.Event | None = None,
    ) -> FanOutResult[T]:
        """Run every call concurrently and join on all of them.

        Returns when every call finished, the timeout elapsed, or
        cancel_event was set. Calls still pending at the timeout are
        cancelled and listed in timed_out. Calls still pending at
        cancellation keep running detached and their results are
        discarded.
        """
        outcome: FanOutResult[T] = FanOutResult()
        if not calls:
            return outcome

        tasks = {asyncio.create_task(call()): agent_id for agent_id, call in calls.items()}
        pending: set[asyncio.Task] = set(tasks)
        waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                watched = pending | {waiter} if waiter is not None else pending
                done, _ = await asyncio.wait(
                    watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if waiter is not None and waiter in done:
                    outcome.cancelled = True
                    break
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()

        for task, agent_id in tasks.items():
            if task in pending:
                continue
            if task.cancelled():
                outcome.timed_out.append(agent_id)
                continue
            error = task.exception()
            if error is not None:
                outcome.errors[agent_id] = error
            else:
                outcome.results[agent_id] = task.result()

        if outcome.cancelled:
            for task in pending:
                self._detached.add(task)
                task.add_done_callback(self._discard)
        else:
            for task in pending:
                task.cancel()
                outcome.timed_out.append(tasks[task])
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return outcome
