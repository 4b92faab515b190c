"""Evaluation lifecycle event emitter.

Emits structured events while the orchestrator drives a session so that
progress observers (dashboards, notifiers, tests) can follow phase
transitions, incoming scores, agent failures, discussion rounds and the
final verdict without polling.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from jurybox.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of evaluation events."""

    SESSION_STARTED = "session_started"
    PHASE_CHANGED = "phase_changed"
    SCORE_RECEIVED = "score_received"
    AGENT_FAILED = "agent_failed"
    ROUND_COMPLETED = "round_completed"
    CONVERGED = "converged"
    CONSENSUS_REACHED = "consensus_reached"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"
    SESSION_CANCELLED = "session_cancelled"


class EvaluationEvent(BaseModel):
    """A single evaluation event."""

    type: EventType = Field(description="Event type")
    session_id: str = Field(description="Session the event belongs to")
    timestamp: datetime = Field(description="When the event occurred")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, varies by event type",
    )


EventListener = Callable[[EvaluationEvent], Any]


class EvaluationEventEmitter:
    """Broadcasts evaluation events to registered listeners.

    Listeners can be sync or async callables. The emitter is an optional
    orchestrator dependency; without one, no events are built at all.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._listeners: list[EventListener] = []
        self._history: list[EvaluationEvent] = []

    @property
    def history(self) -> list[EvaluationEvent]:
        """All events emitted so far."""
        return list(self._history)

    def events_for(self, session_id: str) -> list[EvaluationEvent]:
        return [e for e in self._history if e.session_id == session_id]

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    async def emit(self, event_type: EventType, session_id: str, **data: Any) -> None:
        """Emit an event to all registered listeners.

        Sync listeners are called directly; async listeners are awaited.
        Listener exceptions are logged but never propagate.
        """
        event = EvaluationEvent(
            type=event_type,
            session_id=session_id,
            timestamp=self._clock.now(),
            data=data,
        )
        self._history.append(event)

        for listener in self._listeners:
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Event listener error for %s", event_type)
