"""Evaluation orchestrator.

Drives an evaluation session through its phases:

    initializing -> independent_scoring -> discussing (0..N rounds)
        -> aggregating -> publishing -> completed

with failed reachable from any non-terminal phase and cancelled
reachable from any phase before publishing. Every mutation is published
to the session's message log and the session snapshot is persisted to
the session store after each transition.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from functools import partial
from typing import Any

from jurybox.clock import Clock, SystemClock
from jurybox.consensus.engine import ConsensusEngine
from jurybox.consensus.statistics import population_variance
from jurybox.consensus.strategies import get_strategy
from jurybox.discussion import DiscussionRoundDriver, clamp_score
from jurybox.errors import (
    ConfigurationError,
    EvaluationError,
    NoParticipantsError,
    SessionNotFoundError,
)
from jurybox.events import EvaluationEventEmitter, EventType
from jurybox.fanout import FanOut
from jurybox.messaging.log import MessageLog
from jurybox.persistence.store import InMemorySessionStore, SessionStore
from jurybox.providers.base import Evaluator
from jurybox.schemas.consensus import AggregationInput
from jurybox.schemas.messages import (
    COORDINATOR_ID,
    COORDINATOR_NAME,
    AgentMessage,
    EvaluationRound,
    LogHandle,
    LogMetadata,
    MessageKind,
)
from jurybox.schemas.session import (
    AgentResult,
    EvaluationProgress,
    EvaluationReport,
    EvaluationSession,
    SessionPhase,
)

logger = logging.getLogger(__name__)

# Consensus variance above which every agent result notes the disagreement
HIGH_VARIANCE = 1.0

_STRENGTHS = ["Collaborative evaluation", "Multi-perspective analysis"]
_HIGH_VARIANCE_NOTE = "High variance among evaluators"


class EvaluationOrchestrator:
    """Coordinates judge agents from independent scoring to a verdict.

    All collaborators are injected; one orchestrator can run many
    sessions concurrently, each as its own asyncio task.
    """

    def __init__(
        self,
        evaluator: Evaluator,
        message_log: MessageLog,
        consensus_engine: ConsensusEngine | None = None,
        session_store: SessionStore | None = None,
        clock: Clock | None = None,
        emitter: EvaluationEventEmitter | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._log = message_log
        self._engine = consensus_engine or ConsensusEngine()
        self._store = session_store or InMemorySessionStore()
        self._clock = clock or SystemClock()
        self._emitter = emitter
        self._fan_out = FanOut()
        self._driver = DiscussionRoundDriver(
            evaluator, message_log, self._clock, fan_out=self._fan_out,
        )
        self._tasks: dict[str, asyncio.Task[EvaluationSession]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ── Public API ───────────────────────────────────────────────

    async def start_evaluation(self, session: EvaluationSession) -> str:
        """Validate a session and start running it in the background.

        Returns:
            The session id, usable with the polling methods.

        Raises:
            ConfigurationError: If the session cannot be started.
        """
        self._validate(session)
        if await self._store.get(session.session_id) is not None:
            raise ConfigurationError(f"Session {session.session_id} already started")
        session = session.model_copy(deep=True)
        session.created_at = self._clock.now()
        await self._store.put(session)

        self._cancel_events[session.session_id] = asyncio.Event()
        task = asyncio.create_task(self._run(session), name=f"evaluation-{session.session_id}")
        self._tasks[session.session_id] = task
        task.add_done_callback(partial(self._forget_task, session.session_id))
        logger.info(
            "Started session %s with %d agents (%s)",
            session.session_id, len(session.agents), session.config.consensus_algorithm,
        )
        return session.session_id

    async def run_evaluation(self, session: EvaluationSession) -> EvaluationSession:
        """Run a session to a terminal phase and return its final state."""
        session_id = await self.start_evaluation(session)
        return await self.wait(session_id)

    async def wait(self, session_id: str) -> EvaluationSession:
        """Wait until a session reaches a terminal phase."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.shield(task)
        return await self._require(session_id)

    async def get_progress(self, session_id: str) -> EvaluationProgress:
        session = await self._require(session_id)
        return EvaluationProgress(
            session_id=session.session_id,
            phase=session.phase,
            current_round=session.current_round,
            total_rounds=session.config.max_discussion_rounds,
            scores_received=len(session.initial_scores),
            total_agents=len(session.agents),
            failed_phase=session.failed_phase,
            error=session.error,
            log_id=session.log.log_id if session.log else None,
        )

    async def get_result(self, session_id: str) -> EvaluationReport | None:
        """Final report of a completed session, None otherwise."""
        session = await self._require(session_id)
        if session.phase != SessionPhase.COMPLETED or session.result is None:
            return None
        return EvaluationReport(
            session_id=session.session_id,
            consensus=session.result,
            agent_results=session.agent_results,
            rounds=session.rounds,
            discussion_rounds=session.discussion_rounds,
            converged=session.converged,
            outliers=session.outliers,
        )

    async def get_transcript(self, session_id: str) -> list[EvaluationRound]:
        session = await self._require(session_id)
        return list(session.rounds)

    async def cancel(self, session_id: str) -> bool:
        """Request cancellation of a running session.

        Returns False when the session already reached a terminal phase,
        is publishing its verdict, or is not running in this orchestrator.
        """
        session = await self._require(session_id)
        event = self._cancel_events.get(session_id)
        if session.phase.is_terminal or event is None:
            return False
        event.set()
        logger.info("Cancellation requested for session %s", session_id)
        return True

    # ── Validation ───────────────────────────────────────────────

    def _validate(self, session: EvaluationSession) -> None:
        if not session.agents:
            raise ConfigurationError("At least one agent is required")
        duplicates = sorted(a for a, n in Counter(session.agent_ids).items() if n > 1)
        if duplicates:
            raise ConfigurationError(
                "Duplicate agent ids", details={"agent_ids": duplicates},
            )
        if COORDINATOR_ID in session.agent_ids:
            raise ConfigurationError(f"Agent id {COORDINATOR_ID!r} is reserved")
        if not session.content.strip():
            raise ConfigurationError("Content to evaluate is empty")
        if session.phase != SessionPhase.INITIALIZING:
            raise ConfigurationError(
                f"Session {session.session_id} already ran (phase {session.phase})",
            )
        if session.session_id in self._tasks:
            raise ConfigurationError(f"Session {session.session_id} already started")
        get_strategy(session.config.consensus_algorithm, session.config)

    async def _require(self, session_id: str) -> EvaluationSession:
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _forget_task(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]

    # ── State machine ────────────────────────────────────────────

    async def _run(self, session: EvaluationSession) -> EvaluationSession:
        cancel = self._cancel_events[session.session_id]
        await self._emit(
            EventType.SESSION_STARTED, session,
            agents=session.agent_ids, algorithm=session.config.consensus_algorithm.value,
        )
        try:
            await self._initialize(session)
            if not await self._score(session, cancel):
                return await self._finish_cancelled(session)

            config = session.config
            if config.enable_discussion and len(session.scores) > 1:
                if not await self._discuss(session, cancel):
                    return await self._finish_cancelled(session)

            await self._aggregate(session)
            if cancel.is_set():
                return await self._finish_cancelled(session)
            # Publishing is not cancellable
            self._cancel_events.pop(session.session_id, None)

            await self._publish(session)
            return session
        except asyncio.CancelledError:
            await self._finish_cancelled(session)
            raise
        except Exception as e:
            await self._fail(session, e)
            return session
        finally:
            self._cancel_events.pop(session.session_id, None)
            if session.log is not None:
                self._log.close_log(session.log)

    async def _transition(self, session: EvaluationSession, phase: SessionPhase) -> None:
        previous = session.phase
        session.phase = phase
        if phase.is_terminal:
            session.completed_at = self._clock.now()
        await self._store.put(session)
        logger.info("Session %s: %s -> %s", session.session_id, previous, phase)
        await self._emit(EventType.PHASE_CHANGED, session, previous=previous.value, phase=phase.value)

    async def _initialize(self, session: EvaluationSession) -> None:
        metadata = LogMetadata(
            title=f"Evaluation {session.session_id}",
            participants=session.agent_ids,
            participant_count=len(session.agents),
            max_rounds=session.config.max_discussion_rounds,
        )
        session.log = await self._log.create_log(session.session_id, metadata)
        await self._store.put(session)

    async def _score(self, session: EvaluationSession, cancel: asyncio.Event) -> bool:
        """Independent scoring. Returns False if cancelled."""
        await self._transition(session, SessionPhase.INDEPENDENT_SCORING)
        handle = self._handle(session)
        config = session.config
        started_at = self._clock.now()

        calls = {
            agent.agent_id: partial(
                self._evaluator.evaluate, agent, session.content, session.criteria,
            )
            for agent in session.agents
        }
        fanned = await self._fan_out.run(calls, timeout=config.round_timeout, cancel_event=cancel)
        if fanned.cancelled:
            return False

        failed: dict[str, str] = {}
        for agent_id, error in fanned.errors.items():
            if not isinstance(error, EvaluationError):
                raise error
            failed[agent_id] = error.message
        for agent_id in fanned.timed_out:
            failed[agent_id] = f"timed out after {config.round_timeout:g}s"

        messages: list[AgentMessage] = []
        for agent in session.agents:
            result = fanned.results.get(agent.agent_id)
            if result is None:
                continue
            message = AgentMessage(
                kind=MessageKind.SCORE,
                agent_id=agent.agent_id,
                agent_name=agent.name,
                timestamp=self._clock.now(),
                round_number=0,
                score=clamp_score(result.score),
                confidence=result.confidence,
                aspects=result.aspects,
                reasoning=result.reasoning,
            )
            await self._log.append(handle, message)
            messages.append(message)
            session.scores[agent.agent_id] = message.score
            await self._emit(
                EventType.SCORE_RECEIVED, session,
                agent_id=agent.agent_id, score=message.score,
            )

        for agent_id, reason in failed.items():
            logger.warning(
                "Agent %s failed independent scoring in session %s: %s",
                agent_id, session.session_id, reason,
            )
            await self._emit(EventType.AGENT_FAILED, session, agent_id=agent_id, reason=reason)

        session.failed_agents = failed
        session.initial_scores = dict(session.scores)
        if not session.scores:
            raise NoParticipantsError(
                f"All {len(session.agents)} agents failed independent scoring",
                session_id=session.session_id,
                agent_count=len(session.agents),
            )

        session.score_history.append(dict(session.scores))
        session.rounds.append(EvaluationRound(
            round_number=0,
            started_at=started_at,
            ended_at=self._clock.now(),
            messages=messages,
            failed_agents=failed,
            variance=population_variance(session.scores.values()),
        ))
        await self._store.put(session)
        logger.info(
            "Session %s: %d/%d agents scored",
            session.session_id, len(session.scores), len(session.agents),
        )
        return True

    async def _discuss(self, session: EvaluationSession, cancel: asyncio.Event) -> bool:
        """Discussion rounds until convergence or the round cap. False if cancelled."""
        await self._transition(session, SessionPhase.DISCUSSING)
        config = session.config

        for round_number in range(1, config.max_discussion_rounds + 1):
            if cancel.is_set():
                return False
            session.current_round = round_number
            await self._store.put(session)

            outcome = await self._driver.run_round(
                self._handle(session),
                round_number,
                session.agents,
                session.scores,
                content=session.content,
                criteria=session.criteria,
                config=config,
                cancel_event=cancel,
            )
            if outcome.cancelled:
                return False

            session.scores = outcome.scores
            variance = population_variance(session.scores.values())
            session.rounds.append(outcome.to_round(variance))
            session.score_history.append(dict(session.scores))
            await self._store.put(session)
            await self._emit(
                EventType.ROUND_COMPLETED, session,
                round=round_number, variance=variance, adjustments=outcome.adjustments,
                failed_agents=sorted(outcome.failed_agents),
            )

            if variance < config.convergence_threshold:
                session.converged = True
                logger.info(
                    "Session %s converged after round %d (variance %.3f)",
                    session.session_id, round_number, variance,
                )
                await self._emit(EventType.CONVERGED, session, round=round_number, variance=variance)
                break
        return True

    async def _aggregate(self, session: EvaluationSession) -> None:
        await self._transition(session, SessionPhase.AGGREGATING)
        config = session.config

        data = AggregationInput(
            scores=session.scores,
            reputations={
                a.agent_id: a.reputation for a in session.agents if a.agent_id in session.scores
            },
            initial_scores=session.initial_scores,
            rounds=session.rounds,
            score_history=session.score_history,
            max_rounds=session.discussion_rounds,
        )

        excluded: list[str] = []
        if config.outlier_detection:
            report = self._engine.detect_outliers(session.scores, config)
            session.outliers = report
            if report.outliers and report.clean_scores:
                excluded = report.outliers
                logger.info(
                    "Session %s: excluding outliers %s", session.session_id, excluded,
                )

        if excluded:
            result = self._engine.aggregate_without(data, config, excluded)
        else:
            result = self._engine.aggregate(data, config)
        session.result = result
        await self._store.put(session)
        await self._emit(
            EventType.CONSENSUS_REACHED, session,
            final_score=result.final_score,
            confidence=result.confidence,
            algorithm=result.algorithm.value,
        )

    async def _publish(self, session: EvaluationSession) -> None:
        await self._transition(session, SessionPhase.PUBLISHING)
        result = session.result
        assert result is not None

        final = AgentMessage(
            kind=MessageKind.FINAL,
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            timestamp=self._clock.now(),
            round_number=session.current_round,
            score=clamp_score(result.final_score),
            confidence=result.confidence,
            individual_scores=result.individual_scores,
            algorithm=result.algorithm.value,
            total_rounds=len(session.rounds),
        )
        await self._log.append(self._handle(session), final)

        completed_at = self._clock.now()
        for agent in session.agents:
            score = session.scores.get(agent.agent_id)
            result_fields: dict[str, Any]
            if score is None:
                reason = session.failed_agents.get(agent.agent_id, "no score recorded")
                result_fields = {
                    "feedback": f"No score recorded for this evaluation: {reason}",
                }
            else:
                result_fields = {
                    "feedback": (
                        f"Consensus score: {result.final_score:.2f}/10. "
                        f"Individual assessment: {score:.2f}/10"
                    ),
                    "strengths": list(_STRENGTHS),
                    "improvements": (
                        [_HIGH_VARIANCE_NOTE] if result.variance > HIGH_VARIANCE else []
                    ),
                }
            session.agent_results.append(AgentResult(
                result_id=str(uuid.uuid4()),
                session_id=session.session_id,
                agent_id=agent.agent_id,
                score=score,
                completed_at=completed_at,
                **result_fields,
            ))

        await self._transition(session, SessionPhase.COMPLETED)
        logger.info(
            "Session %s completed: %.2f (%s, confidence %.3f)",
            session.session_id, result.final_score, result.algorithm, result.confidence,
        )
        await self._emit(
            EventType.SESSION_COMPLETED, session,
            final_score=result.final_score, rounds=len(session.rounds),
        )

    async def _fail(self, session: EvaluationSession, error: Exception) -> None:
        session.failed_phase = session.phase
        session.error = str(error)
        logger.error(
            "Session %s failed during %s: %s",
            session.session_id, session.failed_phase, error,
            exc_info=error,
        )
        await self._transition(session, SessionPhase.FAILED)
        await self._emit(
            EventType.SESSION_FAILED, session,
            phase=session.failed_phase.value, error=session.error,
        )

    async def _finish_cancelled(self, session: EvaluationSession) -> EvaluationSession:
        logger.info(
            "Session %s cancelled during %s (round %d)",
            session.session_id, session.phase, session.current_round,
        )
        await self._transition(session, SessionPhase.CANCELLED)
        await self._emit(EventType.SESSION_CANCELLED, session, round=session.current_round)
        return session

    # ── Helpers ──────────────────────────────────────────────────

    @staticmethod
    def _handle(session: EvaluationSession) -> LogHandle:
        if session.log is None:
            raise RuntimeError(f"Session {session.session_id} has no log")
        return session.log

    async def _emit(self, event_type: EventType, session: EvaluationSession, **data: Any) -> None:
        if self._emitter is None:
            return
        await self._emitter.emit(event_type, session.session_id, **data)
