"""Discussion round driver.

Runs exactly one discussion round: every agent that currently holds a
score sees its peers' scores, reacts through the Evaluator, and may
revise its own score. Each turn is published to the session's message
log as a discussion message, followed by an adjustment message when the
score moved by more than the configured dead-band.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial

from jurybox.clock import Clock, SystemClock
from jurybox.errors import EvaluationError
from jurybox.fanout import FanOut, FanOutResult
from jurybox.messaging.log import MessageLog
from jurybox.providers.base import Evaluator
from jurybox.schemas.evaluation import DiscussionResult, JudgeAgent, PeerScore
from jurybox.schemas.messages import AgentMessage, EvaluationRound, LogHandle, MessageKind
from jurybox.schemas.session import OrchestratorConfig

logger = logging.getLogger(__name__)


def clamp_score(score: float) -> float:
    return max(0.0, min(10.0, score))


def exceeds_dead_band(original: float, adjusted: float, dead_band: float) -> bool:
    """Whether a score change is large enough to count as an adjustment.

    The comparison is exclusive and rounded to 9 decimals, so a change of
    exactly the dead-band (e.g. 7.0 -> 7.1 with 0.1) is not an adjustment.
    """
    return round(abs(adjusted - original), 9) > dead_band


@dataclass
class RoundOutcome:
    """What one discussion round produced."""

    round_number: int
    started_at: datetime
    scores: dict[str, float] = field(default_factory=dict)
    messages: list[AgentMessage] = field(default_factory=list)
    failed_agents: dict[str, str] = field(default_factory=dict)
    adjustments: int = 0
    cancelled: bool = False
    ended_at: datetime | None = None

    def to_round(self, variance: float | None = None) -> EvaluationRound:
        return EvaluationRound(
            round_number=self.round_number,
            started_at=self.started_at,
            ended_at=self.ended_at,
            messages=self.messages,
            failed_agents=self.failed_agents,
            variance=variance,
        )


class DiscussionRoundDriver:
    """Drives a single discussion round over the current participants."""

    def __init__(
        self,
        evaluator: Evaluator,
        message_log: MessageLog,
        clock: Clock | None = None,
        fan_out: FanOut | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._log = message_log
        self._clock = clock or SystemClock()
        self._fan_out = fan_out or FanOut()

    async def run_round(
        self,
        handle: LogHandle,
        round_number: int,
        agents: Sequence[JudgeAgent],
        scores: Mapping[str, float],
        *,
        content: str,
        criteria: list[str],
        config: OrchestratorConfig,
        cancel_event: asyncio.Event | None = None,
    ) -> RoundOutcome:
        """Run one round and return the updated score map.

        Only agents present in scores take part. Peers always see the
        snapshot taken at round start. Per-agent failures and timeouts
        are recorded in the outcome and never abort the round; a set
        cancel_event stops the round and discards calls still in flight.
        """
        snapshot = dict(scores)
        outcome = RoundOutcome(
            round_number=round_number,
            started_at=self._clock.now(),
            scores=dict(scores),
        )
        participants = [a for a in agents if a.agent_id in snapshot]
        names = {a.agent_id: a.name for a in agents}

        logger.info(
            "Discussion round %d: %d agents (%s)",
            round_number, len(participants),
            "concurrent" if config.concurrent_discussion else "sequential",
        )

        def _call(agent: JudgeAgent):
            peers = [
                PeerScore(agent_id=peer_id, agent_name=names.get(peer_id, ""), score=score)
                for peer_id, score in snapshot.items()
                if peer_id != agent.agent_id
            ]
            return partial(
                self._evaluator.discuss,
                agent, snapshot[agent.agent_id], peers, content, criteria,
            )

        if config.concurrent_discussion:
            fanned = await self._fan_out.run(
                {a.agent_id: _call(a) for a in participants},
                timeout=config.round_timeout,
                cancel_event=cancel_event,
            )
            self._record_failures(outcome, fanned, config)
            if fanned.cancelled:
                outcome.cancelled = True
            else:
                for agent in participants:
                    if agent.agent_id in fanned.results:
                        await self._apply(handle, outcome, agent, fanned.results[agent.agent_id], config)
        else:
            for agent in participants:
                if cancel_event is not None and cancel_event.is_set():
                    outcome.cancelled = True
                    break
                fanned = await self._fan_out.run(
                    {agent.agent_id: _call(agent)},
                    timeout=config.round_timeout,
                    cancel_event=cancel_event,
                )
                self._record_failures(outcome, fanned, config)
                if fanned.cancelled:
                    outcome.cancelled = True
                    break
                if agent.agent_id in fanned.results:
                    await self._apply(handle, outcome, agent, fanned.results[agent.agent_id], config)

        outcome.ended_at = self._clock.now()
        logger.info(
            "Discussion round %d done: %d adjustments, %d failures%s",
            round_number, outcome.adjustments, len(outcome.failed_agents),
            " (cancelled)" if outcome.cancelled else "",
        )
        return outcome

    def _record_failures(
        self,
        outcome: RoundOutcome,
        fanned: FanOutResult[DiscussionResult],
        config: OrchestratorConfig,
    ) -> None:
        for agent_id, error in fanned.errors.items():
            if not isinstance(error, EvaluationError):
                raise error
            logger.warning(
                "Agent %s failed discussion round %d: %s",
                agent_id, outcome.round_number, error.message,
            )
            outcome.failed_agents[agent_id] = error.message
        for agent_id in fanned.timed_out:
            logger.warning(
                "Agent %s timed out in discussion round %d", agent_id, outcome.round_number,
            )
            outcome.failed_agents[agent_id] = f"timed out after {config.round_timeout:g}s"

    async def _apply(
        self,
        handle: LogHandle,
        outcome: RoundOutcome,
        agent: JudgeAgent,
        result: DiscussionResult,
        config: OrchestratorConfig,
    ) -> None:
        current = outcome.scores[agent.agent_id]
        discussion = AgentMessage(
            kind=MessageKind.DISCUSSION,
            agent_id=agent.agent_id,
            agent_name=agent.name,
            timestamp=self._clock.now(),
            round_number=outcome.round_number,
            score=current,
            discussion=result.discussion,
        )
        await self._log.append(handle, discussion)
        outcome.messages.append(discussion)

        if result.adjusted_score is None:
            return
        adjusted = clamp_score(result.adjusted_score)
        if not exceeds_dead_band(current, adjusted, config.discussion_dead_band):
            return

        adjustment = AgentMessage(
            kind=MessageKind.ADJUSTMENT,
            agent_id=agent.agent_id,
            agent_name=agent.name,
            timestamp=self._clock.now(),
            round_number=outcome.round_number,
            original_score=current,
            adjusted_score=adjusted,
            reply_to=discussion.message_id,
        )
        await self._log.append(handle, adjustment)
        outcome.messages.append(adjustment)
        outcome.scores[agent.agent_id] = adjusted
        outcome.adjustments += 1
        logger.debug(
            "%s adjusted %.2f -> %.2f in round %d",
            agent.agent_id, current, adjusted, outcome.round_number,
        )
