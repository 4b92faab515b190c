"""Abstract evaluator interface.

An Evaluator turns one judge plus the content under evaluation into a
score, and later into a discussion turn after seeing peer scores. The
orchestrator only depends on this interface; the LiteLLM adapter is one
implementation of it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from jurybox.schemas.evaluation import DiscussionResult, JudgeAgent, PeerScore, ScoreResult


class Evaluator(ABC):
    """Scoring and discussion capability for judge agents.

    Implementations raise EvaluationError for any per-agent failure.
    """

    @abstractmethod
    async def evaluate(
        self,
        agent: JudgeAgent,
        content: str,
        criteria: list[str],
    ) -> ScoreResult:
        """Score content independently as the given agent."""
        ...

    @abstractmethod
    async def discuss(
        self,
        agent: JudgeAgent,
        own_score: float,
        peer_scores: list[PeerScore],
        content: str,
        criteria: list[str],
    ) -> DiscussionResult:
        """React to peer scores, optionally revising the agent's own score."""
        ...
