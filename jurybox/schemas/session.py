"""Evaluation session schemas.

Defines the orchestrator configuration, the session state machine phases,
the mutable session record owned by the orchestrator, and the read-only
views returned by the orchestrator API (progress, per-agent results,
final report).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from jurybox.schemas.consensus import ConsensusAlgorithm, ConsensusResult, OutlierReport
from jurybox.schemas.evaluation import JudgeAgent
from jurybox.schemas.messages import EvaluationRound, LogHandle


class SessionPhase(StrEnum):
    """Orchestrator state machine phases."""

    INITIALIZING = "initializing"
    INDEPENDENT_SCORING = "independent_scoring"
    DISCUSSING = "discussing"
    AGGREGATING = "aggregating"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_PHASES


_TERMINAL_PHASES = frozenset({
    SessionPhase.COMPLETED,
    SessionPhase.FAILED,
    SessionPhase.CANCELLED,
})


class OrchestratorConfig(BaseModel):
    """Immutable configuration for one evaluation session.

    convergence_threshold stops the orchestrator's discussion loop;
    iterative_variance_threshold is the separate stopping rule used when
    the iterative_convergence strategy replays adjustments.
    """

    model_config = ConfigDict(frozen=True)

    max_discussion_rounds: int = Field(
        default=3, ge=0, description="Maximum number of discussion rounds",
    )
    round_timeout: float = Field(
        default=60.0, gt=0.0, description="Seconds to wait for agents in a round",
    )
    consensus_algorithm: ConsensusAlgorithm = Field(
        default=ConsensusAlgorithm.WEIGHTED_AVERAGE,
        description="Aggregation strategy",
    )
    enable_discussion: bool = Field(default=True, description="Run discussion rounds")
    convergence_threshold: float = Field(
        default=0.5, ge=0.0, description="Variance below which discussion stops early",
    )
    outlier_detection: bool = Field(
        default=False, description="Drop z-score outliers before aggregation",
    )
    outlier_z_threshold: float = Field(
        default=2.0, gt=0.0, description="Z-score above which a score is an outlier",
    )
    trim_fraction: float = Field(
        default=0.2, ge=0.0, lt=0.5, description="Fraction trimmed from each end (trimmed_mean)",
    )
    majority_threshold: float = Field(
        default=5.0, ge=0.0, le=10.0, description="Pass/fail threshold (majority_voting)",
    )
    iterative_variance_threshold: float = Field(
        default=0.5, ge=0.0, description="Stopping variance for iterative_convergence",
    )
    discussion_dead_band: float = Field(
        default=0.1, ge=0.0, description="Score change at or below which no adjustment is made",
    )
    concurrent_discussion: bool = Field(
        default=False, description="Run each discussion round's agent calls concurrently",
    )


class AgentResult(BaseModel):
    """Per-agent outcome built when a session completes."""

    result_id: str = Field(description="Unique result identifier")
    session_id: str = Field(description="Session this result belongs to")
    agent_id: str = Field(description="Agent id")
    score: float | None = Field(default=None, description="Agent's final score, if any")
    feedback: str = Field(default="", description="Feedback referencing the consensus score")
    strengths: list[str] = Field(default_factory=list, description="Noted strengths")
    improvements: list[str] = Field(default_factory=list, description="Noted improvements")
    completed_at: datetime = Field(description="When the result was produced")


class EvaluationSession(BaseModel):
    """One evaluation run, from request to terminal state.

    Owned exclusively by the orchestrator and persisted through the
    session store after every phase transition.
    """

    session_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique session identifier (UUID)",
    )
    content: str = Field(description="Content under evaluation")
    criteria: list[str] = Field(
        default_factory=lambda: ["Accuracy", "Clarity", "Completeness", "Relevance"],
        description="Ordered evaluation criteria",
    )
    agents: list[JudgeAgent] = Field(description="Participating judges")
    config: OrchestratorConfig = Field(
        default_factory=OrchestratorConfig, description="Session configuration",
    )
    phase: SessionPhase = Field(default=SessionPhase.INITIALIZING, description="Current phase")
    current_round: int = Field(default=0, ge=0, description="Current round number")
    log: LogHandle | None = Field(default=None, description="Handle of the session log")

    rounds: list[EvaluationRound] = Field(
        default_factory=list, description="Completed rounds in order",
    )
    initial_scores: dict[str, float] = Field(
        default_factory=dict, description="Round 0 scores",
    )
    scores: dict[str, float] = Field(
        default_factory=dict, description="Current score per agent",
    )
    score_history: list[dict[str, float]] = Field(
        default_factory=list, description="Score snapshot after each round",
    )
    failed_agents: dict[str, str] = Field(
        default_factory=dict, description="Agents that failed independent scoring",
    )
    converged: bool = Field(default=False, description="Whether discussion converged early")

    result: ConsensusResult | None = Field(default=None, description="Consensus result")
    outliers: OutlierReport | None = Field(default=None, description="Outlier analysis")
    agent_results: list[AgentResult] = Field(
        default_factory=list, description="Per-agent results",
    )

    error: str = Field(default="", description="Failure reason if failed")
    failed_phase: SessionPhase | None = Field(
        default=None, description="Phase that was running when the session failed",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the session was created",
    )
    completed_at: datetime | None = Field(
        default=None, description="When the session reached a terminal phase",
    )

    @property
    def agent_ids(self) -> list[str]:
        return [a.agent_id for a in self.agents]

    @property
    def discussion_rounds(self) -> int:
        """Number of discussion rounds actually run."""
        return sum(1 for r in self.rounds if r.round_number > 0)

    def get_agent(self, agent_id: str) -> JudgeAgent | None:
        return next((a for a in self.agents if a.agent_id == agent_id), None)


class EvaluationProgress(BaseModel):
    """Progress snapshot returned by polling."""

    session_id: str = Field(description="Session id")
    phase: SessionPhase = Field(description="Current phase")
    current_round: int = Field(description="Current round number")
    total_rounds: int = Field(description="Discussion round cap")
    scores_received: int = Field(description="Agents that produced a round 0 score")
    total_agents: int = Field(description="Configured participants")
    failed_phase: SessionPhase | None = Field(
        default=None, description="Last phase reached before failure",
    )
    error: str = Field(default="", description="Failure reason if failed")
    log_id: str | None = Field(default=None, description="Session log id")


class EvaluationReport(BaseModel):
    """Final artifacts of a completed session."""

    session_id: str = Field(description="Session id")
    consensus: ConsensusResult = Field(description="Consensus result")
    agent_results: list[AgentResult] = Field(description="Per-agent results")
    rounds: list[EvaluationRound] = Field(description="Full transcript")
    discussion_rounds: int = Field(description="Discussion rounds actually run")
    converged: bool = Field(description="Whether discussion converged early")
    outliers: OutlierReport | None = Field(default=None, description="Outlier analysis")
