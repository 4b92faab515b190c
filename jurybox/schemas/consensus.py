"""Consensus schemas.

Defines the algorithm enumeration, agent reputation inputs used for
weighting, the aggregation input bundle, and the immutable results of
aggregation and outlier detection.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from jurybox.schemas.messages import EvaluationRound


class ConsensusAlgorithm(StrEnum):
    """Named aggregation strategies."""

    SIMPLE_AVERAGE = "simple_average"
    WEIGHTED_AVERAGE = "weighted_average"
    MEDIAN = "median"
    TRIMMED_MEAN = "trimmed_mean"
    ITERATIVE_CONVERGENCE = "iterative_convergence"
    MAJORITY_VOTING = "majority_voting"
    DELPHI_METHOD = "delphi_method"


class AgentReputation(BaseModel):
    """Reputation figures for one judge, read from the storage layer."""

    average_rating: float = Field(
        default=5.0, ge=0.0, le=10.0, description="Average rating received (0-10)",
    )
    completed_judgments: int = Field(
        default=0, ge=0, description="Number of judgments completed",
    )
    success_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Fraction of successful judgments",
    )


class AggregationInput(BaseModel):
    """Everything a strategy may need to aggregate one session.

    Only scores is required; weighted strategies read reputations,
    iterative_convergence replays rounds, delphi_method reads
    score_history (one full score map per round, oldest first).
    """

    scores: dict[str, float] = Field(description="Agent id → current score")
    reputations: dict[str, AgentReputation] = Field(
        default_factory=dict, description="Agent id → reputation",
    )
    initial_scores: dict[str, float] = Field(
        default_factory=dict, description="Agent id → round 0 score",
    )
    rounds: list[EvaluationRound] = Field(
        default_factory=list, description="Discussion rounds in order",
    )
    score_history: list[dict[str, float]] = Field(
        default_factory=list, description="Full score snapshot per round",
    )
    max_rounds: int | None = Field(
        default=None, ge=0, description="Round cap for replaying strategies",
    )


class ConsensusResult(BaseModel):
    """Output of the consensus engine for one session."""

    model_config = ConfigDict(frozen=True)

    final_score: float = Field(description="Aggregate score")
    algorithm: ConsensusAlgorithm = Field(description="Strategy that produced the result")
    individual_scores: dict[str, float] = Field(
        default_factory=dict, description="Per-agent scores that fed the aggregate",
    )
    weights: dict[str, float] | None = Field(
        default=None, description="Per-agent weights (weighted strategies only)",
    )
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence derived from variance")
    variance: float = Field(ge=0.0, description="Dispersion of scores around the aggregate")
    convergence_rounds: int = Field(ge=0, description="Rounds at which convergence occurred")
    excluded_agents: list[str] = Field(
        default_factory=list, description="Agents dropped as outliers before aggregation",
    )


class OutlierReport(BaseModel):
    """Advisory outlier analysis over a score map."""

    model_config = ConfigDict(frozen=True)

    outliers: list[str] = Field(default_factory=list, description="Flagged agent ids")
    clean_scores: dict[str, float] = Field(
        default_factory=dict, description="Scores with outliers removed",
    )
    mean: float = Field(description="Population mean of the input scores")
    std_dev: float = Field(ge=0.0, description="Population standard deviation")
