"""Message schemas for the per-session evaluation log.

Defines the immutable log entry (AgentMessage) published for every
scoring, discussion and adjustment step, and the EvaluationRound record
that groups the messages of one round.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Reserved author id for messages written by the orchestrator itself
COORDINATOR_ID = "coordinator"
COORDINATOR_NAME = "System Coordinator"


class MessageKind(StrEnum):
    """Types of entries appended to a session's message log."""

    SCORE = "score"
    DISCUSSION = "discussion"
    ADJUSTMENT = "adjustment"
    FINAL = "final"


class AgentMessage(BaseModel):
    """One immutable entry in a session's message log.

    The payload fields are kind-specific: score messages carry score,
    confidence, aspects and reasoning; discussion messages carry the
    discussion text; adjustments carry the original/adjusted pair; the
    final message carries the aggregate and the per-agent scores.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique message identifier (UUID v4)",
    )
    kind: MessageKind = Field(description="The type of log entry")
    agent_id: str = Field(description="Agent that authored the message")
    agent_name: str = Field(default="", description="Agent display name")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the message was created",
    )
    round_number: int = Field(ge=0, description="Round this message belongs to (0 = scoring)")

    score: float | None = Field(default=None, ge=0.0, le=10.0, description="Score value")
    confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Self-assessed confidence",
    )
    aspects: dict[str, float] = Field(
        default_factory=dict, description="Per-criterion aspect scores",
    )
    reasoning: str = Field(default="", description="Free-text rationale")
    discussion: str = Field(default="", description="Discussion text for peers")
    original_score: float | None = Field(
        default=None, description="Score before an adjustment",
    )
    adjusted_score: float | None = Field(
        default=None, ge=0.0, le=10.0, description="Score after an adjustment",
    )
    reply_to: str | None = Field(
        default=None, description="Message id this entry responds to",
    )

    individual_scores: dict[str, float] = Field(
        default_factory=dict, description="Final message: per-agent scores",
    )
    algorithm: str | None = Field(
        default=None, description="Final message: consensus algorithm used",
    )
    total_rounds: int | None = Field(
        default=None, description="Final message: number of rounds recorded",
    )


class EvaluationRound(BaseModel):
    """Messages produced during one round, with timing and failures.

    Round 0 is independent scoring; rounds 1..N are discussion rounds.
    Agents that failed or timed out are listed in failed_agents so the
    transcript shows the gap instead of silently omitting them.
    """

    model_config = ConfigDict(frozen=True)

    round_number: int = Field(ge=0, description="Round number")
    started_at: datetime = Field(description="When the round started")
    ended_at: datetime | None = Field(default=None, description="When the round ended")
    messages: list[AgentMessage] = Field(
        default_factory=list, description="Messages produced during the round",
    )
    failed_agents: dict[str, str] = Field(
        default_factory=dict, description="Agent id → failure reason for this round",
    )
    variance: float | None = Field(
        default=None, description="Population variance of scores at round end",
    )


class LogMetadata(BaseModel):
    """Descriptive metadata stored as the memo of a session log."""

    title: str = Field(description="Human-readable log title")
    participants: list[str] = Field(
        default_factory=list, description="Agent ids allowed to publish",
    )
    participant_count: int = Field(ge=0, description="Number of participating agents")
    max_rounds: int = Field(ge=0, description="Discussion round cap")


class LogHandle(BaseModel):
    """Reference to an allocated session log."""

    model_config = ConfigDict(frozen=True)

    log_id: str = Field(description="Backend topic identifier")
    session_id: str = Field(description="Session the log belongs to")
    metadata: LogMetadata = Field(description="Metadata the log was created with")
    created_at: datetime = Field(description="When the log was allocated")
