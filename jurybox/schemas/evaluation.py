"""Judge and evaluator schemas.

Defines the participating judge (JudgeAgent) and the structured values
exchanged with the external Evaluator capability.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from jurybox.schemas.consensus import AgentReputation


class JudgeAgent(BaseModel):
    """A judge participating in an evaluation session."""

    agent_id: str = Field(min_length=1, description="Unique agent identifier")
    name: str = Field(description="Display name used in messages and prompts")
    bio: str = Field(default="", description="Short description of the judge")
    specialties: list[str] = Field(
        default_factory=list, description="Areas of expertise",
    )
    reputation: AgentReputation = Field(
        default_factory=AgentReputation, description="Reputation used for weighting",
    )


class ScoreResult(BaseModel):
    """Result of an independent evaluation by one agent."""

    score: float = Field(ge=0.0, le=10.0, description="Overall score (0-10)")
    reasoning: str = Field(default="", description="Rationale for the score")
    confidence: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Self-assessed confidence",
    )
    aspects: dict[str, float] = Field(
        default_factory=dict, description="Criterion → aspect score",
    )


class PeerScore(BaseModel):
    """A peer's current score as shown to a discussing agent."""

    agent_id: str = Field(description="Peer agent id")
    agent_name: str = Field(default="", description="Peer display name")
    score: float = Field(description="Peer's current score")


class DiscussionResult(BaseModel):
    """Result of one agent's discussion turn.

    A missing adjusted_score means the agent keeps its current score.
    """

    discussion: str = Field(default="", description="Discussion text")
    adjusted_score: float | None = Field(
        default=None, ge=0.0, le=10.0, description="Revised score, if any",
    )


class EvaluatorConfig(BaseModel):
    """Settings for the LiteLLM-backed evaluator."""

    model: str = Field(default="gpt-4o-mini", description="LiteLLM model identifier")
    api_key_env: str = Field(
        default="OPENAI_API_KEY", description="Environment variable holding the API key",
    )
    api_base: str | None = Field(default=None, description="Custom API base URL")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1024, gt=0, description="Completion token cap")
    timeout: int = Field(default=60, gt=0, description="Per-call timeout in seconds")
