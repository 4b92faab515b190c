"""Audit report schemas built by replaying a session's message log."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from jurybox.schemas.messages import MessageKind


class AuditTimelineEntry(BaseModel):
    """One log message rendered for humans."""

    timestamp: datetime = Field(description="Message timestamp")
    kind: MessageKind = Field(description="Message kind")
    agent_id: str = Field(description="Author of the message")
    round_number: int = Field(description="Round the message belongs to")
    description: str = Field(description="Human-readable description")


class AuditSummary(BaseModel):
    """Aggregate facts derived from a replayed log."""

    rounds_completed: int = Field(default=0, description="Highest discussion round seen")
    scores_submitted: int = Field(default=0, description="Number of score messages")
    discussions: int = Field(default=0, description="Number of discussion messages")
    adjustments: int = Field(default=0, description="Number of adjustment messages")
    participants: list[str] = Field(
        default_factory=list, description="Agents that published at least one message",
    )
    consensus_reached: bool = Field(default=False, description="A final message is present")
    abandoned: bool = Field(
        default=True, description="No final message: the session was cancelled, failed or is running",
    )
    final_score: float | None = Field(default=None, description="Score in the final message")
    algorithm: str | None = Field(default=None, description="Algorithm in the final message")


class AuditReport(BaseModel):
    """Audit view of one session log."""

    session_id: str = Field(description="Session the log belongs to")
    total_messages: int = Field(description="Messages in the log")
    timeline: list[AuditTimelineEntry] = Field(
        default_factory=list, description="Messages in log order",
    )
    summary: AuditSummary = Field(description="Derived summary")
