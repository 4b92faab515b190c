"""Exception taxonomy for JuryBox.

Per-agent failures (EvaluationError) are recoverable and downgraded to
missing data by the round drivers. Everything else is fatal for the
session and moves it to the Failed phase.
"""

from __future__ import annotations

from typing import Any


class JuryBoxError(Exception):
    """Base exception for all JuryBox errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(JuryBoxError):
    """Raised when a session or orchestrator configuration is invalid."""


class EvaluationError(JuryBoxError):
    """Raised when an agent's scoring or discussion call fails."""

    def __init__(
        self,
        message: str,
        agent_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.agent_id = agent_id
        super().__init__(
            message,
            details={**(details or {}), "agent_id": agent_id},
        )


class NoParticipantsError(JuryBoxError):
    """Raised when every agent failed independent scoring."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        agent_count: int | None = None,
    ) -> None:
        self.session_id = session_id
        self.agent_count = agent_count
        super().__init__(
            message,
            details={"session_id": session_id, "agent_count": agent_count},
        )


class ConsensusError(JuryBoxError):
    """Raised when an aggregation strategy receives degenerate input."""

    def __init__(
        self,
        message: str,
        algorithm: str | None = None,
        agent_count: int | None = None,
    ) -> None:
        self.algorithm = algorithm
        self.agent_count = agent_count
        super().__init__(
            message,
            details={"algorithm": algorithm, "agent_count": agent_count},
        )


class LogAppendError(JuryBoxError):
    """Raised when the durable log backend rejects a write."""

    def __init__(
        self,
        message: str,
        log_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.log_id = log_id
        super().__init__(
            message,
            details={**(details or {}), "log_id": log_id},
        )


class SessionNotFoundError(JuryBoxError):
    """Raised when the orchestrator is asked about an unknown session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")
