"""JuryBox schema definitions.

All Pydantic v2 models shared by the message log, consensus engine,
discussion driver and orchestrator.
"""

from jurybox.schemas.audit import AuditReport, AuditSummary, AuditTimelineEntry
from jurybox.schemas.consensus import (
    AgentReputation,
    AggregationInput,
    ConsensusAlgorithm,
    ConsensusResult,
    OutlierReport,
)
from jurybox.schemas.evaluation import (
    DiscussionResult,
    EvaluatorConfig,
    JudgeAgent,
    PeerScore,
    ScoreResult,
)
from jurybox.schemas.messages import (
    COORDINATOR_ID,
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
    OrchestratorConfig,
    SessionPhase,
)

__all__ = [
    "COORDINATOR_ID",
    "AgentMessage",
    "AgentReputation",
    "AgentResult",
    "AuditReport",
    "AuditSummary",
    "AuditTimelineEntry",
    "AggregationInput",
    "ConsensusAlgorithm",
    "ConsensusResult",
    "DiscussionResult",
    "EvaluationProgress",
    "EvaluationReport",
    "EvaluationRound",
    "EvaluationSession",
    "EvaluatorConfig",
    "JudgeAgent",
    "LogHandle",
    "LogMetadata",
    "MessageKind",
    "OrchestratorConfig",
    "OutlierReport",
    "PeerScore",
    "ScoreResult",
    "SessionPhase",
]
