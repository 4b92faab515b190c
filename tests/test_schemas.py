"""Tests for jurybox.schemas — log messages, sessions and configuration."""

import uuid

import pytest
from pydantic import ValidationError

from jurybox.schemas.consensus import AgentReputation, ConsensusAlgorithm
from jurybox.schemas.evaluation import JudgeAgent, ScoreResult
from jurybox.schemas.messages import AgentMessage, LogMetadata, MessageKind
from jurybox.schemas.session import EvaluationSession, OrchestratorConfig, SessionPhase


class TestMessageKind:
    def test_all_kinds_exist(self):
        assert MessageKind.SCORE == "score"
        assert MessageKind.DISCUSSION == "discussion"
        assert MessageKind.ADJUSTMENT == "adjustment"
        assert MessageKind.FINAL == "final"

    def test_kind_count(self):
        assert len(MessageKind) == 4


class TestAgentMessage:
    def test_defaults(self):
        msg = AgentMessage(kind=MessageKind.SCORE, agent_id="a", round_number=0, score=5.0)
        uuid.UUID(msg.message_id)
        assert msg.timestamp.tzinfo is not None
        assert msg.aspects == {}

    def test_frozen(self):
        msg = AgentMessage(kind=MessageKind.SCORE, agent_id="a", round_number=0, score=5.0)
        with pytest.raises(ValidationError):
            msg.score = 6.0

    def test_score_range(self):
        with pytest.raises(ValidationError):
            AgentMessage(kind=MessageKind.SCORE, agent_id="a", round_number=0, score=10.5)

    def test_negative_round_rejected(self):
        with pytest.raises(ValidationError):
            AgentMessage(kind=MessageKind.DISCUSSION, agent_id="a", round_number=-1)

    def test_json_round_trip(self):
        msg = AgentMessage(
            kind=MessageKind.ADJUSTMENT, agent_id="a", round_number=2,
            original_score=5.0, adjusted_score=6.5, reply_to="m-1",
        )
        assert AgentMessage.model_validate_json(msg.model_dump_json()) == msg


class TestSessionPhase:
    @pytest.mark.parametrize("phase", [
        SessionPhase.COMPLETED, SessionPhase.FAILED, SessionPhase.CANCELLED,
    ])
    def test_terminal(self, phase):
        assert phase.is_terminal

    @pytest.mark.parametrize("phase", [
        SessionPhase.INITIALIZING,
        SessionPhase.INDEPENDENT_SCORING,
        SessionPhase.DISCUSSING,
        SessionPhase.AGGREGATING,
        SessionPhase.PUBLISHING,
    ])
    def test_not_terminal(self, phase):
        assert not phase.is_terminal


class TestOrchestratorConfig:
    def test_defaults(self):
        config = OrchestratorConfig()
        assert config.max_discussion_rounds == 3
        assert config.consensus_algorithm == ConsensusAlgorithm.WEIGHTED_AVERAGE
        assert config.enable_discussion is True
        assert config.outlier_detection is False

    def test_algorithm_from_string(self):
        config = OrchestratorConfig(consensus_algorithm="delphi_method")
        assert config.consensus_algorithm == ConsensusAlgorithm.DELPHI_METHOD

    def test_trim_fraction_below_half(self):
        with pytest.raises(ValidationError):
            OrchestratorConfig(trim_fraction=0.5)

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            OrchestratorConfig(round_timeout=0)


class TestEvaluationSession:
    def test_defaults(self):
        session = EvaluationSession(
            content="text", agents=[JudgeAgent(agent_id="a", name="A")],
        )
        uuid.UUID(session.session_id)
        assert session.phase == SessionPhase.INITIALIZING
        assert session.criteria == ["Accuracy", "Clarity", "Completeness", "Relevance"]
        assert session.discussion_rounds == 0

    def test_get_agent(self):
        session = EvaluationSession(
            content="text",
            agents=[JudgeAgent(agent_id="a", name="A"), JudgeAgent(agent_id="b", name="B")],
        )
        assert session.get_agent("b").name == "B"
        assert session.get_agent("z") is None
        assert session.agent_ids == ["a", "b"]


class TestMiscSchemas:
    def test_reputation_bounds(self):
        with pytest.raises(ValidationError):
            AgentReputation(success_rate=1.5)

    def test_score_result_bounds(self):
        with pytest.raises(ValidationError):
            ScoreResult(score=-1)

    def test_empty_agent_id_rejected(self):
        with pytest.raises(ValidationError):
            JudgeAgent(agent_id="", name="Nobody")

    def test_log_metadata(self):
        meta = LogMetadata(title="t", participants=["a"], participant_count=1, max_rounds=0)
        assert meta.model_dump()["participants"] == ["a"]
