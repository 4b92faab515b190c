"""Consensus engine facade.

Selects a strategy from the registry by name, runs it, and provides the
advisory outlier analysis plus the restriction of an aggregation input
to a clean set of agents. Holds no state between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping

from jurybox.consensus.statistics import detect_outliers
from jurybox.consensus.strategies import get_strategy
from jurybox.schemas.consensus import (
    AggregationInput,
    ConsensusAlgorithm,
    ConsensusResult,
    OutlierReport,
)
from jurybox.schemas.session import OrchestratorConfig

logger = logging.getLogger(__name__)


class ConsensusEngine:
    """Runs named aggregation strategies over per-agent scores."""

    def aggregate(
        self,
        data: AggregationInput,
        config: OrchestratorConfig,
        algorithm: ConsensusAlgorithm | str | None = None,
    ) -> ConsensusResult:
        """Aggregate with the configured (or explicitly named) strategy.

        Raises:
            ConfigurationError: If the algorithm is not registered.
            ConsensusError: If the strategy receives degenerate input.
        """
        strategy = get_strategy(algorithm or config.consensus_algorithm, config)
        result = strategy.aggregate(data)
        logger.debug(
            "%s over %d agents: %.3f (variance %.3f)",
            strategy.name, len(data.scores), result.final_score, result.variance,
        )
        return result

    def detect_outliers(
        self,
        scores: Mapping[str, float],
        config: OrchestratorConfig,
    ) -> OutlierReport:
        """Advisory z-score outlier analysis at the configured threshold."""
        return detect_outliers(scores, config.outlier_z_threshold)

    def aggregate_without(
        self,
        data: AggregationInput,
        config: OrchestratorConfig,
        excluded: Collection[str],
    ) -> ConsensusResult:
        """Aggregate after removing the excluded agents from every input."""
        keep = [a for a in data.scores if a not in excluded]
        result = self.aggregate(restrict_input(data, keep), config)
        return result.model_copy(update={"excluded_agents": sorted(excluded)})


def restrict_input(data: AggregationInput, agent_ids: Collection[str]) -> AggregationInput:
    """Copy of data that only mentions the given agents."""
    keep = set(agent_ids)

    def _only(mapping: Mapping[str, float]) -> dict[str, float]:
        return {a: s for a, s in mapping.items() if a in keep}

    rounds = [
        r.model_copy(update={
            "messages": [m for m in r.messages if m.agent_id in keep],
            "failed_agents": {a: why for a, why in r.failed_agents.items() if a in keep},
        })
        for r in data.rounds
    ]
    return AggregationInput(
        scores=_only(data.scores),
        reputations={a: r for a, r in data.reputations.items() if a in keep},
        initial_scores=_only(data.initial_scores),
        rounds=rounds,
        score_history=[_only(snapshot) for snapshot in data.score_history],
        max_rounds=data.max_rounds,
    )
