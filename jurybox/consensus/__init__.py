"""Consensus engine for JuryBox.

Provides score statistics, the seven aggregation algorithms, the
strategy registry, and the ConsensusEngine facade used by the
orchestrator.
"""

from jurybox.consensus.algorithms import (
    delphi_method,
    iterative_convergence,
    majority_voting,
    median,
    simple_average,
    trimmed_mean,
    weighted_average,
)
from jurybox.consensus.engine import ConsensusEngine, restrict_input
from jurybox.consensus.statistics import (
    agent_weight,
    calculate_convergence,
    confidence_from_variance,
    detect_outliers,
    population_variance,
)
from jurybox.consensus.strategies import (
    AggregationStrategy,
    available_strategies,
    get_strategy,
    register_strategy,
)

__all__ = [
    "AggregationStrategy",
    "ConsensusEngine",
    "agent_weight",
    "available_strategies",
    "calculate_convergence",
    "confidence_from_variance",
    "delphi_method",
    "detect_outliers",
    "get_strategy",
    "iterative_convergence",
    "majority_voting",
    "median",
    "population_variance",
    "register_strategy",
    "restrict_input",
    "simple_average",
    "trimmed_mean",
    "weighted_average",
]
