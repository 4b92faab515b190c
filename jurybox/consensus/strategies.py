"""Strategy registry for consensus aggregation.

Each algorithm is a named AggregationStrategy registered under its
ConsensusAlgorithm value. Adding a strategy means writing a subclass and
decorating it with @register_strategy; nothing else selects on the name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from jurybox.consensus import algorithms
from jurybox.errors import ConfigurationError
from jurybox.schemas.consensus import (
    AggregationInput,
    ConsensusAlgorithm,
    ConsensusResult,
)
from jurybox.schemas.session import OrchestratorConfig


class AggregationStrategy(ABC):
    """A named, stateless aggregation over an AggregationInput."""

    name: ClassVar[ConsensusAlgorithm]

    def __init__(self, config: OrchestratorConfig | None = None) -> None:
        self._config = config or OrchestratorConfig()

    @abstractmethod
    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        """Reduce the input to a single ConsensusResult."""


_REGISTRY: dict[ConsensusAlgorithm, type[AggregationStrategy]] = {}


def register_strategy(cls: type[AggregationStrategy]) -> type[AggregationStrategy]:
    """Class decorator adding a strategy to the registry."""
    if cls.name in _REGISTRY:
        raise ValueError(f"Strategy already registered: {cls.name}")
    _REGISTRY[cls.name] = cls
    return cls


def available_strategies() -> list[ConsensusAlgorithm]:
    """All registered algorithm names."""
    return list(_REGISTRY)


def get_strategy(
    name: ConsensusAlgorithm | str,
    config: OrchestratorConfig | None = None,
) -> AggregationStrategy:
    """Instantiate the strategy registered under name.

    Raises:
        ConfigurationError: If name is not a registered algorithm.
    """
    try:
        algorithm = ConsensusAlgorithm(name)
        strategy_cls = _REGISTRY[algorithm]
    except (ValueError, KeyError):
        raise ConfigurationError(
            f"Unknown consensus algorithm: {name}",
            details={"available": [a.value for a in _REGISTRY]},
        ) from None
    return strategy_cls(config)


@register_strategy
class SimpleAverageStrategy(AggregationStrategy):
    name = ConsensusAlgorithm.SIMPLE_AVERAGE

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        return algorithms.simple_average(data.scores)


@register_strategy
class WeightedAverageStrategy(AggregationStrategy):
    name = ConsensusAlgorithm.WEIGHTED_AVERAGE

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        return algorithms.weighted_average(data.scores, data.reputations)


@register_strategy
class MedianStrategy(AggregationStrategy):
    name = ConsensusAlgorithm.MEDIAN

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        return algorithms.median(data.scores)


@register_strategy
class TrimmedMeanStrategy(AggregationStrategy):
    name = ConsensusAlgorithm.TRIMMED_MEAN

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        return algorithms.trimmed_mean(data.scores, self._config.trim_fraction)


@register_strategy
class IterativeConvergenceStrategy(AggregationStrategy):
    """Replays the recorded adjustments starting from round 0 scores."""

    name = ConsensusAlgorithm.ITERATIVE_CONVERGENCE

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        messages = [m for r in data.rounds for m in r.messages]
        max_rounds = data.max_rounds
        if max_rounds is None:
            max_rounds = len(data.rounds)
        return algorithms.iterative_convergence(
            data.initial_scores or data.scores,
            messages,
            max_rounds,
            self._config.iterative_variance_threshold,
        )


@register_strategy
class MajorityVotingStrategy(AggregationStrategy):
    name = ConsensusAlgorithm.MAJORITY_VOTING

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        return algorithms.majority_voting(data.scores, self._config.majority_threshold)


@register_strategy
class DelphiMethodStrategy(AggregationStrategy):
    """Weighted average over the last score snapshot."""

    name = ConsensusAlgorithm.DELPHI_METHOD

    def aggregate(self, data: AggregationInput) -> ConsensusResult:
        history = data.score_history or [data.scores]
        return algorithms.delphi_method(history, data.reputations)
