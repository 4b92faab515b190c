"""Aggregation algorithms over per-agent scores.

Each function is pure: it never mutates its inputs and returns a fresh
ConsensusResult, so calling it twice with the same scores yields equal
results. The reported variance is the spread of the considered scores
around the aggregate the algorithm produced.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence

from jurybox.consensus.statistics import (
    agent_weight,
    confidence_from_variance,
    mean,
    population_variance,
    variance_around,
)
from jurybox.errors import ConsensusError
from jurybox.schemas.consensus import (
    AgentReputation,
    ConsensusAlgorithm,
    ConsensusResult,
)
from jurybox.schemas.messages import AgentMessage, MessageKind

logger = logging.getLogger(__name__)

DEFAULT_TRIM_FRACTION = 0.2
DEFAULT_MAJORITY_THRESHOLD = 5.0
DEFAULT_ITERATIVE_THRESHOLD = 0.5

# Distance from the threshold reported by majority_voting
_MAJORITY_MARGIN = 2.0


def _require_scores(scores: Mapping[str, float], algorithm: ConsensusAlgorithm) -> None:
    if not scores:
        raise ConsensusError(
            "No scores to aggregate",
            algorithm=algorithm.value,
            agent_count=0,
        )


def _result(
    algorithm: ConsensusAlgorithm,
    final_score: float,
    scores: Mapping[str, float],
    considered: Iterable[float],
    *,
    weights: dict[str, float] | None = None,
    convergence_rounds: int = 1,
) -> ConsensusResult:
    variance = variance_around(considered, final_score)
    return ConsensusResult(
        final_score=final_score,
        algorithm=algorithm,
        individual_scores=dict(scores),
        weights=weights,
        confidence=confidence_from_variance(variance),
        variance=variance,
        convergence_rounds=convergence_rounds,
    )


def simple_average(scores: Mapping[str, float]) -> ConsensusResult:
    """Equal-weight arithmetic mean."""
    _require_scores(scores, ConsensusAlgorithm.SIMPLE_AVERAGE)
    values = list(scores.values())
    return _result(ConsensusAlgorithm.SIMPLE_AVERAGE, mean(values), scores, values)


def weighted_average(
    scores: Mapping[str, float],
    reputations: Mapping[str, AgentReputation],
) -> ConsensusResult:
    """Reputation-weighted mean.

    Agents without a reputation entry get the default reputation.

    Raises:
        ConsensusError: If there are no scores or every weight is zero.
    """
    algorithm = ConsensusAlgorithm.WEIGHTED_AVERAGE
    _require_scores(scores, algorithm)

    weights: dict[str, float] = {}
    for agent_id in scores:
        weights[agent_id] = agent_weight(reputations.get(agent_id, AgentReputation()))

    total_weight = sum(weights.values())
    if total_weight <= 0:
        raise ConsensusError(
            "All agent weights are zero",
            algorithm=algorithm.value,
            agent_count=len(scores),
        )

    final_score = sum(scores[a] * w for a, w in weights.items()) / total_weight
    return _result(algorithm, final_score, scores, scores.values(), weights=weights)


def median(scores: Mapping[str, float]) -> ConsensusResult:
    """Middle score; mean of the two middle scores for an even count."""
    _require_scores(scores, ConsensusAlgorithm.MEDIAN)
    values = sorted(scores.values())
    mid = len(values) // 2
    if len(values) % 2 == 0:
        final_score = (values[mid - 1] + values[mid]) / 2
    else:
        final_score = values[mid]
    return _result(ConsensusAlgorithm.MEDIAN, final_score, scores, values)


def trimmed_mean(
    scores: Mapping[str, float],
    trim_fraction: float = DEFAULT_TRIM_FRACTION,
) -> ConsensusResult:
    """Mean after dropping floor(n * trim_fraction) scores from each end.

    Raises:
        ConsensusError: If trimming would remove every score.
    """
    algorithm = ConsensusAlgorithm.TRIMMED_MEAN
    _require_scores(scores, algorithm)

    values = sorted(scores.values())
    trim_count = math.floor(len(values) * trim_fraction)
    kept = values[trim_count:len(values) - trim_count]
    if not kept:
        raise ConsensusError(
            f"Trim fraction {trim_fraction} removes all {len(values)} scores",
            algorithm=algorithm.value,
            agent_count=len(values),
        )
    return _result(algorithm, mean(kept), scores, kept)


def iterative_convergence(
    initial_scores: Mapping[str, float],
    messages: Sequence[AgentMessage],
    max_rounds: int | None = None,
    variance_threshold: float = DEFAULT_ITERATIVE_THRESHOLD,
) -> ConsensusResult:
    """Replay adjustment messages round by round until scores agree.

    Adjustments are applied in (round, log order). After each replayed
    round the population variance is checked; below variance_threshold
    the replay stops. convergence_rounds is the number of rounds
    actually replayed.

    Args:
        initial_scores: Round 0 scores.
        messages: Log messages; only adjustments are used.
        max_rounds: Round cap. Defaults to the highest round present.
        variance_threshold: Stopping variance.
    """
    algorithm = ConsensusAlgorithm.ITERATIVE_CONVERGENCE
    _require_scores(initial_scores, algorithm)

    adjustments = sorted(
        (
            m for m in messages
            if m.kind == MessageKind.ADJUSTMENT
            and m.adjusted_score is not None
            and m.agent_id in initial_scores
        ),
        key=lambda m: m.round_number,
    )
    if max_rounds is None:
        max_rounds = max((m.round_number for m in adjustments), default=0)

    current = dict(initial_scores)
    rounds_replayed = 0
    for round_number in range(1, max_rounds + 1):
        for message in adjustments:
            if message.round_number == round_number:
                current[message.agent_id] = message.adjusted_score
        rounds_replayed = round_number

        variance = population_variance(current.values())
        if variance < variance_threshold:
            logger.debug(
                "Iterative convergence stopped at round %d (variance %.3f)",
                round_number, variance,
            )
            break

    values = list(current.values())
    return _result(
        algorithm, mean(values), current, values,
        convergence_rounds=rounds_replayed,
    )


def majority_voting(
    scores: Mapping[str, float],
    threshold: float = DEFAULT_MAJORITY_THRESHOLD,
) -> ConsensusResult:
    """Binary pass/fail vote at a threshold.

    A score at or above the threshold is a pass. Passes must strictly
    outnumber fails for the aggregate to become threshold + 2; a tie
    fails. Confidence is the fraction of agents in the majority.
    """
    algorithm = ConsensusAlgorithm.MAJORITY_VOTING
    _require_scores(scores, algorithm)

    passes = sum(1 for s in scores.values() if s >= threshold)
    fails = len(scores) - passes

    if passes > fails:
        final_score = threshold + _MAJORITY_MARGIN
    else:
        final_score = threshold - _MAJORITY_MARGIN

    variance = variance_around(scores.values(), final_score)
    return ConsensusResult(
        final_score=final_score,
        algorithm=algorithm,
        individual_scores=dict(scores),
        confidence=max(passes, fails) / len(scores),
        variance=variance,
        convergence_rounds=1,
    )


def delphi_method(
    rounds: Sequence[Mapping[str, float]],
    reputations: Mapping[str, AgentReputation],
) -> ConsensusResult:
    """Weighted average of the last round; earlier rounds are provenance.

    Raises:
        ConsensusError: If no rounds are supplied.
    """
    algorithm = ConsensusAlgorithm.DELPHI_METHOD
    if not rounds:
        raise ConsensusError(
            "No rounds supplied",
            algorithm=algorithm.value,
            agent_count=0,
        )

    result = weighted_average(rounds[-1], reputations)
    return result.model_copy(
        update={"algorithm": algorithm, "convergence_rounds": len(rounds)},
    )
