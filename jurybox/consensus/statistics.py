"""Score statistics shared by the consensus strategies and the orchestrator.

All functions are pure and synchronous. Variances are population
variances (divide by n), matching how agreement between a fixed panel of
judges is measured.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from jurybox.schemas.consensus import AgentReputation, OutlierReport

# Variance at which confidence bottoms out at zero
_CONFIDENCE_VARIANCE_SCALE = 10.0


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean.

    Raises:
        ValueError: If values is empty.
    """
    data = list(values)
    if not data:
        raise ValueError("mean() of an empty sequence")
    return sum(data) / len(data)


def variance_around(values: Iterable[float], center: float) -> float:
    """Mean squared deviation of values from an arbitrary center."""
    data = list(values)
    if not data:
        raise ValueError("variance of an empty sequence")
    return sum((v - center) ** 2 for v in data) / len(data)


def population_variance(values: Iterable[float]) -> float:
    """Population variance around the arithmetic mean."""
    data = list(values)
    return variance_around(data, mean(data))


def confidence_from_variance(variance: float) -> float:
    """Map variance to a confidence in [0, 1]; zero variance is full confidence."""
    return max(0.0, 1.0 - variance / _CONFIDENCE_VARIANCE_SCALE)


def agent_weight(reputation: AgentReputation) -> float:
    """Reputation weight used by weighted_average and delphi_method.

    weight = (average_rating / 10) * (1 + ln(completed_judgments + 1) / 5) * success_rate

    The experience factor is at least 1, so an agent with no history is
    weighted by rating and success rate alone.
    """
    rating_weight = reputation.average_rating / 10.0
    experience_weight = 1.0 + math.log(reputation.completed_judgments + 1) / 5.0
    return rating_weight * experience_weight * reputation.success_rate


def detect_outliers(
    scores: Mapping[str, float],
    z_threshold: float = 2.0,
) -> OutlierReport:
    """Flag scores whose z-score reaches the threshold.

    A panel with zero spread has no outliers.

    Args:
        scores: Agent id → score.
        z_threshold: Z-score at or above which a score is flagged.

    Returns:
        OutlierReport with flagged agent ids and the remaining clean scores.
    """
    if not scores:
        raise ValueError("detect_outliers() of an empty score map")

    values = list(scores.values())
    center = mean(values)
    std_dev = math.sqrt(variance_around(values, center))

    outliers: list[str] = []
    clean: dict[str, float] = {}
    for agent_id, score in scores.items():
        if std_dev > 0 and abs(score - center) / std_dev >= z_threshold:
            outliers.append(agent_id)
        else:
            clean[agent_id] = score

    return OutlierReport(
        outliers=outliers,
        clean_scores=clean,
        mean=center,
        std_dev=std_dev,
    )


def calculate_convergence(
    initial_scores: Mapping[str, float],
    final_scores: Mapping[str, float],
) -> float:
    """Fraction of the initial variance removed by discussion, in [0, 1].

    Returns 1.0 when the initial scores already agree perfectly.
    """
    initial_variance = population_variance(initial_scores.values())
    final_variance = population_variance(final_scores.values())

    if initial_variance == 0:
        return 1.0
    return max(0.0, (initial_variance - final_variance) / initial_variance)
