"""Tests for jurybox.consensus.statistics — score statistics."""

import math

import pytest

from jurybox.consensus.statistics import (
    agent_weight,
    calculate_convergence,
    confidence_from_variance,
    detect_outliers,
    mean,
    population_variance,
    variance_around,
)
from jurybox.schemas.consensus import AgentReputation


class TestMeanAndVariance:
    def test_mean(self):
        assert mean([7.0, 8.0, 9.0]) == 8.0

    def test_mean_empty_raises(self):
        with pytest.raises(ValueError):
            mean([])

    def test_population_variance(self):
        assert population_variance([7.0, 8.0, 9.0]) == pytest.approx(2 / 3)

    def test_single_value_has_zero_variance(self):
        assert population_variance([6.5]) == 0.0

    def test_variance_around_arbitrary_center(self):
        assert variance_around([4.0, 6.0], 7.0) == pytest.approx((9 + 1) / 2)


class TestConfidence:
    def test_zero_variance_is_full_confidence(self):
        assert confidence_from_variance(0.0) == 1.0

    def test_linear_in_variance(self):
        assert confidence_from_variance(2 / 3) == pytest.approx(0.9333, abs=1e-4)

    def test_floors_at_zero(self):
        assert confidence_from_variance(25.0) == 0.0


class TestAgentWeight:
    def test_formula(self):
        rep = AgentReputation(average_rating=8.0, completed_judgments=10, success_rate=0.9)
        expected = 0.8 * (1 + math.log(11) / 5) * 0.9
        assert agent_weight(rep) == pytest.approx(expected)

    def test_no_history_still_positive(self):
        rep = AgentReputation(average_rating=5.0, completed_judgments=0, success_rate=1.0)
        assert agent_weight(rep) == pytest.approx(0.5)

    def test_monotonic_in_average_rating(self):
        weights = [
            agent_weight(AgentReputation(average_rating=r, completed_judgments=5))
            for r in (0.0, 2.5, 5.0, 7.5, 10.0)
        ]
        assert weights == sorted(weights)

    def test_monotonic_in_completed_judgments(self):
        weights = [
            agent_weight(AgentReputation(completed_judgments=n)) for n in (0, 1, 10, 100, 1000)
        ]
        assert weights == sorted(weights)

    def test_monotonic_in_success_rate(self):
        weights = [
            agent_weight(AgentReputation(success_rate=s)) for s in (0.0, 0.25, 0.5, 1.0)
        ]
        assert weights == sorted(weights)

    def test_zero_success_rate_gives_zero_weight(self):
        assert agent_weight(AgentReputation(success_rate=0.0)) == 0.0


class TestDetectOutliers:
    def test_flags_far_score(self):
        scores = {"a": 5.0, "b": 5.0, "c": 5.0, "d": 5.0, "e": 20.0}
        report = detect_outliers(scores, 2.0)
        assert report.outliers == ["e"]
        assert "e" not in report.clean_scores
        assert report.clean_scores == {"a": 5.0, "b": 5.0, "c": 5.0, "d": 5.0}
        assert report.mean == pytest.approx(8.0)
        assert report.std_dev == pytest.approx(6.0)

    def test_no_spread_flags_nothing(self):
        report = detect_outliers({"a": 7.0, "b": 7.0, "c": 7.0})
        assert report.outliers == []
        assert report.std_dev == 0.0
        assert len(report.clean_scores) == 3

    def test_close_scores_not_flagged(self):
        report = detect_outliers({"a": 6.0, "b": 7.0, "c": 8.0})
        assert report.outliers == []

    def test_higher_threshold_keeps_score(self):
        scores = {"a": 5.0, "b": 5.0, "c": 5.0, "d": 5.0, "e": 20.0}
        assert detect_outliers(scores, 2.5).outliers == []

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            detect_outliers({})


class TestCalculateConvergence:
    def test_identical_initial_scores_is_one(self):
        assert calculate_convergence({"a": 5.0, "b": 5.0}, {"a": 4.0, "b": 6.0}) == 1.0

    def test_partial_convergence(self):
        initial = {"a": 4.0, "b": 6.0, "c": 8.0}
        final = {"a": 5.0, "b": 6.0, "c": 7.0}
        # variance 8/3 -> 2/3
        assert calculate_convergence(initial, final) == pytest.approx(0.75)

    def test_divergence_clamps_to_zero(self):
        assert calculate_convergence({"a": 5.0, "b": 6.0}, {"a": 1.0, "b": 9.0}) == 0.0

    @pytest.mark.parametrize("final", [
        {"a": 6.0, "b": 6.0},
        {"a": 5.5, "b": 6.5},
        {"a": 4.0, "b": 8.0},
        {"a": 0.0, "b": 10.0},
    ])
    def test_always_in_unit_interval(self, final):
        value = calculate_convergence({"a": 4.0, "b": 8.0}, final)
        assert 0.0 <= value <= 1.0
