"""
Tests for A/B test statistics: bucketing, intervals, significance and recommendations.
"""

from types import SimpleNamespace

import pytest

from guardcrm.domain.experiments.statistics import (
    ExperimentError,
    SignificanceResult,
    VariantStats,
    analyze,
    assign_bucket,
    confidence_interval,
    lift,
    pick_variant,
    recommend,
    select_winner,
    string_hash,
    two_proportion_test,
    validate_traffic_split,
)


@pytest.mark.unit
class TestBucketing:
    def test_string_hash_values(self):
        assert string_hash("") == 0
        assert string_hash("a") == 97
        assert string_hash("ab") == 97 * 31 + 98

    def test_hash_wraps_to_32_bits(self):
        value = string_hash("visitor-" * 20)

        assert 0 <= value <= 2**31

    def test_bucket_range_and_stability(self):
        for visitor in ("v1", "v2", "another-visitor", ""):
            bucket = assign_bucket(visitor)
            assert 1 <= bucket <= 100
            assert assign_bucket(visitor) == bucket

    def test_pick_variant_by_cumulative_split(self):
        control = SimpleNamespace(name="control", traffic_percentage=50)
        challenger = SimpleNamespace(name="challenger", traffic_percentage=50)

        # "a" lands in bucket 98, "ab" in bucket 6
        assert pick_variant("a", [control, challenger]) is challenger
        assert pick_variant("ab", [control, challenger]) is control

    def test_pick_variant_without_variants(self):
        with pytest.raises(ExperimentError):
            pick_variant("a", [])


@pytest.mark.unit
class TestTrafficSplit:
    def test_valid_split(self):
        validate_traffic_split([33.33, 33.33, 33.34])

    def test_split_must_sum_to_100(self):
        with pytest.raises(ExperimentError, match="sum to 100"):
            validate_traffic_split([50, 40])

    def test_negative_share_rejected(self):
        with pytest.raises(ExperimentError, match="negative"):
            validate_traffic_split([120, -20])


@pytest.mark.unit
class TestSignificance:
    def test_clear_difference_is_significant(self):
        result = two_proportion_test(10, 100, 30, 100)

        assert result.is_significant is True
        assert result.p_value < 0.01
        assert result.z_score > 3

    def test_small_arms_are_never_significant(self):
        result = two_proportion_test(1, 10, 9, 10)

        assert result.is_significant is False
        assert result.p_value == 1.0

    def test_zero_variance(self):
        assert two_proportion_test(0, 100, 0, 100).p_value == 1.0

    def test_confidence_interval_clamped(self):
        low, high = confidence_interval(0.99, 50)

        assert high == 1.0
        assert 0 < low < 0.99
        assert confidence_interval(0.5, 0) == (0.0, 0.0)

    def test_wider_interval_at_99(self):
        low95, high95 = confidence_interval(0.2, 400, 0.95)
        low99, high99 = confidence_interval(0.2, 400, 0.99)

        assert high99 - low99 > high95 - low95

    def test_lift(self):
        assert lift(0.3, 0.1) == pytest.approx(200.0)
        assert lift(0.3, 0.0) == 0.0


@pytest.mark.unit
class TestRecommendations:
    def _best(self, lift_value):
        return VariantStats(variant_id=2, name="B", visitors=500, conversions=60, lift=lift_value)

    def test_needs_more_visitors(self):
        result = recommend(50, SignificanceResult(True, 0.01), self._best(20), 100, 5)

        assert result["action"] == "continue_testing"
        assert "50 more visitors" in result["reason"]

    def test_inconclusive(self):
        result = recommend(1000, SignificanceResult(False, 0.4), self._best(20), 100, 5)

        assert result["action"] == "inconclusive"

    def test_implement_winner(self):
        result = recommend(1000, SignificanceResult(True, 0.01), self._best(20), 100, 5)

        assert result["action"] == "implement_winner"
        assert result["winnerVariantId"] == 2

    def test_redesign_when_worse(self):
        result = recommend(1000, SignificanceResult(True, 0.01), self._best(-15), 100, 5)

        assert result["action"] == "redesign"

    def test_effect_below_minimum(self):
        result = recommend(1000, SignificanceResult(True, 0.01), self._best(2), 100, 5)

        assert result["action"] == "continue_testing"


@pytest.mark.unit
class TestAnalyze:
    def test_first_variant_is_control_by_default(self):
        analysis = analyze(
            [
                {"id": 1, "name": "A", "visitors": 100, "conversions": 10},
                {"id": 2, "name": "B", "visitors": 100, "conversions": 30},
            ]
        )

        assert analysis.variants[0].is_control is True
        assert analysis.best_variant.variant_id == 2
        assert analysis.significance.is_significant is True
        assert analysis.recommendation["action"] == "implement_winner"
        assert select_winner(analysis).variant_id == 2

    def test_winner_falls_back_to_control(self):
        analysis = analyze(
            [
                {"id": 1, "name": "A", "visitors": 100, "conversions": 10},
                {"id": 2, "name": "B", "visitors": 100, "conversions": 11, "is_control": False},
            ]
        )

        assert select_winner(analysis).variant_id == 1

    def test_to_dict_shape(self):
        data = analyze([{"id": 1, "name": "A", "visitors": 0, "conversions": 0}]).to_dict()

        assert data["bestVariantId"] is None
        assert data["variants"][0]["isControl"] is True
        assert data["pValue"] == 1.0

    def test_no_variants(self):
        with pytest.raises(ExperimentError):
            analyze([])
