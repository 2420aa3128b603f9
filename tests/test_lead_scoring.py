"""
Tests for weighted-factor lead scoring and its JSON-logic rule conditions.
"""

import pytest

from guardcrm.domain.leads.scoring import (
    ScoringError,
    analyze_accuracy,
    build_rule_context,
    calculate_lead_score,
    default_probabilities,
    evaluate_condition,
    get_default_config,
    historical_probabilities,
    validate_config,
)

STRONG_PROFILE = {
    "years_experience": 8,
    "has_security_experience": True,
    "transportation_available": True,
    "willing_to_relocate": True,
    "preferred_locations": ["Downtown", "Airport", "Harbor"],
    "availability": {"fullTime": True, "weekends": True, "nights": True},
    "has_license": True,
    "certifications": ["CPR", "Firearms"],
    "referrer_id": 7,
    "source_type": "referral",
    "salary_expectations": 32000,
}


@pytest.mark.unit
class TestConditions:
    def test_comparisons(self):
        context = {"years": 5}

        assert evaluate_condition({">=": ["years", 5]}, context) is True
        assert evaluate_condition({">": ["years", 5]}, context) is False
        assert evaluate_condition({"<": ["years", 6]}, context) is True
        assert evaluate_condition({"==": ["years", 5]}, context) is True
        assert evaluate_condition({"!=": ["years", 5]}, context) is False

    def test_logical_operators(self):
        context = {"a": 1, "b": 2}

        assert evaluate_condition({"and": [{"==": ["a", 1]}, {"==": ["b", 2]}]}, context) is True
        assert evaluate_condition({"or": [{"==": ["a", 9]}, {"==": ["b", 2]}]}, context) is True
        assert evaluate_condition({"not": {"==": ["a", 1]}}, context) is False

    def test_in_operator(self):
        assert evaluate_condition({"in": ["source", ["referral", "web"]]}, {"source": "web"}) is True
        assert evaluate_condition({"in": ["source", "referral"]}, {"source": "r"}) is False

    def test_missing_variable_and_type_mismatch_are_false(self):
        assert evaluate_condition({">=": ["missing", 1]}, {}) is False
        assert evaluate_condition({">=": ["name", 1]}, {"name": "Pat"}) is False

    def test_unknown_operator_is_false(self):
        assert evaluate_condition({"xor": ["a", 1]}, {"a": 1}) is False

    def test_malformed_operands_are_false(self):
        context = {"a": 1}

        assert evaluate_condition({"and": 5}, context) is False
        assert evaluate_condition({"or": None}, context) is False
        assert evaluate_condition({"or": "a"}, context) is False
        assert evaluate_condition({"==": [["a"], 1]}, context) is False
        assert evaluate_condition('{"and": {"==": ["a", 1]}}', context) is False

    def test_json_string_condition(self):
        assert evaluate_condition('{"==": ["a", 1]}', {"a": 1}) is True
        assert evaluate_condition("not json", {"a": 1}) is False

    def test_boolean_literal(self):
        assert evaluate_condition(True, {}) is True


@pytest.mark.unit
class TestRuleContext:
    def test_category_aliases(self):
        location = build_rule_context(STRONG_PROFILE, "location")
        source = build_rule_context(STRONG_PROFILE, "source_quality")

        assert location["locationCount"] == 3
        assert location["hasTransportation"] is True
        assert source["hasReferral"] is True
        assert source["source"] == "referral"

    def test_availability_defaults(self):
        context = build_rule_context({}, "availability")

        assert context["fullTime"] is False
        assert context["yearsExperience"] == 0


@pytest.mark.unit
class TestCalculateScore:
    def test_strong_profile_is_high_priority(self):
        score = calculate_lead_score(STRONG_PROFILE)

        assert score.normalized_score == 100.0
        assert score.qualified is True
        assert score.priority == "high"
        assert (score.application_probability, score.hire_probability) == (0.85, 0.65)
        assert len(score.factors_summary()) == 6

    def test_empty_profile_is_low_priority(self):
        score = calculate_lead_score({})

        assert score.qualified is False
        assert score.priority == "low"
        assert score.normalized_score < 40

    def test_custom_thresholds(self):
        config = get_default_config()
        config["qualification_threshold"] = 1
        config["high_priority_threshold"] = 99

        score = calculate_lead_score({"years_experience": 3}, config)

        assert score.qualified is True
        assert score.priority == "medium"

    def test_default_config_is_valid_and_isolated(self):
        config = get_default_config()
        validate_config(config)
        config["factors"].clear()

        assert get_default_config()["factors"]

    def test_invalid_configs(self):
        with pytest.raises(ScoringError, match="no factors"):
            validate_config({"factors": []})
        with pytest.raises(ScoringError, match="invalid weight"):
            validate_config({"factors": [{"name": "x", "weight": -1, "rules": []}]})
        with pytest.raises(ScoringError, match="non-numeric points"):
            validate_config({"factors": [{"name": "x", "weight": 1, "rules": [{"points": "10"}]}]})


@pytest.mark.unit
class TestProbabilities:
    def test_default_bands(self):
        assert default_probabilities(85) == (0.85, 0.65)
        assert default_probabilities(65) == (0.55, 0.30)
        assert default_probabilities(10) == (0.15, 0.05)

    def test_history_below_minimum_falls_back(self):
        history = [{"qualification_score": 70, "application_status": "approved"}] * 5

        assert historical_probabilities(70, history) == default_probabilities(70)

    def test_history_rates(self):
        history = [
            {"qualification_score": 72, "application_status": "under_review", "converted_to_hire": False}
        ] * 6 + [
            {"qualification_score": 68, "application_status": "rejected", "converted_to_hire": False}
        ] * 2 + [
            {"qualification_score": 75, "application_status": "profile_created", "converted_to_hire": True}
        ] * 2

        assert historical_probabilities(70, history) == (0.8, 0.2)

    def test_history_ignores_far_scores_and_captured_leads(self):
        history = [{"qualification_score": 20, "application_status": "approved"}] * 20 + [
            {"qualification_score": 70, "application_status": "lead_captured"}
        ] * 20

        assert historical_probabilities(70, history) == default_probabilities(70)


@pytest.mark.unit
class TestAccuracy:
    def test_requires_minimum_sample(self):
        with pytest.raises(ScoringError, match="Insufficient data"):
            analyze_accuracy([{"qualification_score": 80}] * 5)

    def test_perfect_predictions(self):
        leads = [{"qualification_score": 85, "converted_to_hire": True}] * 10 + [
            {"qualification_score": 30, "application_status": None}
        ] * 10

        result = analyze_accuracy(leads)

        assert result["accuracy"] == 100.0
        assert result["calibrationNeeded"] is False
        assert result["recommendations"] == []

    def test_poor_predictions_recommend_reweighting(self):
        leads = [{"qualification_score": 85, "application_status": None}] * 20

        result = analyze_accuracy(leads)

        assert result["accuracy"] == 0.0
        assert [r["factor"] for r in result["recommendations"]] == ["experience", "source_quality"]
