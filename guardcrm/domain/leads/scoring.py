"""
Weighted-factor lead scoring.

A scoring configuration is a list of factors; each factor has a category, a
weight and rules whose conditions are a small JSON-logic subset evaluated
against a per-category context built from the lead profile.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_QUALIFICATION_THRESHOLD = 60
DEFAULT_HIGH_PRIORITY_THRESHOLD = 80

# Bands of (minimum score, application probability, hire probability)
DEFAULT_PROBABILITY_BANDS = [
    (80, 0.85, 0.65),
    (70, 0.70, 0.45),
    (60, 0.55, 0.30),
    (50, 0.40, 0.20),
    (40, 0.25, 0.10),
]
FALLBACK_PROBABILITIES = (0.15, 0.05)
HISTORICAL_WINDOW = 10
MIN_HISTORICAL_SAMPLES = 10

# Hiring stages that count as "application started"
APPLICATION_STARTED_STATUSES = {
    "application_received",
    "under_review",
    "background_check",
    "interview_scheduled",
    "interview_completed",
    "approved",
    "profile_created",
}

DEFAULT_SCORING_CONFIG = {
    "name": "Default Guard Lead Scoring",
    "version": 1,
    "qualification_threshold": DEFAULT_QUALIFICATION_THRESHOLD,
    "high_priority_threshold": DEFAULT_HIGH_PRIORITY_THRESHOLD,
    "factors": [
        {
            "id": "experience",
            "name": "Security Experience",
            "category": "experience",
            "weight": 0.25,
            "rules": [
                {"condition": {">=": ["yearsExperience", 5]}, "points": 25, "description": "5+ years experience"},
                {"condition": {">=": ["yearsExperience", 2]}, "points": 15, "description": "2+ years experience"},
                {"condition": {"==": ["hasSecurityExperience", True]}, "points": 10, "description": "Has security experience"},
            ],
        },
        {
            "id": "location",
            "name": "Location Flexibility",
            "category": "location",
            "weight": 0.20,
            "rules": [
                {"condition": {"==": ["hasTransportation", True]}, "points": 15, "description": "Has reliable transportation"},
                {"condition": {"==": ["willingToRelocate", True]}, "points": 10, "description": "Willing to relocate"},
                {"condition": {">=": ["locationCount", 3]}, "points": 10, "description": "Flexible location preferences"},
            ],
        },
        {
            "id": "availability",
            "name": "Availability",
            "category": "availability",
            "weight": 0.15,
            "rules": [
                {"condition": {"==": ["fullTime", True]}, "points": 15, "description": "Available full-time"},
                {"condition": {"==": ["weekends", True]}, "points": 10, "description": "Available weekends"},
                {"condition": {"==": ["nights", True]}, "points": 10, "description": "Available nights"},
            ],
        },
        {
            "id": "certifications",
            "name": "Certifications",
            "category": "certifications",
            "weight": 0.20,
            "rules": [
                {"condition": {"==": ["hasLicense", True]}, "points": 20, "description": "Has security license"},
                {"condition": {">=": ["certificationCount", 2]}, "points": 10, "description": "Multiple certifications"},
            ],
        },
        {
            "id": "source_quality",
            "name": "Source Quality",
            "category": "source_quality",
            "weight": 0.10,
            "rules": [
                {"condition": {"==": ["hasReferral", True]}, "points": 15, "description": "Employee referral"},
                {"condition": {"in": ["source", ["direct_website", "referral"]]}, "points": 10, "description": "High-quality source"},
            ],
        },
        {
            "id": "salary_expectations",
            "name": "Salary Expectations",
            "category": "salary_expectations",
            "weight": 0.10,
            "rules": [
                {"condition": {"<=": ["salary", 45000]}, "points": 10, "description": "Reasonable salary expectations"},
                {"condition": {"<=": ["salary", 35000]}, "points": 15, "description": "Below-market expectations"},
            ],
        },
    ],
}


class ScoringError(Exception):
    """Invalid scoring configuration"""


@dataclass
class FactorScore:
    factor_id: str
    name: str
    category: str
    weight: float
    score: float
    max_score: float
    applied_rules: list[str] = field(default_factory=list)


@dataclass
class LeadScore:
    total_score: float
    max_possible_score: float
    normalized_score: float
    qualified: bool
    priority: str
    factors: list[FactorScore]
    application_probability: float = 0.0
    hire_probability: float = 0.0

    def factors_summary(self) -> list[dict]:
        return [
            {
                "factorId": f.factor_id,
                "name": f.name,
                "category": f.category,
                "weight": f.weight,
                "score": f.score,
                "maxScore": f.max_score,
                "appliedRules": f.applied_rules,
            }
            for f in self.factors
        ]


def get_default_config() -> dict:
    return copy.deepcopy(DEFAULT_SCORING_CONFIG)


# ============================================================================
# CONDITION EVALUATION
# ============================================================================

_COMPARATORS = {
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
}


def evaluate_condition(condition: Union[dict, bool, str], context: dict) -> bool:
    """
    Evaluate a JSON-logic condition. Comparison operators take [variable, value];
    "and"/"or" take a list of conditions and "not" a single condition. Unknown
    operators, missing variables and type mismatches evaluate to False.
    """
    if isinstance(condition, bool):
        return condition

    if isinstance(condition, str):
        try:
            condition = json.loads(condition)
        except ValueError:
            logger.warning(f"⚠️ Unparseable scoring condition: {condition[:100]}")
            return False
        return evaluate_condition(condition, context)

    if not isinstance(condition, dict) or not condition:
        return False

    operator, operand = next(iter(condition.items()))

    if operator in ("and", "or"):
        if not isinstance(operand, (list, tuple)):
            return False
        results = (evaluate_condition(c, context) for c in operand)
        return all(results) if operator == "and" else any(results)
    if operator == "not":
        return not evaluate_condition(operand, context)

    if not isinstance(operand, (list, tuple)) or len(operand) != 2:
        return False
    variable, value = operand
    if not isinstance(variable, str):
        return False
    actual = context.get(variable)

    if operator in ("==", "==="):
        return actual == value
    if operator == "!=":
        return actual != value
    if operator == "in":
        return isinstance(value, (list, tuple)) and actual in value
    if operator in _COMPARATORS:
        if actual is None:
            return False
        try:
            return _COMPARATORS[operator](actual, value)
        except TypeError:
            return False
    return False


def build_rule_context(profile: dict, category: str) -> dict:
    """
    Base fields for every factor plus category-specific aliases.
    `profile` keys follow the Lead model (years_experience, availability, ...).
    """
    availability = profile.get("availability") or {}
    certifications = profile.get("certifications") or []
    locations = profile.get("preferred_locations") or []

    context = {
        "hasSecurityExperience": bool(profile.get("has_security_experience")),
        "yearsExperience": profile.get("years_experience") or 0,
        "hasLicense": bool(profile.get("has_license")),
        "transportationAvailable": bool(profile.get("transportation_available")),
        "willingToRelocate": bool(profile.get("willing_to_relocate")),
        "salaryExpectations": profile.get("salary_expectations") or 0,
        "certificationCount": len(certifications),
        "preferredLocationCount": len(locations),
        "sourceType": profile.get("source_type"),
        "applicationStatus": profile.get("application_status"),
    }

    if category == "experience":
        context["experienceYears"] = context["yearsExperience"]
        context["hasExperience"] = context["hasSecurityExperience"]
    elif category == "location":
        context["locationCount"] = len(locations)
        context["canRelocate"] = context["willingToRelocate"]
        context["hasTransportation"] = context["transportationAvailable"]
    elif category == "availability":
        context["fullTime"] = bool(availability.get("fullTime"))
        context["partTime"] = bool(availability.get("partTime"))
        context["weekends"] = bool(availability.get("weekends"))
        context["nights"] = bool(availability.get("nights"))
    elif category == "salary_expectations":
        context["salary"] = context["salaryExpectations"]
    elif category == "source_quality":
        context["source"] = profile.get("source_type")
        context["hasReferral"] = profile.get("referrer_id") is not None

    return context


# ============================================================================
# SCORING
# ============================================================================


def validate_config(config: dict) -> None:
    factors = config.get("factors") or []
    if not factors:
        raise ScoringError("Scoring configuration has no factors")
    for factor in factors:
        weight = factor.get("weight")
        if not isinstance(weight, (int, float)) or weight < 0:
            raise ScoringError(f"Factor {factor.get('name')} has an invalid weight")
        for rule in factor.get("rules") or []:
            if not isinstance(rule.get("points"), (int, float)):
                raise ScoringError(f"Rule in factor {factor.get('name')} has non-numeric points")


def score_factor(factor: dict, profile: dict) -> FactorScore:
    context = build_rule_context(profile, factor.get("category", ""))
    rules = factor.get("rules") or []

    total = 0.0
    applied = []
    for rule in rules:
        if evaluate_condition(rule.get("condition", False), context):
            total += rule["points"]
            applied.append(rule.get("description") or str(rule.get("condition")))

    max_score = sum(rule["points"] for rule in rules if rule["points"] > 0)
    return FactorScore(
        factor_id=str(factor.get("id") or factor.get("category") or factor.get("name")),
        name=factor.get("name", ""),
        category=factor.get("category", ""),
        weight=float(factor["weight"]),
        score=max(0.0, total),
        max_score=float(max_score),
        applied_rules=applied,
    )


def default_probabilities(score: float) -> tuple[float, float]:
    for minimum, application, hire in DEFAULT_PROBABILITY_BANDS:
        if score >= minimum:
            return application, hire
    return FALLBACK_PROBABILITIES


def historical_probabilities(score: float, history: list[dict]) -> tuple[float, float]:
    """
    Observed application/hire rates among leads scored within +/-10 points.
    `history` items carry qualification_score, application_status and
    converted_to_hire. Falls back to the default bands below 10 samples.
    """
    similar = [
        h
        for h in history
        if h.get("qualification_score") is not None
        and abs(h["qualification_score"] - score) <= HISTORICAL_WINDOW
        and h.get("application_status") not in (None, "lead_captured")
    ]
    if len(similar) < MIN_HISTORICAL_SAMPLES:
        return default_probabilities(score)

    started = sum(1 for h in similar if h.get("application_status") in APPLICATION_STARTED_STATUSES)
    hires = sum(1 for h in similar if h.get("converted_to_hire"))
    return round(started / len(similar), 2), round(hires / len(similar), 2)


def calculate_lead_score(
    profile: dict, config: Optional[dict] = None, history: Optional[list[dict]] = None
) -> LeadScore:
    config = config or DEFAULT_SCORING_CONFIG
    validate_config(config)

    factor_scores = [score_factor(f, profile) for f in config["factors"]]

    total = sum(f.score * f.weight for f in factor_scores)
    max_possible = sum(f.max_score * f.weight for f in factor_scores)
    normalized = (total / max_possible * 100) if max_possible > 0 else 0.0
    normalized = round(normalized, 2)

    qualification_threshold = config.get("qualification_threshold", DEFAULT_QUALIFICATION_THRESHOLD)
    high_threshold = config.get("high_priority_threshold", DEFAULT_HIGH_PRIORITY_THRESHOLD)
    qualified = normalized >= qualification_threshold

    if normalized >= high_threshold:
        priority = "high"
    elif qualified:
        priority = "medium"
    else:
        priority = "low"

    if history is not None:
        application_probability, hire_probability = historical_probabilities(normalized, history)
    else:
        application_probability, hire_probability = default_probabilities(normalized)

    return LeadScore(
        total_score=round(total, 4),
        max_possible_score=round(max_possible, 4),
        normalized_score=normalized,
        qualified=qualified,
        priority=priority,
        factors=factor_scores,
        application_probability=application_probability,
        hire_probability=hire_probability,
    )


def analyze_accuracy(scored_leads: list[dict], minimum_leads: int = 20) -> dict:
    """
    Compare scores with outcomes. A prediction is correct when a high score
    (>= 70) started an application or was hired, a medium score (50-70) started
    an application without a hire, or a low score (< 50) never started one.
    """
    if len(scored_leads) < minimum_leads:
        raise ScoringError(
            f"Insufficient data for accuracy analysis (minimum {minimum_leads} scored leads required)"
        )

    correct = 0
    for lead in scored_leads:
        score = lead["qualification_score"]
        hired = bool(lead.get("converted_to_hire"))
        started = lead.get("application_status") in APPLICATION_STARTED_STATUSES

        if score >= 70 and (hired or started):
            correct += 1
        elif 50 <= score < 70 and started and not hired:
            correct += 1
        elif score < 50 and not started:
            correct += 1

    accuracy = correct / len(scored_leads) * 100

    recommendations = []
    if accuracy < 65:
        recommendations.append(
            {
                "factor": "experience",
                "currentWeight": 0.25,
                "recommendedWeight": 0.30,
                "reason": "Experience appears to be a stronger predictor of success",
            }
        )
    if accuracy < 70:
        recommendations.append(
            {
                "factor": "source_quality",
                "currentWeight": 0.10,
                "recommendedWeight": 0.15,
                "reason": "Lead source quality shows higher correlation with conversion",
            }
        )

    return {
        "accuracy": round(accuracy, 2),
        "sampleSize": len(scored_leads),
        "recommendations": recommendations,
        "calibrationNeeded": accuracy < 75,
    }
