"""Contract lifecycle rules, churn risk assessment and renewal scheduling"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..hiring.stages import TransitionError

CONTRACT_TYPES = ("ongoing", "event", "executive", "patrol")
CONTRACT_STATUSES = ("draft", "sent", "signed", "active", "completed", "cancelled")
TERMINAL_STATUSES = ("completed", "cancelled")

CONTRACT_TRANSITIONS = {
    "draft": ("sent", "cancelled"),
    "sent": ("signed", "cancelled"),
    "signed": ("active", "cancelled"),
    "active": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}

# Statuses only the daily automation may set
AUTOMATIC_STATUSES = ("completed",)

RENEWAL_WINDOW_DAYS = 90
RENEWAL_ALERT_DAYS = (90, 60, 30, 7)
RENEWAL_STATUSES = ("upcoming", "in_negotiation", "renewed", "churned")

LOW_VALUE_THRESHOLD = 10000

STRATEGIES = {
    "low": "Standard renewal outreach with competitive pricing",
    "medium": "Enhanced communication, service review, potential expansion discussion",
    "high": "Executive engagement, custom retention package, performance review meeting",
}


@dataclass
class ChurnAssessment:
    level: str
    score: int
    reasons: list[str] = field(default_factory=list)
    strategy: str = STRATEGIES["low"]


def validate_contract_transition(current: str, new: str, automatic: bool = False) -> None:
    if new not in CONTRACT_STATUSES:
        raise TransitionError(f"Invalid status: {new}", "INVALID_STATUS")
    if current == new:
        raise TransitionError(f"Contract is already {new}", "SAME_STATUS")
    if new in AUTOMATIC_STATUSES and not automatic:
        raise TransitionError(
            f"Contracts move to {new} automatically when the end date passes", "AUTOMATIC_ONLY"
        )
    if new not in CONTRACT_TRANSITIONS.get(current, ()):
        raise TransitionError(f"Cannot move contract from {current} to {new}", "INVALID_TRANSITION")


def contract_age_months(created_at: Optional[datetime], now: datetime) -> int:
    if not created_at:
        return 0
    return (now - created_at).days // 30


def assess_churn_risk(contract, now: datetime) -> ChurnAssessment:
    reasons = []
    score = 0

    if (contract.contract_value or 0) < LOW_VALUE_THRESHOLD:
        reasons.append("Low contract value")
        score += 1

    age = contract_age_months(contract.created_at, now)
    if age < 6:
        reasons.append("New relationship (< 6 months)")
        score += 1
    elif age > 36:
        reasons.append("Long-term contract may seek alternatives")
        score += 1

    if contract.contract_type == "event":
        reasons.append("Event-based services are typically one-time")
        score += 2

    if score >= 3:
        level = "high"
    elif score >= 2:
        level = "medium"
    else:
        level = "low"
    return ChurnAssessment(level=level, score=score, reasons=reasons, strategy=STRATEGIES[level])


def add_one_year(value: datetime) -> datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return value.replace(year=value.year + 1, day=28)


def renewal_alert_dates(end_date: datetime, now: datetime) -> list[tuple[int, datetime]]:
    """(days_before, alert_date) pairs still in the future"""
    return [
        (days, end_date - timedelta(days=days))
        for days in RENEWAL_ALERT_DAYS
        if end_date - timedelta(days=days) > now
    ]


def automatic_status(contract, now: datetime) -> Optional[str]:
    """Status the daily automation should move `contract` to, if any"""
    if contract.status == "signed" and contract.start_date and contract.start_date <= now:
        return "active"
    if contract.status == "active" and contract.end_date and contract.end_date < now:
        return "completed"
    return None
