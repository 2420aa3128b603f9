"""
Lead assignment rules engine: rule matching plus round-robin, lowest-workload
and random manager selection.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

ACTIVE_LEAD_STATUSES = ("prospect", "contacted", "qualified", "proposal", "negotiation")
ASSIGNMENT_METHODS = ("round_robin", "lowest_workload", "random", "manual")
RESPONSE_SAMPLE_SIZE = 10


class AssignmentError(Exception):
    """No manager could be selected for a lead"""


@dataclass
class AssignmentRule:
    id: str
    name: str
    priority: int
    assignment_method: str
    conditions: dict = field(default_factory=dict)
    eligible_managers: list[int] = field(default_factory=list)
    is_active: bool = True


@dataclass
class ManagerWorkload:
    manager_id: int
    name: str
    email: str
    active_leads: int = 0
    contacted_today: int = 0
    avg_response_minutes: float = 0.0
    last_assigned: Optional[datetime] = None
    availability_score: int = 100


DEFAULT_ASSIGNMENT_RULES = [
    AssignmentRule(
        id="high-value-round-robin",
        name="High Value Leads - Round Robin",
        priority=1,
        assignment_method="round_robin",
        conditions={"value_range": {"min": 10000}},
    ),
    AssignmentRule(
        id="executive-protection-specialist",
        name="Executive Protection Specialist",
        priority=2,
        assignment_method="lowest_workload",
        conditions={"service_types": ["executive"]},
    ),
    AssignmentRule(
        id="referral-priority",
        name="Referral Priority Assignment",
        priority=3,
        assignment_method="lowest_workload",
        conditions={"sources": ["referral"]},
    ),
    AssignmentRule(
        id="default-round-robin",
        name="Default Round Robin",
        priority=99,
        assignment_method="round_robin",
    ),
]


def availability_score(active_leads: int, avg_response_minutes: float) -> int:
    """100 minus a workload penalty (5/lead, max 50) and a response-time penalty (max 30)"""
    workload_penalty = min(active_leads * 5, 50)
    response_penalty = min(avg_response_minutes / 10, 30)
    return max(0, round(100 - workload_penalty - response_penalty))


def rule_matches(rule: AssignmentRule, lead: dict, now: Optional[datetime] = None) -> bool:
    """
    lead: dict with service_type, source_type and estimated_value.
    Empty condition lists match everything.
    """
    if not rule.is_active:
        return False
    conditions = rule.conditions or {}

    service_types = conditions.get("service_types") or []
    if service_types and lead.get("service_type") not in service_types:
        return False

    sources = conditions.get("sources") or []
    if sources and lead.get("source_type") not in sources:
        return False

    value_range = conditions.get("value_range")
    if value_range:
        value = lead.get("estimated_value") or 0
        if value_range.get("min") and value < value_range["min"]:
            return False
        if value_range.get("max") and value > value_range["max"]:
            return False

    window = conditions.get("time_window")
    if window:
        now = now or datetime.utcnow()
        days = window.get("days_of_week")
        if days and now.isoweekday() % 7 not in days:  # 0 = Sunday
            return False
        if not window.get("start_hour", 0) <= now.hour < window.get("end_hour", 24):
            return False

    return True


def match_rules(lead: dict, rules: list[AssignmentRule], now: Optional[datetime] = None) -> list[AssignmentRule]:
    return sorted((r for r in rules if rule_matches(r, lead, now)), key=lambda r: r.priority)


def select_round_robin(workloads: list[ManagerWorkload]) -> ManagerWorkload:
    """Manager never assigned first, otherwise the one assigned longest ago"""
    return min(
        workloads,
        key=lambda w: (w.last_assigned is not None, w.last_assigned or datetime.min),
    )


def select_lowest_workload(workloads: list[ManagerWorkload]) -> ManagerWorkload:
    return max(workloads, key=lambda w: w.availability_score)


def select_manager(
    method: str, workloads: list[ManagerWorkload], rng: Optional[random.Random] = None
) -> ManagerWorkload:
    if not workloads:
        raise AssignmentError("No available managers found")

    if method == "round_robin":
        return select_round_robin(workloads)
    if method == "lowest_workload":
        return select_lowest_workload(workloads)
    if method == "random":
        return (rng or random).choice(workloads)
    if method == "manual":
        raise AssignmentError("Manual assignment required")
    raise AssignmentError(f"Unknown assignment method: {method}")


def choose_assignment(
    lead: dict,
    workloads: list[ManagerWorkload],
    rules: Optional[list[AssignmentRule]] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> tuple[ManagerWorkload, Optional[AssignmentRule], str]:
    """
    Pick a manager for a lead. The highest-priority matching rule decides the
    method and, when it lists managers, narrows the eligible set. Without a
    matching rule all managers are considered round-robin.
    Returns (manager, rule, reason).
    """
    matching = match_rules(lead, DEFAULT_ASSIGNMENT_RULES if rules is None else rules, now)
    if not matching:
        manager = select_manager("round_robin", workloads, rng)
        return manager, None, "Round-robin assignment (no matching rule)"

    rule = matching[0]
    eligible = workloads
    if rule.eligible_managers:
        eligible = [w for w in workloads if w.manager_id in rule.eligible_managers]
        if not eligible:
            raise AssignmentError(f"No eligible managers available for rule {rule.name}")

    manager = select_manager(rule.assignment_method, eligible, rng)
    return manager, rule, f"Assigned via rule: {rule.name} ({rule.assignment_method})"
