"""
Tests for duplicate detection, merging and the assignment rules engine.
"""

import random
from datetime import datetime
from types import SimpleNamespace

import pytest

from guardcrm.domain.leads.assignment import (
    AssignmentError,
    AssignmentRule,
    ManagerWorkload,
    availability_score,
    choose_assignment,
    rule_matches,
    select_manager,
)
from guardcrm.domain.leads.deduplication import (
    find_duplicate,
    levenshtein,
    merge_into,
    name_similarity,
    phone_key,
)


def existing_lead(**overrides):
    values = {
        "first_name": "Jordan",
        "last_name": "Reyes",
        "email": "jordan@example.com",
        "phone": "(555) 123-4567",
        "estimated_value": 5000.0,
        "message": None,
        "source_details": {},
        "contact_count": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.unit
class TestDuplicateDetection:
    def test_phone_key_keeps_last_ten_digits(self):
        assert phone_key("+1 (555) 123-4567") == "5551234567"
        assert phone_key(None) == ""

    def test_levenshtein(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("", "abc") == 3
        assert levenshtein("same", "same") == 0

    def test_name_similarity(self):
        assert name_similarity("Jordan", "Reyes", "jordan", "reyes") == 1.0
        assert name_similarity("Jordan", "Reyes", "Jordon", "Reyes") > 0.8

    def test_email_match_is_case_insensitive(self):
        match = find_duplicate({"email": " JORDAN@example.com "}, [existing_lead()])

        assert match.is_duplicate is True
        assert match.match_type == "email"
        assert match.confidence == 100

    def test_name_and_phone_match(self):
        candidate = {"first_name": "Jordon", "last_name": "Reyes", "email": "other@example.com", "phone": "555.123.4567"}

        match = find_duplicate(candidate, [existing_lead()])

        assert match.match_type == "name_phone"
        assert 80 < match.confidence < 100

    def test_phone_only_match(self):
        candidate = {"first_name": "Casey", "last_name": "Lin", "email": "casey@example.com", "phone": "5551234567"}

        match = find_duplicate(candidate, [existing_lead()])

        assert match.match_type == "phone"
        assert match.confidence == 85

    def test_short_phone_never_matches(self):
        candidate = {"first_name": "Casey", "email": "casey@example.com", "phone": "4567"}

        assert find_duplicate(candidate, [existing_lead(phone="4567")]).is_duplicate is False


@pytest.mark.unit
class TestMerge:
    def test_merge_updates_fields(self):
        lead = existing_lead(message="First contact")
        now = datetime(2024, 3, 1, 12, 0)

        changes = merge_into(
            lead,
            {
                "first_name": "Jordy",
                "estimated_value": 9000.0,
                "message": "Need weekend coverage",
                "source_type": "referral",
                "source_details": {"referrer": "Sam"},
            },
            now,
        )

        assert lead.first_name == "Jordy"
        assert lead.estimated_value == 9000.0
        assert lead.message.endswith("Additional info (2024-03-01): Need weekend coverage")
        assert "---" in lead.message
        assert lead.source_details["duplicateSource"]["sourceType"] == "referral"
        assert lead.contact_count == 1
        assert "last_name" not in changes

    def test_lower_value_does_not_replace(self):
        lead = existing_lead()

        merge_into(lead, {"estimated_value": 100.0})

        assert lead.estimated_value == 5000.0


def workload(manager_id, **overrides):
    values = {"manager_id": manager_id, "name": f"M{manager_id}", "email": f"m{manager_id}@example.com"}
    values.update(overrides)
    return ManagerWorkload(**values)


@pytest.mark.unit
class TestAssignment:
    def test_availability_score(self):
        assert availability_score(0, 0) == 100
        assert availability_score(4, 50) == 75
        assert availability_score(20, 1000) == 20

    def test_round_robin_prefers_never_assigned(self):
        managers = [
            workload(1, last_assigned=datetime(2024, 1, 2)),
            workload(2, last_assigned=None),
            workload(3, last_assigned=datetime(2024, 1, 1)),
        ]

        assert select_manager("round_robin", managers).manager_id == 2

    def test_round_robin_oldest_assignment(self):
        managers = [
            workload(1, last_assigned=datetime(2024, 1, 2)),
            workload(3, last_assigned=datetime(2024, 1, 1)),
        ]

        assert select_manager("round_robin", managers).manager_id == 3

    def test_lowest_workload(self):
        managers = [workload(1, availability_score=40), workload(2, availability_score=90)]

        assert select_manager("lowest_workload", managers).manager_id == 2

    def test_random_uses_rng(self):
        managers = [workload(1), workload(2), workload(3)]

        picked = select_manager("random", managers, random.Random(4))

        assert picked in managers

    def test_manual_and_empty_raise(self):
        with pytest.raises(AssignmentError, match="Manual"):
            select_manager("manual", [workload(1)])
        with pytest.raises(AssignmentError, match="No available managers"):
            select_manager("round_robin", [])

    def test_rule_conditions(self):
        rule = AssignmentRule(
            id="r",
            name="Night events",
            priority=1,
            assignment_method="round_robin",
            conditions={
                "service_types": ["event"],
                "value_range": {"min": 1000, "max": 5000},
                "time_window": {"days_of_week": [6], "start_hour": 18, "end_hour": 24},
            },
        )
        saturday_night = datetime(2024, 3, 2, 20, 0)

        assert rule_matches(rule, {"service_type": "event", "estimated_value": 2000}, saturday_night) is True
        assert rule_matches(rule, {"service_type": "patrol", "estimated_value": 2000}, saturday_night) is False
        assert rule_matches(rule, {"service_type": "event", "estimated_value": 9000}, saturday_night) is False
        assert rule_matches(rule, {"service_type": "event", "estimated_value": 2000}, datetime(2024, 3, 2, 9)) is False

    def test_default_rules_route_executive_by_workload(self):
        managers = [workload(1, availability_score=30), workload(2, availability_score=95)]

        manager, rule, reason = choose_assignment({"service_type": "executive", "estimated_value": 500}, managers)

        assert manager.manager_id == 2
        assert rule.id == "executive-protection-specialist"
        assert "lowest_workload" in reason

    def test_high_value_rule_wins_by_priority(self):
        managers = [workload(1, last_assigned=datetime(2024, 1, 1)), workload(2, last_assigned=None)]

        manager, rule, _ = choose_assignment({"service_type": "executive", "estimated_value": 20000}, managers)

        assert rule.id == "high-value-round-robin"
        assert manager.manager_id == 2

    def test_no_matching_rule(self):
        manager, rule, reason = choose_assignment({}, [workload(1)], rules=[])

        assert rule is None
        assert manager.manager_id == 1
        assert "no matching rule" in reason

    def test_eligible_managers_narrow_selection(self):
        rule = AssignmentRule(id="r", name="VIP", priority=1, assignment_method="round_robin", eligible_managers=[9])

        with pytest.raises(AssignmentError, match="No eligible managers"):
            choose_assignment({}, [workload(1)], rules=[rule])
