"""Shift board workflow - column table and transition business rules"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..hiring.stages import TransitionError


@dataclass(frozen=True)
class WorkflowColumn:
    status: str
    title: str
    description: str
    allowed_transitions: tuple[str, ...] = ()
    requires_validation: bool = True


WORKFLOW_COLUMNS: dict[str, WorkflowColumn] = {
    column.status: column
    for column in (
        WorkflowColumn(
            "unassigned", "Unassigned", "Shifts awaiting guard assignment", ("assigned", "issue_logged")
        ),
        WorkflowColumn(
            "assigned",
            "Assigned",
            "Shifts assigned to guards but not confirmed",
            ("confirmed", "unassigned", "issue_logged"),
        ),
        WorkflowColumn(
            "confirmed",
            "Confirmed",
            "Guards have confirmed availability",
            ("in_progress", "assigned", "issue_logged"),
        ),
        WorkflowColumn("in_progress", "In Progress", "Shifts currently active", ("completed", "issue_logged")),
        WorkflowColumn(
            "completed",
            "Completed",
            "Successfully completed shifts",
            ("archived", "issue_logged"),
            requires_validation=False,
        ),
        WorkflowColumn(
            "issue_logged",
            "Issue Logged",
            "Shifts with reported issues",
            ("unassigned", "assigned", "confirmed", "completed", "archived"),
        ),
        WorkflowColumn(
            "archived", "Archived", "Historical completed shifts", (), requires_validation=False
        ),
    )
}

SHIFT_STATUSES = tuple(WORKFLOW_COLUMNS)
ACTIVE_STATUSES = tuple(s for s in SHIFT_STATUSES if s != "archived")
TRANSITION_METHODS = ("manual", "bulk", "automated", "api")
APPROVAL_REQUIRED = ("archived",)

# Guards may clock in this long before the scheduled start
IN_PROGRESS_LEAD_TIME = timedelta(hours=1)

RULES_BY_TARGET = {
    "assigned": "GUARD_ASSIGNMENT_REQUIRED",
    "confirmed": "GUARD_CONFIRMATION_REQUIRED",
    "in_progress": "SHIFT_TIME_VALIDATION_REQUIRED",
    "completed": "COMPLETION_CRITERIA_MET",
}


@dataclass
class TransitionCheck:
    from_status: str
    to_status: str
    requires_approval: bool = False
    validation_rules: list[str] = field(default_factory=list)
    business_rules: list[str] = field(default_factory=list)


def validate_transition(
    shift,
    to_status: str,
    now: Optional[datetime] = None,
    guard_confirmed: bool = False,
) -> TransitionCheck:
    """
    Check a move of `shift` to `to_status`.

    Business rules only apply when the source column requires validation.
    Raises TransitionError with the failing rule's code.
    """
    now = now or datetime.utcnow()
    from_status = shift.status
    source = WORKFLOW_COLUMNS.get(from_status)
    if source is None or to_status not in WORKFLOW_COLUMNS:
        raise TransitionError("Invalid status provided for transition", "INVALID_STATUS")
    if to_status not in source.allowed_transitions:
        raise TransitionError(f"Invalid transition from {from_status} to {to_status}", "INVALID_TRANSITION")

    check = TransitionCheck(from_status, to_status, requires_approval=to_status in APPROVAL_REQUIRED)
    rule = RULES_BY_TARGET.get(to_status)
    if rule:
        check.validation_rules.append(rule)

    if not source.requires_validation or not rule:
        return check

    if rule == "GUARD_ASSIGNMENT_REQUIRED":
        if not shift.assigned_guard_id:
            raise TransitionError(
                "Guard assignment required before changing status to assigned", "GUARD_ASSIGNMENT_REQUIRED"
            )
        check.business_rules.append("Guard assignment validated")

    elif rule == "GUARD_CONFIRMATION_REQUIRED":
        if not shift.assigned_guard_id or not (guard_confirmed or shift.confirmed_at):
            raise TransitionError(
                "Guard confirmation required before changing status to confirmed", "GUARD_CONFIRMATION_REQUIRED"
            )
        check.business_rules.append("Guard confirmation validated")

    elif rule == "SHIFT_TIME_VALIDATION_REQUIRED":
        if shift.start_time - IN_PROGRESS_LEAD_TIME > now:
            raise TransitionError("Shift cannot be marked in progress before start time", "SHIFT_NOT_STARTED")
        check.business_rules.append("Shift timing validated")

    elif rule == "COMPLETION_CRITERIA_MET":
        if not shift.assigned_guard_id:
            raise TransitionError(
                "Cannot complete shift without guard assignment", "COMPLETION_CRITERIA_NOT_MET"
            )
        if shift.start_time > now:
            raise TransitionError("Cannot complete a shift before it starts", "COMPLETION_CRITERIA_NOT_MET")
        check.business_rules.append("Completion criteria validated")

    return check


def apply_transition(shift, to_status: str, now: datetime) -> None:
    """Side effects of entering a column"""
    if to_status == "unassigned":
        shift.assigned_guard_id = None
        shift.confirmed_at = None
    elif to_status == "assigned":
        shift.confirmed_at = None
    elif to_status == "confirmed" and not shift.confirmed_at:
        shift.confirmed_at = now
    shift.status = to_status
    shift.updated_at = now
