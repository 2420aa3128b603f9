"""Urgent shift alert rules (monitor, escalation, auto-resolution)"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

ALERT_TYPES = ("unassigned_24h", "unconfirmed_12h", "certification_gap")
ALERT_PRIORITIES = ("low", "medium", "high", "critical")
ALERT_STATUSES = ("active", "acknowledged", "resolved")

# Only shifts in these columns are watched
MONITORED_STATUSES = ("unassigned", "assigned", "confirmed")

MONITOR_WINDOW_HOURS = 24

ESCALATION_THRESHOLDS = {
    "unassigned_24h": timedelta(hours=2),
    "unconfirmed_12h": timedelta(hours=4),
}

# Status a shift moved into -> alert types that status satisfies
RESOLVED_BY_STATUS = {
    "assigned": ("unassigned_24h",),
    "confirmed": ("unassigned_24h", "unconfirmed_12h"),
    "in_progress": ("unassigned_24h", "unconfirmed_12h"),
    "completed": ("unassigned_24h", "unconfirmed_12h"),
}


@dataclass
class AlertSpec:
    alert_type: str
    priority: str
    reason: str
    hours_until_shift: float


def hours_until(shift, now: datetime) -> float:
    return (shift.start_time - now).total_seconds() / 3600


def missing_certifications(required: Optional[Iterable[str]], certifications: Iterable, at: datetime) -> list[str]:
    """Required certification types the guard does not hold unexpired at `at`"""
    held = {
        c.certification_type.lower()
        for c in certifications
        if c.expires_at is None or c.expires_at > at
    }
    return [r for r in (required or []) if r.lower() not in held]


def evaluate_shift(
    shift,
    now: datetime,
    existing_types: Iterable[str] = (),
    certifications: Iterable = (),
) -> list[AlertSpec]:
    """Alerts `shift` should raise now, skipping types that already have an active alert"""
    if shift.status not in MONITORED_STATUSES:
        return []
    hours = hours_until(shift, now)
    if hours <= 0 or hours > MONITOR_WINDOW_HOURS:
        return []

    existing = set(existing_types)
    rounded = round(hours, 2)
    specs = []

    if shift.status == "unassigned" and "unassigned_24h" not in existing:
        specs.append(
            AlertSpec(
                "unassigned_24h",
                "critical" if hours <= 6 else "high",
                f"Shift unassigned with {round(hours)} hours remaining",
                rounded,
            )
        )

    if (
        shift.status == "assigned"
        and not shift.confirmed_at
        and hours <= 12
        and "unconfirmed_12h" not in existing
    ):
        specs.append(
            AlertSpec(
                "unconfirmed_12h",
                "high" if hours <= 4 else "medium",
                f"Guard assigned but not confirmed with {round(hours)} hours remaining",
                rounded,
            )
        )

    if shift.assigned_guard_id and shift.required_certifications and "certification_gap" not in existing:
        missing = missing_certifications(shift.required_certifications, certifications, shift.start_time)
        if missing:
            specs.append(
                AlertSpec(
                    "certification_gap",
                    "high",
                    f"Assigned guard is missing required certifications: {', '.join(missing)}",
                    rounded,
                )
            )

    return specs


def next_priority(priority: str) -> str:
    index = ALERT_PRIORITIES.index(priority) if priority in ALERT_PRIORITIES else 0
    return ALERT_PRIORITIES[min(index + 1, len(ALERT_PRIORITIES) - 1)]


def should_escalate(alert, now: datetime) -> bool:
    threshold = ESCALATION_THRESHOLDS.get(alert.alert_type)
    if threshold is None or alert.alert_status != "active" or alert.alert_priority == "critical":
        return False
    since = alert.last_escalated_at or alert.created_at
    return since is not None and now - since >= threshold


def resolved_types(new_status: str) -> tuple[str, ...]:
    return RESOLVED_BY_STATUS.get(new_status, ())
