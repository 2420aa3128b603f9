"""Hiring pipeline stage table and transition rules"""

import re
from dataclasses import dataclass, field
from typing import Optional


class TransitionError(Exception):
    """Rejected status/stage transition; `code` identifies the rule that failed"""

    def __init__(self, message: str, code: str = "invalid_transition"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class StageConfig:
    stage: str
    title: str
    description: str
    allowed_transitions: tuple[str, ...] = field(default_factory=tuple)
    email_template: Optional[str] = None


STAGE_CONFIGURATIONS: dict[str, StageConfig] = {
    config.stage: config
    for config in (
        StageConfig(
            "lead_captured",
            "Lead Captured",
            "Initial leads waiting for application",
            ("application_received", "rejected"),
            "application-invitation",
        ),
        StageConfig(
            "application_received",
            "Application Received",
            "Applications submitted and ready for review",
            ("under_review", "rejected"),
            "application-received-confirmation",
        ),
        StageConfig(
            "under_review",
            "Under Review",
            "Manager reviewing the application",
            ("background_check", "interview_scheduled", "approved", "rejected"),
        ),
        StageConfig(
            "background_check",
            "Background Check",
            "Background verification in progress",
            ("interview_scheduled", "approved", "rejected"),
        ),
        StageConfig(
            "interview_scheduled",
            "Interview Scheduled",
            "Interview arranged with applicant",
            ("interview_completed", "rejected"),
            "interview-scheduled",
        ),
        StageConfig(
            "interview_completed",
            "Interview Complete",
            "Interview finished, awaiting decision",
            ("approved", "rejected"),
        ),
        StageConfig(
            "approved",
            "Approved",
            "Approved for hiring",
            ("profile_created",),
            "application-approved",
        ),
        StageConfig("rejected", "Rejected", "Application not approved", (), "application-rejected"),
        StageConfig(
            "profile_created",
            "Profile Created",
            "Guard profile created, ready for scheduling",
            (),
            "welcome-guard",
        ),
    )
}

STAGE_ORDER = list(STAGE_CONFIGURATIONS)

PRIORITY_LABELS = {
    1: "Critical",
    2: "High",
    3: "Medium-High",
    4: "Medium",
    5: "Normal",
    6: "Medium-Low",
    7: "Low",
    8: "Very Low",
    9: "Minimal",
    10: "Backlog",
}

COMMENT_TYPES = ("general", "interview_feedback", "background_check", "manager_note", "system_notification")

MENTION_PATTERN = re.compile(
    r"@([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}|\d+)\b"
)


def validate_stage_transition(current: str, new: str) -> StageConfig:
    """Return the target stage configuration or raise TransitionError"""
    if new not in STAGE_CONFIGURATIONS:
        raise TransitionError(f"Unknown stage: {new}", "unknown_stage")
    if current == new:
        raise TransitionError(f"Application is already in stage {new}", "same_stage")
    source = STAGE_CONFIGURATIONS.get(current)
    if source is None or new not in source.allowed_transitions:
        raise TransitionError(f"Cannot move application from {current} to {new}", "not_allowed")
    return STAGE_CONFIGURATIONS[new]


def extract_mentions(text: str) -> list[str]:
    """@<id> or @<uuid> tokens, de-duplicated in order of appearance"""
    return list(dict.fromkeys(match.group(1) for match in MENTION_PATTERN.finditer(text or "")))
