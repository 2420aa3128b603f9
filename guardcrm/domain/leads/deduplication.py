"""Duplicate lead detection and merging"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

NAME_SIMILARITY_THRESHOLD = 0.8
PHONE_MATCH_CONFIDENCE = 85
EMAIL_MATCH_CONFIDENCE = 100
MESSAGE_SEPARATOR = "\n\n---\n\n"


@dataclass
class DuplicateMatch:
    is_duplicate: bool
    existing: Optional[object] = None
    match_type: Optional[str] = None  # email, name_phone, phone
    confidence: int = 0


def phone_key(phone: Optional[str]) -> str:
    """Last 10 digits of a phone number"""
    return re.sub(r"\D", "", phone or "")[-10:]


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(first_a: str, last_a: str, first_b: str, last_b: str) -> float:
    a = f"{first_a or ''} {last_a or ''}".strip().lower()
    b = f"{first_b or ''} {last_b or ''}".strip().lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(a, b) / longest


def find_duplicate(candidate: dict, existing_leads: list) -> DuplicateMatch:
    """
    candidate: dict with first_name, last_name, email, phone.
    existing_leads: objects exposing the same attributes.
    """
    email = (candidate.get("email") or "").strip().lower()
    if email:
        for lead in existing_leads:
            if (lead.email or "").strip().lower() == email:
                return DuplicateMatch(True, lead, "email", EMAIL_MATCH_CONFIDENCE)

    key = phone_key(candidate.get("phone"))
    if len(key) == 10:
        phone_matches = [lead for lead in existing_leads if phone_key(lead.phone) == key]
        for lead in phone_matches:
            similarity = name_similarity(
                candidate.get("first_name"), candidate.get("last_name"), lead.first_name, lead.last_name
            )
            if similarity > NAME_SIMILARITY_THRESHOLD:
                return DuplicateMatch(True, lead, "name_phone", round(similarity * 100))
        if phone_matches:
            return DuplicateMatch(True, phone_matches[0], "phone", PHONE_MATCH_CONFIDENCE)

    return DuplicateMatch(False)


def merge_into(existing, new_data: dict, now: Optional[datetime] = None) -> dict:
    """
    Apply new lead data onto an existing lead in place and return the changed
    fields. Names and phone are replaced when provided and different, the
    higher estimated value wins, messages are appended and the contact count
    is incremented.
    """
    now = now or datetime.utcnow()
    changes = {}

    for field in ("first_name", "last_name", "phone"):
        value = new_data.get(field)
        if value and value != getattr(existing, field):
            changes[field] = value

    new_value = new_data.get("estimated_value")
    if new_value is not None and (existing.estimated_value is None or new_value > existing.estimated_value):
        changes["estimated_value"] = new_value

    message = (new_data.get("message") or "").strip()
    if message:
        addition = f"Additional info ({now.date().isoformat()}): {message}"
        changes["message"] = (
            f"{existing.message}{MESSAGE_SEPARATOR}{addition}" if existing.message else addition
        )

    details = new_data.get("source_details")
    if details:
        merged_details = dict(existing.source_details or {})
        merged_details["duplicateSource"] = {
            "sourceType": new_data.get("source_type"),
            "details": details,
            "mergedAt": now.isoformat(),
        }
        changes["source_details"] = merged_details

    changes["contact_count"] = (existing.contact_count or 0) + 1

    for field, value in changes.items():
        setattr(existing, field, value)
    return changes
