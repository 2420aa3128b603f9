"""
iCalendar (RFC 5545) rendering for shift subscription feeds.

Lines end with CRLF and are folded at 75 octets; TEXT values escape
backslash, semicolon, comma and newlines.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

PRODID = "-//GuardCRM//Shift Calendar//EN"
MAX_LINE_OCTETS = 75


@dataclass
class CalendarEvent:
    uid: str
    start: datetime
    end: datetime
    summary: str
    description: Optional[str] = None
    location: Optional[str] = None
    status: str = "CONFIRMED"
    last_modified: Optional[datetime] = None


def escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "\\n")
    )


def fold_line(line: str) -> str:
    """Split a content line into 75-octet chunks; continuation lines start with a space"""
    encoded = line.encode("utf-8")
    if len(encoded) <= MAX_LINE_OCTETS:
        return line

    chunks = []
    current = b""
    limit = MAX_LINE_OCTETS
    for char in line:
        char_bytes = char.encode("utf-8")
        if len(current) + len(char_bytes) > limit:
            chunks.append(current.decode("utf-8"))
            current = b""
            # Continuation lines spend one octet on the leading space
            limit = MAX_LINE_OCTETS - 1
        current += char_bytes
    chunks.append(current.decode("utf-8"))
    return "\r\n ".join(chunks)


def format_datetime(value: datetime) -> str:
    """UTC form YYYYMMDDTHHMMSSZ (naive datetimes are treated as UTC)"""
    return value.strftime("%Y%m%dT%H%M%SZ")


def _event_lines(event: CalendarEvent, stamp: datetime) -> list[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{event.uid}",
        f"DTSTAMP:{format_datetime(stamp)}",
        f"DTSTART:{format_datetime(event.start)}",
        f"DTEND:{format_datetime(event.end)}",
        f"SUMMARY:{escape_text(event.summary)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    lines.append(f"STATUS:{event.status}")
    if event.last_modified:
        lines.append(f"LAST-MODIFIED:{format_datetime(event.last_modified)}")
    lines.append("END:VEVENT")
    return lines


def build_calendar(events: Iterable[CalendarEvent], name: str, now: Optional[datetime] = None) -> str:
    stamp = now or datetime.utcnow()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(name)}",
        "X-WR-TIMEZONE:UTC",
        "REFRESH-INTERVAL;VALUE=DURATION:PT1H",
        "X-PUBLISHED-TTL:PT1H",
    ]
    for event in events:
        lines.extend(_event_lines(event, stamp))
    lines.append("END:VCALENDAR")
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"
