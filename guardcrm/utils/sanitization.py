import html
import re
from typing import Any, Optional

import bleach

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

COMMENT_ALLOWED_TAGS = ["p", "br", "strong", "em", "u", "a", "ul", "ol", "li", "blockquote", "code"]
COMMENT_ALLOWED_ATTRIBUTES = {"a": ["href", "title"]}


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Escape HTML special characters to prevent XSS.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(value, quote=True)


def sanitize_text(value: Optional[str], max_length: int = 5000) -> Optional[str]:
    """
    Plain free text: tags stripped, control characters removed, whitespace trimmed.

    Raises:
        ValueError: If input exceeds max_length
    """
    if value is None:
        return None
    value = bleach.clean(str(value), tags=[], strip=True).strip()
    value = CONTROL_CHARS.sub("", value)
    if len(value) > max_length:
        raise ValueError(f"Input exceeds maximum length of {max_length} characters")
    # bleach leaves entities escaped; store readable text
    return html.unescape(value)


def sanitize_html(html_content: str) -> str:
    """Rich text for comments: a safe subset of formatting tags"""
    return bleach.clean(
        html_content,
        tags=COMMENT_ALLOWED_TAGS,
        attributes=COMMENT_ALLOWED_ATTRIBUTES,
        strip=True,
    )


def sanitize_dict(data: dict[str, Any], fields: Optional[list[str]] = None) -> dict[str, Any]:
    """
    Strip markup from string values of a dictionary (recursively).
    If fields is None, sanitizes all string values.
    """
    if not data:
        return data

    sanitized = {}
    for key, value in data.items():
        if fields is not None and key not in fields:
            sanitized[key] = value
        elif isinstance(value, str):
            sanitized[key] = sanitize_text(value)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, fields)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_dict(item, fields) if isinstance(item, dict)
                else sanitize_text(item) if isinstance(item, str) else item
                for item in value
            ]
        else:
            sanitized[key] = value

    return sanitized
