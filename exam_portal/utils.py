"""Utility functions for time handling, sanitization and validation."""

from datetime import datetime, timezone
from typing import Optional

import bleach


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li', 'sub', 'sup']
    sanitized = bleach.clean(text, tags=allowed_tags, attributes={}, strip=True)
    return sanitized.strip()


def sanitize_feedback(text: str) -> str:
    """Sanitize grader feedback text down to plain text."""
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()


def validate_marks(marks: float, max_marks: float) -> bool:
    """Validate that manually awarded marks are within acceptable range.

    Raises:
        ValueError: If marks fall outside [0, max_marks]
    """
    if marks < 0 or marks > max_marks:
        raise ValueError(f"Marks {marks} out of range [0, {max_marks}]")
    return True
