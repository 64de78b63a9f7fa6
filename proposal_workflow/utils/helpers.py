"""Shared utility functions.

utc_now:         single clock for every timestamp the service writes
iso:             datetime -> ISO-8601 string (None-safe)
parse_datetime:  ISO string / datetime -> aware datetime (None on bad input)
new_id:          prefixed opaque identifiers for events, comments, notifications
safe_pct:        zero-safe percentage with one decimal
"""
import uuid
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """Serialise a datetime for JSON output; passes None through."""
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value):
    """Parse an ISO timestamp into a timezone-aware datetime.

    Returns None for empty/invalid input. Naive values are assumed UTC.
    Accepts the trailing ``Z`` that JavaScript clients send.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id(prefix: str) -> str:
    """Return an identifier like ``event-3f9c1a2b4d5e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def safe_pct(numerator: int, denominator: int) -> float:
    """Zero-safe percentage."""
    return round((numerator / denominator) * 100, 1) if denominator else 0.0


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
