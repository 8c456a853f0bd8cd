"""Shared utility functions for services and blueprints.

utcnow / as_utc:     the one place "now" and tz normalisation live
isoformat:           UTC ISO-8601 rendering for to_dict()
parse_datetime:      ISO-8601 input parsing for ``now`` overrides
"""
from datetime import datetime, timezone


# ── Time ─────────────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def parse_datetime(value):
    """Parse an ISO-8601 string (``Z`` suffix accepted) to an aware UTC datetime.

    Returns None for empty input; raises ValueError for malformed input so
    blueprints can report it as a validation error.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime '{value}'. Use ISO-8601.") from exc

