"""Interval arithmetic for appointment slots.

Slots are half-open intervals ``[start, end)``; two back-to-back slots
do not overlap.
"""

from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo


def as_utc(value: datetime) -> datetime:
    """Convert an aware datetime to UTC; naive values are returned unchanged."""
    return value.astimezone(UTC) if value.tzinfo is not None else value


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True if ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect.

    Compared in UTC: datetimes sharing a ``ZoneInfo`` compare by wall clock,
    which is wrong across DST changes.
    """
    return as_utc(a_start) < as_utc(b_end) and as_utc(b_start) < as_utc(a_end)


def slot_end(start: datetime, duration_minutes: int) -> datetime:
    """Return the exclusive end of a slot starting at ``start``.

    Durations are elapsed time, so a slot spanning a DST change keeps its
    real length.
    """
    if start.tzinfo is None:
        return start + timedelta(minutes=duration_minutes)
    end = as_utc(start) + timedelta(minutes=duration_minutes)
    return end.astimezone(start.tzinfo)


def clinic_tz(name: str) -> tzinfo:
    """Resolve a clinic timezone name."""
    return ZoneInfo(name)


def parse_scheduled_at(value: str | datetime, tz: tzinfo) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime in the clinic timezone.

    Naive values are taken to already be clinic-local.

    Args:
        value: ISO-8601 string or datetime
        tz: Clinic timezone

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp")
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)
