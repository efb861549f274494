"""Tests for slot interval arithmetic."""

from datetime import UTC, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core.calendar import overlaps, parse_scheduled_at, slot_end

NINE = datetime(2030, 1, 2, 9, 0, tzinfo=UTC)


def t(minutes: int) -> datetime:
    return NINE + timedelta(minutes=minutes)


def test_overlapping_slots():
    """Partially overlapping slots conflict in both directions."""
    assert overlaps(t(0), t(30), t(15), t(45))
    assert overlaps(t(15), t(45), t(0), t(30))


def test_contained_slot_overlaps():
    assert overlaps(t(0), t(60), t(15), t(30))
    assert overlaps(t(15), t(30), t(0), t(60))


def test_back_to_back_slots_do_not_overlap():
    """Half-open intervals: one slot ending when the next starts is fine."""
    assert not overlaps(t(0), t(30), t(30), t(60))
    assert not overlaps(t(30), t(60), t(0), t(30))


def test_disjoint_slots():
    assert not overlaps(t(0), t(30), t(90), t(120))


def test_slot_end():
    assert slot_end(NINE, 30) == t(30)
    assert slot_end(NINE, 240) == NINE + timedelta(hours=4)


def test_parse_naive_timestamp_is_clinic_local():
    tz = ZoneInfo("Europe/Berlin")
    parsed = parse_scheduled_at("2030-01-02T09:00:00", tz)
    assert parsed.tzinfo == tz
    assert (parsed.hour, parsed.minute) == (9, 0)


def test_parse_aware_timestamp_is_converted():
    tz = ZoneInfo("Europe/Berlin")
    parsed = parse_scheduled_at("2030-01-02T08:00:00Z", tz)
    assert parsed.hour == 9
    assert parsed == datetime(2030, 1, 2, 8, 0, tzinfo=UTC)


def test_parse_datetime_passthrough():
    value = datetime(2030, 1, 2, 9, 0, tzinfo=timezone(timedelta(hours=2)))
    assert parse_scheduled_at(value, UTC) == value


@pytest.mark.parametrize("value", ["", "   ", "tomorrow at nine", "2030-13-45T09:00", 42])
def test_parse_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_scheduled_at(value, UTC)


def test_slot_across_spring_forward_keeps_its_length():
    """A 60 minute slot at 01:30 EST ends at 03:30 EDT, not 02:30."""
    tz = ZoneInfo("America/New_York")
    start = parse_scheduled_at("2030-03-10T01:30:00-05:00", tz)

    end = slot_end(start, 60)

    assert end == datetime(2030, 3, 10, 7, 30, tzinfo=UTC)
    assert (end.hour, end.minute) == (3, 30)


def test_overlap_across_spring_forward():
    tz = ZoneInfo("America/New_York")
    start = parse_scheduled_at("2030-03-10T01:30:00-05:00", tz)
    other = parse_scheduled_at("2030-03-10T03:00:00-04:00", tz)

    assert overlaps(start, slot_end(start, 60), other, slot_end(other, 30))
    assert not overlaps(start, slot_end(start, 60), slot_end(start, 60), slot_end(other, 60))
