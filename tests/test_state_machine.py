"""Tests for appointment status transitions."""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.state_machine import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    AppointmentLockedError,
    InvalidTransitionError,
    ensure_editable,
    transition,
)
from app.schemas.appointments import AppointmentStatus as S

LEGAL = {
    (S.SCHEDULED, S.CONFIRMED),
    (S.SCHEDULED, S.CANCELLED),
    (S.SCHEDULED, S.IN_PROGRESS),
    (S.SCHEDULED, S.NO_SHOW),
    (S.CONFIRMED, S.IN_PROGRESS),
    (S.CONFIRMED, S.CANCELLED),
    (S.CONFIRMED, S.NO_SHOW),
    (S.IN_PROGRESS, S.COMPLETED),
    (S.IN_PROGRESS, S.CANCELLED),
}


def test_table_matches_legal_edges():
    edges = {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}
    assert edges == LEGAL


def test_terminal_and_active_sets():
    assert TERMINAL_STATUSES == {S.COMPLETED, S.CANCELLED, S.NO_SHOW}
    assert ACTIVE_STATUSES == {S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS}


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("requested", list(S))
def test_transition(current, requested):
    if (current, requested) in LEGAL:
        assert transition(current, requested) is requested
    else:
        with pytest.raises(InvalidTransitionError):
            transition(current, requested)


def test_cannot_confirm_a_past_slot_when_clock_is_given():
    now = datetime(2030, 1, 2, 12, 0, tzinfo=UTC)

    with pytest.raises(InvalidTransitionError, match="past"):
        transition(S.SCHEDULED, S.CONFIRMED, slot_ends_at=now - timedelta(minutes=1), now=now)

    assert (
        transition(S.SCHEDULED, S.CONFIRMED, slot_ends_at=now + timedelta(minutes=30), now=now)
        is S.CONFIRMED
    )
    # Without a clock the time rule is off
    assert transition(S.SCHEDULED, S.CONFIRMED, slot_ends_at=now - timedelta(days=1)) is S.CONFIRMED


@pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED, S.NO_SHOW])
def test_terminal_appointments_are_locked(status):
    with pytest.raises(AppointmentLockedError):
        ensure_editable(status)


@pytest.mark.parametrize("status", [S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS])
def test_active_appointments_are_editable(status):
    ensure_editable(status)
