"""Appointment status transitions."""

from datetime import datetime

from app.schemas.appointments import AppointmentStatus


class InvalidTransitionError(Exception):
    """Requested status is not reachable from the current one."""

    def __init__(
        self,
        current: AppointmentStatus,
        requested: AppointmentStatus,
        reason: str | None = None,
    ):
        """Initialize with the rejected edge."""
        self.current = current
        self.requested = requested
        message = f"Cannot change status from {current.value} to {requested.value}"
        super().__init__(f"{message}: {reason}" if reason else message)


class AppointmentLockedError(Exception):
    """Appointment is in a terminal status and can no longer be edited."""

    def __init__(self, status: AppointmentStatus):
        """Initialize with the terminal status."""
        self.status = status
        super().__init__(f"Appointment is {status.value} and can no longer be edited")


TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Statuses that occupy a doctor's calendar
ACTIVE_STATUSES = frozenset(TRANSITIONS) - TERMINAL_STATUSES


def is_terminal(status: AppointmentStatus) -> bool:
    """Check if no further transition is possible from ``status``."""
    return status in TERMINAL_STATUSES


def transition(
    current: AppointmentStatus,
    requested: AppointmentStatus,
    slot_ends_at: datetime | None = None,
    now: datetime | None = None,
) -> AppointmentStatus:
    """
    Validate a status change.

    When both ``slot_ends_at`` and ``now`` are given, confirming a slot
    that has already ended is refused as well.

    Args:
        current: Stored status
        requested: Desired status
        slot_ends_at: End of the appointment's slot
        now: Current time

    Returns:
        The new status

    Raises:
        InvalidTransitionError: If the edge is not in the transition table
    """
    if requested not in TRANSITIONS[current]:
        raise InvalidTransitionError(current, requested)
    if (
        requested is AppointmentStatus.CONFIRMED
        and slot_ends_at is not None
        and now is not None
        and slot_ends_at <= now
    ):
        raise InvalidTransitionError(current, requested, "slot is in the past")
    return requested


def ensure_editable(status: AppointmentStatus) -> None:
    """Raise AppointmentLockedError if schedule fields may not change."""
    if is_terminal(status):
        raise AppointmentLockedError(status)
