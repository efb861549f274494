"""Appointment scheduling service.

Sole entry point for creating, editing, transitioning and deleting
appointments. Every operation authorizes the actor first, then runs its
checks and writes inside one unit of work so the appointment change and
its audit entry commit together. Refusals come back as ``Rejection``
values rather than exceptions.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

import structlog

from app.config import Settings, settings
from app.core.calendar import clinic_tz, overlaps, parse_scheduled_at, slot_end
from app.core.exceptions import Rejection, RejectionKind
from app.core.permissions import Action, PermissionPolicy
from app.core.state_machine import (
    AppointmentLockedError,
    InvalidTransitionError,
    ensure_editable,
    transition,
)
from app.schemas.actors import Actor
from app.schemas.appointments import (
    Appointment,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
)
from app.schemas.audit import AuditAction
from app.services.appointment_store import SchedulingUnitOfWork, StoreError, UnitOfWorkFactory

logger = structlog.get_logger()

T = TypeVar("T")

# Marks a reschedule field the caller did not send
_KEEP: Any = object()


class SchedulingService:
    """Service enforcing the appointment scheduling rules."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy: PermissionPolicy | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize service.

        Args:
            uow_factory: Creates a fresh unit of work per operation
            policy: Permission policy, defaults to the configured one
            config: Settings, defaults to the global settings
            clock: Returns the current aware time
        """
        config = config or settings
        self._uow_factory = uow_factory
        self.policy = policy or PermissionPolicy.with_overrides(
            config.appointment_policy_overrides
        )
        self.tz = clinic_tz(config.clinic_timezone)
        self.default_minutes = config.default_appointment_minutes
        self.min_minutes = config.min_appointment_minutes
        self.max_minutes = config.max_appointment_minutes
        self.reject_past = config.reject_past_bookings
        self.timeout = config.store_timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    # Public operations

    async def book(
        self,
        actor: Actor,
        patient_id: UUID | str,
        doctor_id: UUID | str,
        scheduled_at: str | datetime,
        duration_minutes: int | None = None,
        notes: str | None = None,
    ) -> Appointment | Rejection:
        """
        Book a new appointment in status SCHEDULED.

        Args:
            actor: Calling actor
            patient_id: Patient the appointment is for
            doctor_id: Doctor whose calendar is booked
            scheduled_at: ISO-8601 start time
            duration_minutes: Slot length, defaults to the configured length
            notes: Free text

        Returns:
            Committed appointment or a rejection
        """
        if not self.policy.authorize(actor.role, Action.CREATE):
            return self._rejected(
                "book", actor, RejectionKind.FORBIDDEN, "Not allowed to create appointments"
            )

        try:
            patient_uuid = _as_uuid(patient_id, "patient_id")
            doctor_uuid = _as_uuid(doctor_id, "doctor_id")
            start = self._parse_start(scheduled_at)
            duration = self._check_duration(
                self.default_minutes if duration_minutes is None else duration_minutes
            )
        except ValueError as e:
            return self._rejected("book", actor, RejectionKind.INVALID_INPUT, str(e))

        end = slot_end(start, duration)

        async def work(uow: SchedulingUnitOfWork) -> Appointment | Rejection:
            await uow.lock_doctor(doctor_uuid)
            conflict = await self._find_conflict(uow, doctor_uuid, start, end)
            if conflict is not None:
                return conflict

            now = self._clock()
            appointment = await uow.appointments.insert(
                {
                    "id": uuid4(),
                    "patient_id": patient_uuid,
                    "doctor_id": doctor_uuid,
                    "scheduled_at": start,
                    "duration_minutes": duration,
                    "status": AppointmentStatus.SCHEDULED.value,
                    "notes": notes,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            await uow.audit.append(
                actor,
                AuditAction.CREATE,
                appointment.id,
                await self._snapshot(uow, appointment),
            )
            await uow.commit()
            return appointment

        result = await self._run("book", actor, work)
        if isinstance(result, Appointment):
            logger.info(
                "appointment_booked",
                appointment_id=str(result.id),
                doctor_id=str(result.doctor_id),
                scheduled_at=result.scheduled_at.isoformat(),
                actor_id=actor.id,
            )
        return result

    async def reschedule(
        self,
        actor: Actor,
        appointment_id: UUID,
        patient_id: UUID | str | None = None,
        doctor_id: UUID | str | None = None,
        scheduled_at: str | datetime | None = None,
        duration_minutes: int | None = None,
        notes: str | None = _KEEP,
    ) -> Appointment | Rejection:
        """
        Edit an appointment's schedule fields.

        Fields left as None keep their stored value, including the
        duration. ``notes`` is kept only when omitted; None clears it.

        Args:
            actor: Calling actor
            appointment_id: Appointment to edit
            patient_id: New patient
            doctor_id: New doctor
            scheduled_at: New ISO-8601 start time
            duration_minutes: New slot length
            notes: New notes, None to clear

        Returns:
            Updated appointment or a rejection
        """
        if not self.policy.authorize(actor.role, Action.UPDATE):
            return self._rejected(
                "reschedule", actor, RejectionKind.FORBIDDEN, "Not allowed to update appointments"
            )

        try:
            new_patient = None if patient_id is None else _as_uuid(patient_id, "patient_id")
            new_doctor = None if doctor_id is None else _as_uuid(doctor_id, "doctor_id")
            new_start = None if scheduled_at is None else self._parse_start(scheduled_at)
            new_duration = (
                None if duration_minutes is None else self._check_duration(duration_minutes)
            )
        except ValueError as e:
            return self._rejected("reschedule", actor, RejectionKind.INVALID_INPUT, str(e))

        async def work(uow: SchedulingUnitOfWork) -> Appointment | Rejection:
            existing = await uow.appointments.get(appointment_id, for_update=True)
            if existing is None:
                return _not_found(appointment_id)

            try:
                ensure_editable(existing.status)
            except AppointmentLockedError as e:
                return Rejection(RejectionKind.APPOINTMENT_LOCKED, str(e))

            doctor = new_doctor or existing.doctor_id
            start = new_start or existing.scheduled_at
            duration = new_duration or existing.duration_minutes
            end = slot_end(start, duration)

            await uow.lock_doctor(doctor)
            conflict = await self._find_conflict(uow, doctor, start, end, exclude_id=existing.id)
            if conflict is not None:
                return conflict

            fields: dict[str, Any] = {
                "patient_id": new_patient or existing.patient_id,
                "doctor_id": doctor,
                "scheduled_at": start,
                "duration_minutes": duration,
                "updated_at": self._clock(),
            }
            if notes is not _KEEP:
                fields["notes"] = notes

            appointment = await uow.appointments.update(existing.id, fields)
            await uow.audit.append(
                actor,
                AuditAction.UPDATE,
                appointment.id,
                await self._snapshot(uow, appointment),
            )
            await uow.commit()
            return appointment

        result = await self._run("reschedule", actor, work)
        if isinstance(result, Appointment):
            logger.info(
                "appointment_rescheduled",
                appointment_id=str(result.id),
                doctor_id=str(result.doctor_id),
                scheduled_at=result.scheduled_at.isoformat(),
                actor_id=actor.id,
            )
        return result

    async def change_status(
        self,
        actor: Actor,
        appointment_id: UUID,
        requested_status: AppointmentStatus | str,
    ) -> Appointment | Rejection:
        """
        Move an appointment along the status transition table.

        Args:
            actor: Calling actor
            appointment_id: Appointment to transition
            requested_status: Target status

        Returns:
            Updated appointment or a rejection
        """
        if not self.policy.authorize(actor.role, Action.UPDATE):
            return self._rejected(
                "change_status",
                actor,
                RejectionKind.FORBIDDEN,
                "Not allowed to update appointments",
            )

        try:
            requested = AppointmentStatus(requested_status)
        except ValueError:
            return self._rejected(
                "change_status",
                actor,
                RejectionKind.INVALID_INPUT,
                f"Unknown status: {requested_status}",
            )

        async def work(uow: SchedulingUnitOfWork) -> Appointment | Rejection:
            existing = await uow.appointments.get(appointment_id, for_update=True)
            if existing is None:
                return _not_found(appointment_id)

            now = self._clock()
            try:
                new_status = transition(
                    existing.status,
                    requested,
                    slot_ends_at=existing.ends_at if self.reject_past else None,
                    now=now if self.reject_past else None,
                )
            except InvalidTransitionError as e:
                return Rejection(RejectionKind.INVALID_TRANSITION, str(e))

            appointment = await uow.appointments.update(
                existing.id,
                {"status": new_status.value, "updated_at": now},
            )
            details = await self._snapshot(uow, appointment)
            details["previous_status"] = existing.status.value
            await uow.audit.append(actor, AuditAction.UPDATE_STATUS, appointment.id, details)
            await uow.commit()
            return appointment

        result = await self._run("change_status", actor, work)
        if isinstance(result, Appointment):
            logger.info(
                "appointment_status_changed",
                appointment_id=str(result.id),
                status=result.status.value,
                actor_id=actor.id,
            )
        return result

    async def remove(self, actor: Actor, appointment_id: UUID) -> Rejection | None:
        """
        Hard-delete an appointment. The audit entry is written first.

        Args:
            actor: Calling actor
            appointment_id: Appointment to delete

        Returns:
            None on success, otherwise a rejection
        """
        if not self.policy.authorize(actor.role, Action.DELETE):
            return self._rejected(
                "remove", actor, RejectionKind.FORBIDDEN, "Not allowed to delete appointments"
            )

        async def work(uow: SchedulingUnitOfWork) -> Appointment | Rejection:
            existing = await uow.appointments.get(appointment_id, for_update=True)
            if existing is None:
                return _not_found(appointment_id)

            await uow.audit.append(
                actor,
                AuditAction.DELETE_APPOINTMENT,
                existing.id,
                await self._snapshot(uow, existing),
            )
            await uow.appointments.delete(existing.id)
            await uow.commit()
            return existing

        result = await self._run("remove", actor, work)
        if isinstance(result, Rejection):
            return result

        logger.info("appointment_removed", appointment_id=str(result.id), actor_id=actor.id)
        return None

    async def get(self, actor: Actor, appointment_id: UUID) -> Appointment | Rejection:
        """Fetch a single appointment."""
        if not self.policy.authorize(actor.role, Action.READ):
            return self._rejected(
                "get", actor, RejectionKind.FORBIDDEN, "Not allowed to read appointments"
            )

        async def work(uow: SchedulingUnitOfWork) -> Appointment | Rejection:
            appointment = await uow.appointments.get(appointment_id)
            return appointment if appointment is not None else _not_found(appointment_id)

        return await self._run("get", actor, work)

    async def list_appointments(
        self,
        actor: Actor,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse | Rejection:
        """List appointments with filtering and pagination."""
        if not self.policy.authorize(actor.role, Action.READ):
            return self._rejected(
                "list", actor, RejectionKind.FORBIDDEN, "Not allowed to read appointments"
            )

        # Naive bounds are clinic-local, like booking times
        filters = filters.model_copy(
            update={
                "from_date": self._localize(filters.from_date),
                "to_date": self._localize(filters.to_date),
            }
        )

        async def work(uow: SchedulingUnitOfWork) -> AppointmentListResponse:
            total, items = await uow.appointments.search(filters)
            return AppointmentListResponse(
                total=total,
                page=filters.page,
                page_size=filters.page_size,
                items=items,
            )

        return await self._run("list", actor, work)

    # Helpers

    async def _run(
        self,
        operation: str,
        actor: Actor,
        work: Callable[[SchedulingUnitOfWork], Awaitable[T]],
    ) -> T | Rejection:
        """Run ``work`` in a fresh unit of work bounded by the store timeout."""
        try:
            async with asyncio.timeout(self.timeout):
                async with self._uow_factory() as uow:
                    result = await work(uow)
        except (StoreError, TimeoutError) as e:
            logger.error(
                "scheduling_store_unavailable",
                operation=operation,
                actor_id=actor.id,
                error=str(e) or e.__class__.__name__,
            )
            return Rejection(RejectionKind.STORE_UNAVAILABLE, "Appointment store is unavailable")

        if isinstance(result, Rejection):
            self._log_rejection(operation, actor, result)
        return result

    def _rejected(
        self,
        operation: str,
        actor: Actor,
        kind: RejectionKind,
        message: str,
    ) -> Rejection:
        rejection = Rejection(kind, message)
        self._log_rejection(operation, actor, rejection)
        return rejection

    @staticmethod
    def _log_rejection(operation: str, actor: Actor, rejection: Rejection) -> None:
        logger.info(
            "scheduling_rejected",
            operation=operation,
            kind=rejection.kind.value,
            reason=rejection.message,
            actor_id=actor.id,
            actor_role=actor.role.value,
        )

    def _parse_start(self, value: str | datetime) -> datetime:
        try:
            start = parse_scheduled_at(value, self.tz)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid scheduled_at: {value!r}") from e
        if self.reject_past and start < self._clock():
            raise ValueError("scheduled_at is in the past")
        return start

    def _localize(self, value: datetime | None) -> datetime | None:
        return None if value is None else parse_scheduled_at(value, self.tz)

    def _check_duration(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("duration_minutes must be an integer")
        if not self.min_minutes <= value <= self.max_minutes:
            raise ValueError(
                f"duration_minutes must be between {self.min_minutes} and {self.max_minutes}"
            )
        return value

    @staticmethod
    async def _find_conflict(
        uow: SchedulingUnitOfWork,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> Rejection | None:
        candidates = await uow.appointments.find_overlapping(
            doctor_id, start, end, exclude_id=exclude_id
        )
        for other in candidates:
            if overlaps(start, end, other.scheduled_at, other.ends_at):
                return Rejection(
                    RejectionKind.SLOT_CONFLICT,
                    f"Time slot is already booked by appointment {other.id}",
                )
        return None

    @staticmethod
    async def _snapshot(uow: SchedulingUnitOfWork, appointment: Appointment) -> dict[str, Any]:
        return {
            "patient_id": str(appointment.patient_id),
            "patient_name": await uow.patient_name(appointment.patient_id),
            "doctor_id": str(appointment.doctor_id),
            "scheduled_at": appointment.scheduled_at.isoformat(),
            "duration_minutes": appointment.duration_minutes,
            "status": appointment.status.value,
        }


def _as_uuid(value: UUID | str, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise ValueError(f"Invalid {field}: {value!r}") from e


def _not_found(appointment_id: UUID) -> Rejection:
    return Rejection(RejectionKind.NOT_FOUND, f"Appointment {appointment_id} not found")
