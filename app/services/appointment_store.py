"""Appointment persistence and audit sink.

The scheduling service talks to storage through a unit of work: one
transaction holding the appointment repository, the audit sink and the
per-doctor lock. Either everything written inside it commits or nothing
does.
"""

from collections.abc import Callable
from datetime import datetime
from types import TracebackType
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.state_machine import ACTIVE_STATUSES
from app.models.appointments import appointments
from app.models.audit_logs import audit_logs
from app.models.patients import patients
from app.schemas.actors import Actor
from app.schemas.appointments import Appointment, AppointmentFilters
from app.schemas.audit import AuditAction, AuditEntry, AuditLogFilters

logger = structlog.get_logger()


class StoreError(Exception):
    """The backing store failed or is unreachable."""


class AppointmentRepository(Protocol):
    """Appointment records keyed by id, queryable by doctor and time range."""

    async def get(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None: ...

    async def find_overlapping(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]: ...

    async def insert(self, values: dict[str, Any]) -> Appointment: ...

    async def update(self, appointment_id: UUID, fields: dict[str, Any]) -> Appointment: ...

    async def delete(self, appointment_id: UUID) -> None: ...

    async def search(self, filters: AppointmentFilters) -> tuple[int, list[Appointment]]: ...


class AuditSink(Protocol):
    """Append-only log of accepted mutations."""

    async def append(
        self,
        actor: Actor,
        action: AuditAction,
        appointment_id: UUID | None,
        details: dict[str, Any],
    ) -> None: ...

    async def search(self, filters: AuditLogFilters) -> tuple[int, list[AuditEntry]]: ...


class SchedulingUnitOfWork(Protocol):
    """One atomic scheduling transaction."""

    appointments: AppointmentRepository
    audit: AuditSink

    async def lock_doctor(self, doctor_id: UUID) -> None: ...

    async def patient_name(self, patient_id: UUID) -> str | None: ...

    async def commit(self) -> None: ...

    async def __aenter__(self) -> "SchedulingUnitOfWork": ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


UnitOfWorkFactory = Callable[[], SchedulingUnitOfWork]


def _to_appointment(row: Any) -> Appointment:
    return Appointment.model_validate(dict(row._mapping))


class SqlAppointmentRepository:
    """Appointment repository over the ``appointments`` table."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with an open session."""
        self.session = session

    async def get(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None:
        """Load an appointment, optionally locking its row until commit."""
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        row = result.fetchone()
        return _to_appointment(row) if row else None

    async def find_overlapping(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]:
        """
        Find active appointments for a doctor whose slot intersects ``[start, end)``.

        Args:
            doctor_id: Doctor whose calendar is checked
            start: Slot start
            end: Slot end (exclusive)
            exclude_id: Appointment to leave out, e.g. the one being edited

        Returns:
            Overlapping appointments ordered by start time
        """
        row_end = appointments.c.scheduled_at + func.make_interval(
            0, 0, 0, 0, 0, appointments.c.duration_minutes
        )
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.status.in_([status.value for status in ACTIVE_STATUSES]),
            appointments.c.scheduled_at < end,
            row_end > start,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        stmt = select(appointments).where(and_(*conditions)).order_by(appointments.c.scheduled_at)
        result = await self.session.execute(stmt)
        return [_to_appointment(row) for row in result.fetchall()]

    async def insert(self, values: dict[str, Any]) -> Appointment:
        """Insert a new appointment row."""
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.session.execute(stmt)
        return _to_appointment(result.fetchone())

    async def update(self, appointment_id: UUID, fields: dict[str, Any]) -> Appointment:
        """Overwrite fields of an existing appointment row."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**fields)
            .returning(appointments)
        )
        result = await self.session.execute(stmt)
        return _to_appointment(result.fetchone())

    async def delete(self, appointment_id: UUID) -> None:
        """Hard-delete an appointment row."""
        await self.session.execute(delete(appointments).where(appointments.c.id == appointment_id))

    async def search(self, filters: AppointmentFilters) -> tuple[int, list[Appointment]]:
        """List appointments matching ``filters``, newest slot first."""
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.from_date:
            conditions.append(appointments.c.scheduled_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.scheduled_at <= filters.to_date)

        count_stmt = select(func.count()).select_from(appointments).where(and_(True, *conditions))
        total_result = await self.session.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(and_(True, *conditions))
            .order_by(appointments.c.scheduled_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return total, [_to_appointment(row) for row in result.fetchall()]


class SqlAuditSink:
    """Audit sink over the ``audit_logs`` table."""

    def __init__(self, session: AsyncSession):
        """Initialize sink with an open session."""
        self.session = session

    async def append(
        self,
        actor: Actor,
        action: AuditAction,
        appointment_id: UUID | None,
        details: dict[str, Any],
    ) -> None:
        """Write one audit entry in the current transaction."""
        await self.session.execute(
            insert(audit_logs).values(
                user_id=actor.id,
                actor_role=actor.role.value,
                action=action.value,
                appointment_id=appointment_id,
                details=details,
                user_agent=actor.user_agent or "unknown",
            )
        )

    async def search(self, filters: AuditLogFilters) -> tuple[int, list[AuditEntry]]:
        """List audit entries matching ``filters``, newest first."""
        conditions = []

        if filters.appointment_id:
            conditions.append(audit_logs.c.appointment_id == filters.appointment_id)

        if filters.user_id:
            conditions.append(audit_logs.c.user_id == filters.user_id)

        if filters.action:
            conditions.append(audit_logs.c.action == filters.action.value)

        count_stmt = select(func.count()).select_from(audit_logs).where(and_(True, *conditions))
        total = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(audit_logs)
            .where(and_(True, *conditions))
            .order_by(audit_logs.c.created_at.desc())
            .limit(filters.page_size)
            .offset((filters.page - 1) * filters.page_size)
        )
        result = await self.session.execute(stmt)
        return total, [AuditEntry.model_validate(dict(row._mapping)) for row in result.fetchall()]


class SqlUnitOfWork:
    """Unit of work over a single database transaction.

    Bookings for one doctor are serialized with a transaction-scoped
    advisory lock keyed by the doctor id; different doctors never wait on
    each other.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        lock_timeout_ms: int = 3000,
    ):
        """Initialize with a session factory and lock wait limit."""
        self._session_factory = session_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._session: AsyncSession | None = None
        self._committed = False

    async def __aenter__(self) -> "SqlUnitOfWork":
        """Open a session and start the transaction."""
        self._session = self._session_factory()
        self._committed = False
        self.appointments = SqlAppointmentRepository(self._session)
        self.audit = SqlAuditSink(self._session)
        try:
            await self._session.execute(
                select(func.set_config("lock_timeout", f"{self._lock_timeout_ms}ms", True))
            )
        except (SQLAlchemyError, OSError) as e:
            await self._session.close()
            raise StoreError(str(e)) from e
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Roll back anything uncommitted and close the session."""
        session = self._session
        self._session = None
        if session is None:
            return

        try:
            if not self._committed:
                await session.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.error("unit_of_work_rollback_failed", error=str(e))
            raise StoreError(str(e)) from e
        finally:
            await session.close()

        if isinstance(exc, (SQLAlchemyError, OSError)):
            raise StoreError(str(exc)) from exc

    @property
    def session(self) -> AsyncSession:
        """The open session."""
        if self._session is None:
            raise RuntimeError("Unit of work is not active")
        return self._session

    async def lock_doctor(self, doctor_id: UUID) -> None:
        """Hold the doctor's calendar lock until the transaction ends."""
        await self.session.execute(
            select(func.pg_advisory_xact_lock(func.hashtextextended(str(doctor_id), 0)))
        )

    async def patient_name(self, patient_id: UUID) -> str | None:
        """Look up a patient's display name."""
        result = await self.session.execute(
            select(patients.c.name).where(patients.c.id == patient_id)
        )
        return result.scalar_one_or_none()

    async def commit(self) -> None:
        """Commit the transaction."""
        await self.session.commit()
        self._committed = True
