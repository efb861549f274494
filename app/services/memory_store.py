"""Process-local appointment store.

Used when ``STORE_BACKEND=memory``. Bookings for one doctor are serialized
with an ``asyncio.Lock`` keyed by doctor id. Writes and audit entries are
staged inside the unit of work and applied together on commit.
"""

import asyncio
import weakref
from datetime import UTC, datetime
from types import TracebackType
from typing import Any
from uuid import UUID, uuid4

from app.core.calendar import as_utc, overlaps
from app.core.state_machine import ACTIVE_STATUSES
from app.schemas.actors import Actor
from app.schemas.appointments import Appointment, AppointmentFilters
from app.schemas.audit import AuditAction, AuditEntry, AuditLogFilters

_DELETED = object()


class MemoryStore:
    """Committed appointments, audit entries and patient names."""

    def __init__(self, patient_names: dict[UUID, str] | None = None):
        """Initialize an empty store."""
        self.appointments: dict[UUID, Appointment] = {}
        self.audit_entries: list[AuditEntry] = []
        self.patient_names: dict[UUID, str] = dict(patient_names or {})
        # Entries vanish once no unit of work holds or waits on the lock
        self._doctor_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._row_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def unit_of_work(self) -> "MemoryUnitOfWork":
        """Start a new unit of work against this store."""
        return MemoryUnitOfWork(self)

    def doctor_lock(self, doctor_id: UUID) -> asyncio.Lock:
        """Get the calendar lock for a doctor."""
        return _lock_for(self._doctor_locks, doctor_id)

    def row_lock(self, appointment_id: UUID) -> asyncio.Lock:
        """Get the row lock for an appointment."""
        return _lock_for(self._row_locks, appointment_id)


def _lock_for(locks: weakref.WeakValueDictionary, key: UUID) -> asyncio.Lock:
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


class MemoryAppointmentRepository:
    """Appointment repository reading committed rows overlaid with staged writes."""

    def __init__(self, uow: "MemoryUnitOfWork"):
        """Initialize repository bound to a unit of work."""
        self._uow = uow

    def _current(self) -> dict[UUID, Appointment]:
        rows = dict(self._uow.store.appointments)
        for appointment_id, staged in self._uow.staged.items():
            if staged is _DELETED:
                rows.pop(appointment_id, None)
            else:
                rows[appointment_id] = staged
        return rows

    async def get(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None:
        """Load an appointment, optionally holding its row lock until the unit of work ends."""
        if for_update:
            await self._uow.acquire(self._uow.store.row_lock(appointment_id))
        return self._current().get(appointment_id)

    async def find_overlapping(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]:
        """Find active appointments for a doctor whose slot intersects ``[start, end)``."""
        found = [
            appointment
            for appointment in self._current().values()
            if appointment.doctor_id == doctor_id
            and appointment.id != exclude_id
            and appointment.status in ACTIVE_STATUSES
            and overlaps(start, end, appointment.scheduled_at, appointment.ends_at)
        ]
        return sorted(found, key=lambda appointment: as_utc(appointment.scheduled_at))

    async def insert(self, values: dict[str, Any]) -> Appointment:
        """Stage a new appointment."""
        appointment = Appointment.model_validate(values)
        self._uow.staged[appointment.id] = appointment
        return appointment

    async def update(self, appointment_id: UUID, fields: dict[str, Any]) -> Appointment:
        """Stage field changes to an existing appointment."""
        current = self._current()[appointment_id]
        appointment = Appointment.model_validate({**current.model_dump(), **fields})
        self._uow.staged[appointment_id] = appointment
        return appointment

    async def delete(self, appointment_id: UUID) -> None:
        """Stage a hard delete."""
        self._uow.staged[appointment_id] = _DELETED

    async def search(self, filters: AppointmentFilters) -> tuple[int, list[Appointment]]:
        """List appointments matching ``filters``, newest slot first."""
        rows = [
            appointment
            for appointment in self._current().values()
            if (filters.status is None or appointment.status == filters.status)
            and (filters.doctor_id is None or appointment.doctor_id == filters.doctor_id)
            and (filters.patient_id is None or appointment.patient_id == filters.patient_id)
            and (
                filters.from_date is None
                or as_utc(appointment.scheduled_at) >= as_utc(filters.from_date)
            )
            and (
                filters.to_date is None
                or as_utc(appointment.scheduled_at) <= as_utc(filters.to_date)
            )
        ]
        rows.sort(key=lambda appointment: as_utc(appointment.scheduled_at), reverse=True)
        offset = (filters.page - 1) * filters.page_size
        return len(rows), rows[offset : offset + filters.page_size]


class MemoryAuditSink:
    """Audit sink staging entries until the unit of work commits."""

    def __init__(self, uow: "MemoryUnitOfWork"):
        """Initialize sink bound to a unit of work."""
        self._uow = uow

    async def append(
        self,
        actor: Actor,
        action: AuditAction,
        appointment_id: UUID | None,
        details: dict[str, Any],
    ) -> None:
        """Stage one audit entry."""
        self._uow.staged_audit.append(
            AuditEntry(
                id=uuid4(),
                user_id=actor.id,
                actor_role=actor.role.value,
                action=action,
                appointment_id=appointment_id,
                details=dict(details),
                user_agent=actor.user_agent or "unknown",
                created_at=datetime.now(UTC),
            )
        )

    async def search(self, filters: AuditLogFilters) -> tuple[int, list[AuditEntry]]:
        """List committed audit entries matching ``filters``, newest first."""
        rows = [
            entry
            for entry in reversed(self._uow.store.audit_entries)
            if (filters.appointment_id is None or entry.appointment_id == filters.appointment_id)
            and (filters.user_id is None or entry.user_id == filters.user_id)
            and (filters.action is None or entry.action == filters.action)
        ]
        offset = (filters.page - 1) * filters.page_size
        return len(rows), rows[offset : offset + filters.page_size]


class MemoryUnitOfWork:
    """Unit of work over a MemoryStore."""

    def __init__(self, store: MemoryStore):
        """Initialize with the backing store."""
        self.store = store
        self.staged: dict[UUID, Any] = {}
        self.staged_audit: list[AuditEntry] = []
        self._held: list[asyncio.Lock] = []
        self.appointments = MemoryAppointmentRepository(self)
        self.audit = MemoryAuditSink(self)

    async def __aenter__(self) -> "MemoryUnitOfWork":
        """Start the unit of work."""
        self.staged.clear()
        self.staged_audit.clear()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Discard staged writes and release held locks."""
        self.staged.clear()
        self.staged_audit.clear()
        while self._held:
            self._held.pop().release()

    async def acquire(self, lock: asyncio.Lock) -> None:
        """Acquire ``lock`` for the rest of the unit of work."""
        if lock in self._held:
            return
        await lock.acquire()
        self._held.append(lock)

    async def lock_doctor(self, doctor_id: UUID) -> None:
        """Hold the doctor's calendar lock until the unit of work ends."""
        await self.acquire(self.store.doctor_lock(doctor_id))

    async def patient_name(self, patient_id: UUID) -> str | None:
        """Look up a patient's display name."""
        return self.store.patient_names.get(patient_id)

    async def commit(self) -> None:
        """Apply staged writes and audit entries together."""
        for appointment_id, staged in self.staged.items():
            if staged is _DELETED:
                self.store.appointments.pop(appointment_id, None)
            else:
                self.store.appointments[appointment_id] = staged
        self.store.audit_entries.extend(self.staged_audit)
        self.staged.clear()
        self.staged_audit.clear()
