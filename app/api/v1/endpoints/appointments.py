"""Appointment endpoints."""

from datetime import datetime
from typing import TypeVar
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.exceptions import BadRequestException, Rejection
from app.dependencies import CurrentActor, Scheduling
from app.schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentStatus,
    AppointmentStatusUpdate,
)

router = APIRouter()

T = TypeVar("T")


def _unwrap(result: T | Rejection) -> T:
    """Raise the mapped application exception for a rejection."""
    if isinstance(result, Rejection):
        raise result.to_exception()
    return result


def _parse_date(value: str | None, name: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise BadRequestException(f"Invalid {name}: {value!r}", code="INVALID_INPUT")


@router.post(
    "/",
    response_model=Appointment,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    actor: CurrentActor,
    service: Scheduling,
) -> Appointment:
    """
    Book an appointment on a doctor's calendar.

    Args:
        data: Appointment booking data
        actor: Authenticated actor
        service: Scheduling service

    Returns:
        Created appointment
    """
    return _unwrap(
        await service.book(
            actor,
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            scheduled_at=data.scheduled_at,
            duration_minutes=data.duration_minutes,
            notes=data.notes,
        )
    )


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: Scheduling,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: str | None = Query(None),
    to_date: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        actor: Authenticated actor
        service: Scheduling service
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID
        from_date: Filter by earliest start
        to_date: Filter by latest start
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        from_date=_parse_date(from_date, "from_date"),
        to_date=_parse_date(to_date, "to_date"),
        page=page,
        page_size=page_size,
    )
    return _unwrap(await service.list_appointments(actor, filters))


@router.get(
    "/{appointment_id}",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Scheduling,
) -> Appointment:
    """Get a specific appointment by ID."""
    return _unwrap(await service.get(actor, appointment_id))


@router.put(
    "/{appointment_id}",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    actor: CurrentActor,
    service: Scheduling,
) -> Appointment:
    """
    Edit an appointment's time, doctor, patient, duration or notes.

    Args:
        appointment_id: Appointment ID
        data: Fields to change; omitted fields keep their value, null notes clears them
        actor: Authenticated actor
        service: Scheduling service

    Returns:
        Updated appointment
    """
    return _unwrap(
        await service.reschedule(actor, appointment_id, **data.model_dump(exclude_unset=True))
    )


@router.patch(
    "/{appointment_id}/status",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    actor: CurrentActor,
    service: Scheduling,
) -> Appointment:
    """Move an appointment to a new status (e.g., confirm, cancel, complete)."""
    return _unwrap(await service.change_status(actor, appointment_id, data.status))


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Scheduling,
) -> None:
    """Permanently delete an appointment. Requires the delete permission."""
    rejection = await service.remove(actor, appointment_id)
    if rejection is not None:
        raise rejection.to_exception()
