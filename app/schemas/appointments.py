"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.calendar import slot_end


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Appointment(BaseModel):
    """A committed appointment."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    scheduled_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def ends_at(self) -> datetime:
        """Exclusive end of the slot."""
        return slot_end(self.scheduled_at, self.duration_minutes)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment.

    ``scheduled_at`` stays a string here; the scheduling service parses it
    so that malformed timestamps are reported as invalid input.
    """

    patient_id: UUID
    doctor_id: UUID
    scheduled_at: str = Field(..., min_length=1)
    duration_minutes: int | None = None
    notes: str | None = Field(None, max_length=2000)


class AppointmentReschedule(BaseModel):
    """Schema for editing an appointment. Omitted fields keep their current value."""

    patient_id: UUID | None = None
    doctor_id: UUID | None = None
    scheduled_at: str | None = None
    duration_minutes: int | None = None
    notes: str | None = Field(None, max_length=2000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[Appointment]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
