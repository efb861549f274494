"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Owning parties, validated upstream
    Column("patient_id", UUID(as_uuid=True), nullable=False),
    Column("doctor_id", UUID(as_uuid=True), nullable=False),
    # Slot
    Column("scheduled_at", TIMESTAMP(timezone=True), nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    # Status management
    Column(
        "status",
        Text,
        nullable=False,
        server_default="SCHEDULED",
    ),
    Column("notes", Text, nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
    Index("idx_appointments_doctor_slot", "doctor_id", "scheduled_at"),
    Index("idx_appointments_patient_id", "patient_id"),
)
