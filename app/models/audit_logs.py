"""Audit log table using SQLAlchemy Core."""

from sqlalchemy import Column, Index, Table, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from app.models.appointments import metadata

# Append-only. appointment_id has no foreign key so entries outlive deleted rows.
audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("user_id", Text, nullable=False),
    Column("actor_role", Text, nullable=False),
    Column("action", Text, nullable=False),
    Column("appointment_id", UUID(as_uuid=True), nullable=True),
    Column("details", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("user_agent", Text, nullable=False, server_default=text("'unknown'")),
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Index("idx_audit_logs_appointment_id", "appointment_id"),
    Index("idx_audit_logs_user_id", "user_id"),
)
