"""Patient directory table using SQLAlchemy Core.

Only the columns the scheduling core reads for audit snapshots.
"""

from sqlalchemy import Column, DateTime, Table, Text, text
from sqlalchemy.dialects.postgresql import UUID

from app.models.appointments import metadata

patients = Table(
    "patients",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("name", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
)
