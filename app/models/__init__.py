"""Database models."""

from app.models.appointments import appointments, metadata
from app.models.audit_logs import audit_logs
from app.models.patients import patients

__all__ = [
    "appointments",
    "audit_logs",
    "metadata",
    "patients",
]
