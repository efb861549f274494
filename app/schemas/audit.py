"""Audit log schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Audited appointment actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    UPDATE_STATUS = "UPDATE_STATUS"
    DELETE_APPOINTMENT = "DELETE_APPOINTMENT"


class AuditEntry(BaseModel):
    """A single immutable audit record."""

    id: UUID
    user_id: str
    actor_role: str
    action: AuditAction
    appointment_id: UUID | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    user_agent: str = "unknown"
    created_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class AuditLogFilters(BaseModel):
    """Schema for audit log filtering."""

    appointment_id: UUID | None = None
    user_id: str | None = None
    action: AuditAction | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list response."""

    total: int
    page: int
    page_size: int
    items: list[AuditEntry]
