"""Audit log endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AuditLogs, CurrentActor
from app.schemas.audit import AuditAction, AuditLogFilters, AuditLogListResponse

router = APIRouter()


@router.get(
    "/",
    response_model=AuditLogListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Audit"],
    summary="List audit log entries",
)
async def list_audit_logs(
    actor: CurrentActor,
    service: AuditLogs,
    appointment_id: UUID | None = Query(None),
    user_id: str | None = Query(None),
    action: AuditAction | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> AuditLogListResponse:
    """
    List audit entries, newest first.

    Args:
        actor: Authenticated actor
        service: Audit log service
        appointment_id: Filter by appointment
        user_id: Filter by acting user
        action: Filter by action
        page: Page number
        page_size: Items per page

    Returns:
        Paginated audit entries
    """
    filters = AuditLogFilters(
        appointment_id=appointment_id,
        user_id=user_id,
        action=action,
        page=page,
        page_size=page_size,
    )
    return await service.list_entries(actor, filters)
