"""Audit log read access."""

import structlog

from app.core.exceptions import ForbiddenException, StoreUnavailableException
from app.core.permissions import PermissionPolicy
from app.schemas.actors import Actor
from app.schemas.audit import AuditLogFilters, AuditLogListResponse
from app.services.appointment_store import StoreError, UnitOfWorkFactory

logger = structlog.get_logger()


class AuditLogService:
    """Service for browsing the audit trail. Never used for scheduling decisions."""

    def __init__(self, uow_factory: UnitOfWorkFactory, policy: PermissionPolicy):
        """Initialize service with a unit of work factory and permission policy."""
        self._uow_factory = uow_factory
        self.policy = policy

    async def list_entries(self, actor: Actor, filters: AuditLogFilters) -> AuditLogListResponse:
        """
        List audit entries with filtering and pagination.

        Args:
            actor: Calling actor, needs ``audit:read``
            filters: Filter and pagination parameters

        Returns:
            Paginated audit entries

        Raises:
            ForbiddenException: If the actor may not read the audit log
            StoreUnavailableException: If the store fails
        """
        if not self.policy.authorize(actor.role, "read", resource="audit"):
            raise ForbiddenException("Not allowed to read audit logs", code="FORBIDDEN")

        try:
            async with self._uow_factory() as uow:
                total, items = await uow.audit.search(filters)
        except StoreError as e:
            logger.error("audit_log_store_unavailable", error=str(e))
            raise StoreUnavailableException(
                "Audit store is unavailable", code="STORE_UNAVAILABLE"
            ) from e

        return AuditLogListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )
