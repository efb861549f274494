"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.core.exceptions import ForbiddenException
from app.core.permissions import Role
from app.core.security import decode_access_token
from app.schemas.actors import Actor
from app.services.appointment_store import SqlUnitOfWork, UnitOfWorkFactory
from app.services.audit_service import AuditLogService
from app.services.memory_store import MemoryStore
from app.services.scheduling_service import SchedulingService

# Security
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """
    Resolve the calling actor from the bearer token.

    Args:
        request: Incoming request, for the user agent
        credentials: Bearer token credentials

    Returns:
        Actor with id and role from the token claims

    Raises:
        HTTPException: If the token is missing, invalid or expired
        ForbiddenException: If the token carries an unknown role
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()

    actor_id = payload.get("sub")
    if actor_id is None or not isinstance(actor_id, str):
        raise _unauthorized()

    try:
        role = Role(str(payload.get("role", "")).upper())
    except ValueError:
        # Authenticated, but no role the clinic policy grants anything to
        raise ForbiddenException("Unknown role", code="FORBIDDEN")

    return Actor(id=actor_id, role=role, user_agent=request.headers.get("user-agent"))


@lru_cache
def get_memory_store() -> MemoryStore:
    """Get the process-wide in-memory store."""
    return MemoryStore()


def get_uow_factory() -> UnitOfWorkFactory:
    """Get the unit of work factory for the configured backend."""
    if settings.uses_memory_store:
        return get_memory_store().unit_of_work

    from app.database import AsyncSessionLocal

    return lambda: SqlUnitOfWork(AsyncSessionLocal, lock_timeout_ms=settings.lock_timeout_ms)


@lru_cache
def get_scheduling_service() -> SchedulingService:
    """Get the shared scheduling service."""
    return SchedulingService(get_uow_factory())


def get_audit_log_service() -> AuditLogService:
    """Get the audit log service sharing the scheduling permission policy."""
    return AuditLogService(get_uow_factory(), get_scheduling_service().policy)


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Scheduling = Annotated[SchedulingService, Depends(get_scheduling_service)]
AuditLogs = Annotated[AuditLogService, Depends(get_audit_log_service)]
