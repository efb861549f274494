"""Custom application exceptions and scheduling rejections."""

from dataclasses import dataclass
from enum import Enum


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, code: str | None = None):
        """Initialize exception with message, status code and error code."""
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", code: str | None = None):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, code=code)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized", code: str | None = None):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401, code=code)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden", code: str | None = None):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403, code=code)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request", code: str | None = None):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, code=code)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", code: str | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, code=code)


class StoreUnavailableException(AppException):
    """Backing store failure exception."""

    def __init__(self, message: str = "Store unavailable", code: str | None = None):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500, code=code)


class RejectionKind(str, Enum):
    """Why a scheduling operation was refused."""

    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    APPOINTMENT_LOCKED = "APPOINTMENT_LOCKED"
    SLOT_CONFLICT = "SLOT_CONFLICT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


_REJECTION_EXCEPTIONS: dict[RejectionKind, type[AppException]] = {
    RejectionKind.FORBIDDEN: ForbiddenException,
    RejectionKind.NOT_FOUND: NotFoundException,
    RejectionKind.INVALID_INPUT: BadRequestException,
    RejectionKind.INVALID_TRANSITION: BadRequestException,
    RejectionKind.APPOINTMENT_LOCKED: BadRequestException,
    RejectionKind.SLOT_CONFLICT: ConflictException,
    RejectionKind.STORE_UNAVAILABLE: StoreUnavailableException,
}


@dataclass(frozen=True)
class Rejection:
    """Typed refusal returned by the scheduling service."""

    kind: RejectionKind
    message: str

    @property
    def retryable(self) -> bool:
        """Whether resending the same request unchanged may succeed."""
        return self.kind is RejectionKind.STORE_UNAVAILABLE

    def to_exception(self) -> AppException:
        """Convert into the HTTP-mapped application exception."""
        return _REJECTION_EXCEPTIONS[self.kind](self.message, code=self.kind.value)
