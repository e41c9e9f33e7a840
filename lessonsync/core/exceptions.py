# lessonsync/core/exceptions.py
"""
Domain-specific exceptions for the lesson scheduling core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Calendar / scheduling exceptions


class ConfigurationError(ServiceException):
    """Raised when the calendar integration is required but not configured."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "Calendar integration is not configured",
            code="CALENDAR_NOT_CONFIGURED",
            details=details,
        )


class UpstreamError(ServiceException):
    """
    Raised when the external calendar is unreachable or answers with an error.

    Availability and conflict checks surface this to the caller instead of
    treating the calendar as empty.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = upstream_status
        super().__init__(
            message=message or "External calendar request failed",
            code="CALENDAR_UPSTREAM_ERROR",
            details=merged,
        )
        self.upstream_status = upstream_status


class InvalidDataError(ValidationException):
    """Raised when a timestamp or interval from an external source cannot be used."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_DATA", details=details)


class SlotConflictError(ConflictException):
    """Raised when a requested slot collides with existing busy time."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        conflict_start: Optional[datetime] = None,
        conflict_end: Optional[datetime] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if conflict_start is not None:
            merged["conflict_start"] = conflict_start.isoformat()
        if conflict_end is not None:
            merged["conflict_end"] = conflict_end.isoformat()
        super().__init__(
            message=message or "Selected time is no longer available",
            code="SLOT_CONFLICT",
            details=merged,
        )
        self.conflict_start = conflict_start
        self.conflict_end = conflict_end


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
