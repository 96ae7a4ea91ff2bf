"""Domain exceptions raised by the booking core.

Services raise these instead of bare ``ValueError`` so callers can tell a
business rule (validation, conflict) apart from an opaque internal failure.
Each exception knows how to render itself for the HTTP layer.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class DomainError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "domain_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(DomainError):
    """Malformed input; raised before any write happens."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class PermissionDeniedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class ConflictError(DomainError):
    """A business rule blocked the operation; details explain which one."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class AvailabilityConflictError(ConflictError):
    default_code = "court_unavailable"

    def __init__(self, conflicting_court_ids: list[Any], message: str | None = None) -> None:
        self.conflicting_court_ids = list(conflicting_court_ids)
        super().__init__(
            message or "Selected courts are not available for that time",
            details={
                "conflicting_court_ids": [str(court_id) for court_id in self.conflicting_court_ids]
            },
        )


class ReservationLimitError(ConflictError):
    default_code = "reservation_limit_reached"

    def __init__(self, *, current_count: int, limit: int) -> None:
        self.current_count = current_count
        self.limit = limit
        super().__init__(
            f"Reservation limit reached ({current_count}/{limit})",
            details={"current_count": current_count, "limit": limit},
        )


class WaitlistConflictError(ConflictError):
    default_code = "waitlist_conflict"


class PackageUnavailableError(ConflictError):
    default_code = "package_unavailable"


class CancellationConfirmationRequired(ConflictError):
    """Refund is partial; the caller must confirm the quoted penalty."""

    default_code = "cancellation_confirmation_required"

    def __init__(self, penalty: dict[str, Any], message: str | None = None) -> None:
        self.penalty = penalty
        super().__init__(
            message or "Cancellation penalty must be confirmed",
            details=penalty,
        )


class InternalError(DomainError):
    """Storage failure or invariant violation; the unit of work was rolled back."""

    default_code = "internal_error"

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"message": "Internal error", "code": self.code, "details": {}},
        )


__all__ = [
    "AvailabilityConflictError",
    "CancellationConfirmationRequired",
    "ConflictError",
    "DomainError",
    "InternalError",
    "NotFoundError",
    "PackageUnavailableError",
    "PermissionDeniedError",
    "ReservationLimitError",
    "ValidationError",
    "WaitlistConflictError",
]
