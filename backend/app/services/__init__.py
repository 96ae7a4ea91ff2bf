"""Service layer exports."""
from app.services import (
    audit_service,
    availability_service,
    cancellation_policy_service,
    notifications_service,
    package_service,
    waitlist_service,
    reservation_service,
    open_play_service,
    clinic_service,
)

__all__ = [
    "audit_service",
    "availability_service",
    "cancellation_policy_service",
    "clinic_service",
    "notifications_service",
    "open_play_service",
    "package_service",
    "reservation_service",
    "waitlist_service",
]
