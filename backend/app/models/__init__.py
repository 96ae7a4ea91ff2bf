"""ORM models package export."""

from app.models.audit_log import AuditAction, AuditLogEntry
from app.models.cancellation import (
    CancellationPolicyTier,
    CancellationQuote,
    ReservationCancellation,
)
from app.models.clinic import ClinicType
from app.models.facility import Court, CourtStatus, Facility
from app.models.open_play import OpenPlayRule, OpenPlaySession, OpenPlaySessionStatus
from app.models.organization import Organization
from app.models.prepaid_package import (
    PackageKind,
    PackageRedemption,
    PackageStatus,
    PackageType,
    PackageTypeStatus,
    PrepaidPackage,
)
from app.models.reservation import (
    Reservation,
    ReservationCourt,
    ReservationParticipant,
    ReservationStatus,
    ReservationType,
)
from app.models.staff_notification import StaffNotification, StaffNotificationType
from app.models.user import STAFF_ROLES, User, UserRole, UserStatus
from app.models.waitlist import (
    WaitlistConfig,
    WaitlistEntry,
    WaitlistNotificationMode,
    WaitlistOffer,
    WaitlistOfferStatus,
    WaitlistStatus,
)

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "CancellationPolicyTier",
    "CancellationQuote",
    "ClinicType",
    "Court",
    "CourtStatus",
    "Facility",
    "OpenPlayRule",
    "OpenPlaySession",
    "OpenPlaySessionStatus",
    "Organization",
    "PackageKind",
    "PackageRedemption",
    "PackageStatus",
    "PackageType",
    "PackageTypeStatus",
    "PrepaidPackage",
    "Reservation",
    "ReservationCancellation",
    "ReservationCourt",
    "ReservationParticipant",
    "ReservationStatus",
    "ReservationType",
    "STAFF_ROLES",
    "StaffNotification",
    "StaffNotificationType",
    "User",
    "UserRole",
    "UserStatus",
    "WaitlistConfig",
    "WaitlistEntry",
    "WaitlistNotificationMode",
    "WaitlistOffer",
    "WaitlistOfferStatus",
    "WaitlistStatus",
]
