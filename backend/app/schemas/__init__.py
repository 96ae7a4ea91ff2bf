"""Schema exports."""

from app.schemas.cancellation import (
    CancellationRead,
    CancellationRequest,
    CancellationTierCreate,
    CancellationTierRead,
    CancellationTierUpdate,
)
from app.schemas.clinic import ClinicSchedule, ClinicTypeCreate, ClinicTypeRead
from app.schemas.notification import StaffNotificationRead
from app.schemas.open_play import (
    AuditLogRead,
    AutoScaleToggle,
    EnforcementRunRead,
    OpenPlayRuleCreate,
    OpenPlayRuleRead,
    OpenPlayRuleUpdate,
    OpenPlaySessionCreate,
    OpenPlaySessionRead,
    ParticipantChange,
)
from app.schemas.package import (
    PackagePurchase,
    PackageRedeem,
    PackageRedemptionRead,
    PackageTypeCreate,
    PackageTypeRead,
    PrepaidPackageRead,
)
from app.schemas.reservation import (
    AvailabilityQuery,
    AvailabilityRead,
    FreeCourtRead,
    ReservationCreate,
    ReservationRead,
)
from app.schemas.waitlist import (
    WaitlistConfigRead,
    WaitlistConfigUpdate,
    WaitlistEntryDetail,
    WaitlistEntryRead,
    WaitlistJoin,
    WaitlistOfferRead,
)

__all__ = [
    "AuditLogRead",
    "AutoScaleToggle",
    "AvailabilityQuery",
    "AvailabilityRead",
    "CancellationRead",
    "CancellationRequest",
    "CancellationTierCreate",
    "CancellationTierRead",
    "CancellationTierUpdate",
    "ClinicSchedule",
    "ClinicTypeCreate",
    "ClinicTypeRead",
    "EnforcementRunRead",
    "FreeCourtRead",
    "OpenPlayRuleCreate",
    "OpenPlayRuleRead",
    "OpenPlayRuleUpdate",
    "OpenPlaySessionCreate",
    "OpenPlaySessionRead",
    "PackagePurchase",
    "PackageRedeem",
    "PackageRedemptionRead",
    "PackageTypeCreate",
    "PackageTypeRead",
    "ParticipantChange",
    "PrepaidPackageRead",
    "ReservationCreate",
    "ReservationRead",
    "StaffNotificationRead",
    "WaitlistConfigRead",
    "WaitlistConfigUpdate",
    "WaitlistEntryDetail",
    "WaitlistEntryRead",
    "WaitlistJoin",
    "WaitlistOfferRead",
]
