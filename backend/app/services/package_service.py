"""Prepaid visit/lesson packages and the redemption ledger."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import case, delete, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    NotFoundError,
    PackageUnavailableError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.timeutils import coerce_utc
from app.models import (
    Facility,
    Organization,
    PackageKind,
    PackageRedemption,
    PackageStatus,
    PackageType,
    PackageTypeStatus,
    PrepaidPackage,
    ReservationType,
    User,
)

logger = logging.getLogger(__name__)

# Visit packs are a pay-per-visit product; higher tiers already include court time.
VISIT_PACK_MAX_MEMBERSHIP_LEVEL = 1

REDEEMABLE_RESERVATION_TYPES: dict[PackageKind, frozenset[ReservationType]] = {
    PackageKind.VISIT: frozenset({ReservationType.GAME, ReservationType.OPEN_PLAY}),
    PackageKind.LESSON: frozenset({ReservationType.PRO_SESSION}),
}

_STATUS_TYPE = PrepaidPackage.__table__.c.status.type


@dataclass(slots=True)
class ReversalSummary:
    """Result of reversing the redemptions tied to one reservation."""

    restored: int = 0
    skipped: int = 0


async def create_package_type(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    kind: PackageKind,
    name: str,
    unit_count: int,
    valid_days: int,
) -> PackageType:
    if unit_count <= 0:
        raise ValidationError("unit_count must be positive")
    if valid_days <= 0:
        raise ValidationError("valid_days must be positive")
    package_type = PackageType(
        facility_id=facility_id,
        kind=kind,
        name=name,
        unit_count=unit_count,
        valid_days=valid_days,
    )
    session.add(package_type)
    await session.commit()
    await session.refresh(package_type)
    return package_type


async def get_package_type(session: AsyncSession, package_type_id: uuid.UUID) -> PackageType:
    package_type = await session.get(PackageType, package_type_id)
    if package_type is None:
        raise NotFoundError("Package type not found")
    return package_type


async def list_package_types(
    session: AsyncSession, *, facility_id: uuid.UUID, kind: PackageKind | None = None
) -> Sequence[PackageType]:
    stmt = (
        select(PackageType)
        .where(
            PackageType.facility_id == facility_id,
            PackageType.status == PackageTypeStatus.ACTIVE,
        )
        .order_by(PackageType.name)
    )
    if kind is not None:
        stmt = stmt.where(PackageType.kind == kind)
    result = await session.execute(stmt)
    return result.scalars().all()


async def purchase_package(
    session: AsyncSession,
    *,
    package_type_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> PrepaidPackage:
    """Issue a package to a member; payment is settled outside this service."""
    now = coerce_utc(now or datetime.now(UTC))
    package_type = await session.get(PackageType, package_type_id)
    if package_type is None or package_type.status != PackageTypeStatus.ACTIVE:
        raise NotFoundError("Package type not available")

    package = PrepaidPackage(
        package_type_id=package_type.id,
        user_id=user_id,
        facility_id=package_type.facility_id,
        kind=package_type.kind,
        unit_count=package_type.unit_count,
        units_remaining=package_type.unit_count,
        purchased_at=now,
        expires_at=now + timedelta(days=package_type.valid_days),
        status=PackageStatus.ACTIVE,
    )
    session.add(package)
    await session.commit()
    await session.refresh(package)
    return package


async def get_package(session: AsyncSession, package_id: uuid.UUID) -> PrepaidPackage:
    package = await session.get(PrepaidPackage, package_id)
    if package is None:
        raise NotFoundError("Package not found")
    return package


async def list_packages_for_user(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    kind: PackageKind | None = None,
    active_only: bool = False,
) -> Sequence[PrepaidPackage]:
    stmt = (
        select(PrepaidPackage)
        .where(PrepaidPackage.user_id == user_id)
        .order_by(PrepaidPackage.expires_at)
    )
    if kind is not None:
        stmt = stmt.where(PrepaidPackage.kind == kind)
    if active_only:
        stmt = stmt.where(PrepaidPackage.status == PackageStatus.ACTIVE)
    result = await session.execute(stmt)
    return result.scalars().all()


async def check_redemption_eligibility(
    session: AsyncSession,
    *,
    package: PrepaidPackage,
    user: User,
    facility_id: uuid.UUID,
    reservation_type: ReservationType | None = None,
) -> None:
    """Apply ownership, product, membership and cross-facility policy before redeeming.

    ``reservation_type`` is omitted for standalone redemptions such as a
    walk-in visit, which are not tied to a booking.
    """
    if package.user_id != user.id:
        raise PermissionDeniedError("Package belongs to another member")
    if (
        reservation_type is not None
        and reservation_type not in REDEEMABLE_RESERVATION_TYPES[package.kind]
    ):
        raise PackageUnavailableError(
            f"A {package.kind.value} package cannot pay for a {reservation_type.value} booking",
            details={
                "package_kind": package.kind.value,
                "reservation_type": reservation_type.value,
            },
        )
    if (
        package.kind == PackageKind.VISIT
        and user.membership_level > VISIT_PACK_MAX_MEMBERSHIP_LEVEL
    ):
        raise PackageUnavailableError(
            "Visit packs are not available for your membership level"
        )
    if package.facility_id == facility_id:
        return

    purchase_facility = await session.get(Facility, package.facility_id)
    target_facility = await session.get(Facility, facility_id)
    if purchase_facility is None or target_facility is None:
        raise PackageUnavailableError("Package is not valid at this facility")
    if purchase_facility.organization_id != target_facility.organization_id:
        raise PackageUnavailableError("Package is not valid at this facility")
    organization = await session.get(Organization, target_facility.organization_id)
    if organization is None or not organization.cross_facility_redemption:
        raise PackageUnavailableError("Package is not valid at this facility")


async def redeem_package(
    session: AsyncSession,
    *,
    package_id: uuid.UUID,
    facility_id: uuid.UUID,
    reservation_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> PackageRedemption:
    """Consume one unit and log the redemption in the caller's transaction.

    The decrement is a single conditional UPDATE, so two concurrent
    redemptions can never drive ``units_remaining`` below zero.
    """
    now = coerce_utc(now or datetime.now(UTC))
    next_remaining = PrepaidPackage.units_remaining - 1
    result = await session.execute(
        update(PrepaidPackage)
        .where(
            PrepaidPackage.id == package_id,
            PrepaidPackage.status == PackageStatus.ACTIVE,
            PrepaidPackage.units_remaining > 0,
            PrepaidPackage.expires_at > now,
        )
        .values(
            units_remaining=next_remaining,
            status=case(
                (next_remaining <= 0, literal(PackageStatus.DEPLETED, _STATUS_TYPE)),
                else_=literal(PackageStatus.ACTIVE, _STATUS_TYPE),
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PackageUnavailableError("Selected package is not available")

    redemption = PackageRedemption(
        package_id=package_id,
        facility_id=facility_id,
        reservation_id=reservation_id,
        redeemed_at=now,
    )
    session.add(redemption)
    await session.flush()
    package = await session.get(PrepaidPackage, package_id)
    if package is not None:
        await session.refresh(package)
    return redemption


async def redeem_for_user(
    session: AsyncSession,
    *,
    package_id: uuid.UUID,
    user: User,
    facility_id: uuid.UUID,
    now: datetime | None = None,
) -> PackageRedemption:
    """Standalone redemption (e.g. a walk-in visit) committed on its own."""
    package = await get_package(session, package_id)
    await check_redemption_eligibility(
        session, package=package, user=user, facility_id=facility_id
    )
    try:
        redemption = await redeem_package(
            session, package_id=package_id, facility_id=facility_id, now=now
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return redemption


async def reverse_redemptions(
    session: AsyncSession,
    *,
    reservation_id: uuid.UUID,
    now: datetime | None = None,
) -> ReversalSummary:
    """Give back units consumed by a cancelled reservation.

    Packages that have expired or are already at their original count are
    skipped and keep their redemption row.
    """
    now = coerce_utc(now or datetime.now(UTC))
    summary = ReversalSummary()
    result = await session.execute(
        select(PackageRedemption, PrepaidPackage)
        .join(PrepaidPackage, PrepaidPackage.id == PackageRedemption.package_id)
        .where(PackageRedemption.reservation_id == reservation_id)
        .order_by(PackageRedemption.redeemed_at)
    )
    for redemption, package in result.all():
        expired = (
            package.status == PackageStatus.EXPIRED
            or coerce_utc(package.expires_at) <= now
        )
        if expired or package.units_remaining >= package.unit_count:
            logger.debug(
                "Skipping reversal for package %s (expired=%s remaining=%s/%s)",
                package.id,
                expired,
                package.units_remaining,
                package.unit_count,
            )
            summary.skipped += 1
            continue
        restored = await session.execute(
            update(PrepaidPackage)
            .where(
                PrepaidPackage.id == package.id,
                PrepaidPackage.units_remaining < PrepaidPackage.unit_count,
            )
            .values(
                units_remaining=PrepaidPackage.units_remaining + 1,
                status=PackageStatus.ACTIVE,
            )
            .execution_options(synchronize_session=False)
        )
        if restored.rowcount != 1:
            summary.skipped += 1
            continue
        await session.execute(
            delete(PackageRedemption).where(PackageRedemption.id == redemption.id)
        )
        await session.refresh(package)
        summary.restored += 1
    await session.flush()
    return summary


async def expire_packages(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Mark active or depleted packages past their expiry as expired."""
    now = coerce_utc(now or datetime.now(UTC))
    result = await session.execute(
        update(PrepaidPackage)
        .where(
            PrepaidPackage.status.in_([PackageStatus.ACTIVE, PackageStatus.DEPLETED]),
            PrepaidPackage.expires_at <= now,
        )
        .values(status=PackageStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount or 0
