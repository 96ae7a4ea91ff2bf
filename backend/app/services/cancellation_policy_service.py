"""Cancellation refund tiers and their resolution."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.timeutils import coerce_utc
from app.models import CancellationPolicyTier, ReservationType

FULL_REFUND_PERCENTAGE = 100


def hours_until_start(start_at: datetime, now: datetime) -> int:
    """Whole hours between ``now`` and the start, truncated and never negative."""
    seconds = (coerce_utc(start_at) - coerce_utc(now)).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 3600)


def select_refund_percentage(
    tiers: Iterable[CancellationPolicyTier],
    *,
    reservation_type: ReservationType | None,
    hours_before_start: int,
) -> int:
    """Pick the refund for ``hours_before_start`` from a facility's tiers.

    Tiers for the reservation type win over type-agnostic tiers; within each
    group the tier with the highest ``min_hours_before`` that is still met
    applies. No matching tier means a full refund.
    """
    tiers = list(tiers)
    groups: list[list[CancellationPolicyTier]] = []
    if reservation_type is not None:
        groups.append([tier for tier in tiers if tier.reservation_type == reservation_type])
    groups.append([tier for tier in tiers if tier.reservation_type is None])

    for group in groups:
        for tier in sorted(group, key=lambda item: item.min_hours_before, reverse=True):
            if tier.min_hours_before <= hours_before_start:
                return max(0, min(FULL_REFUND_PERCENTAGE, tier.refund_percentage))
    return FULL_REFUND_PERCENTAGE


async def list_tiers(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
) -> Sequence[CancellationPolicyTier]:
    result = await session.execute(
        select(CancellationPolicyTier)
        .where(CancellationPolicyTier.facility_id == facility_id)
        .order_by(CancellationPolicyTier.min_hours_before.desc())
    )
    return result.scalars().all()


async def resolve_refund_percentage(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    reservation_type: ReservationType | None,
    hours_before_start: int,
) -> int:
    stmt = select(CancellationPolicyTier).where(
        CancellationPolicyTier.facility_id == facility_id,
        CancellationPolicyTier.min_hours_before <= hours_before_start,
    )
    if reservation_type is None:
        stmt = stmt.where(CancellationPolicyTier.reservation_type.is_(None))
    else:
        stmt = stmt.where(
            (CancellationPolicyTier.reservation_type == reservation_type)
            | CancellationPolicyTier.reservation_type.is_(None)
        )
    result = await session.execute(stmt)
    return select_refund_percentage(
        result.scalars().all(),
        reservation_type=reservation_type,
        hours_before_start=hours_before_start,
    )


def _validate_tier_values(min_hours_before: int, refund_percentage: int) -> None:
    if min_hours_before < 0:
        raise ValidationError("min_hours_before must be zero or greater")
    if not 0 <= refund_percentage <= FULL_REFUND_PERCENTAGE:
        raise ValidationError("refund_percentage must be between 0 and 100")


async def _ensure_unique(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    reservation_type: ReservationType | None,
    min_hours_before: int,
    exclude_tier_id: uuid.UUID | None = None,
) -> None:
    # NULL types never collide under a plain unique constraint
    stmt = select(CancellationPolicyTier.id).where(
        CancellationPolicyTier.facility_id == facility_id,
        CancellationPolicyTier.min_hours_before == min_hours_before,
    )
    if reservation_type is None:
        stmt = stmt.where(CancellationPolicyTier.reservation_type.is_(None))
    else:
        stmt = stmt.where(CancellationPolicyTier.reservation_type == reservation_type)
    if exclude_tier_id is not None:
        stmt = stmt.where(CancellationPolicyTier.id != exclude_tier_id)
    existing = (await session.execute(stmt)).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            "A tier already exists for that reservation type and hour threshold",
            code="cancellation_tier_exists",
        )


async def create_tier(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    reservation_type: ReservationType | None,
    min_hours_before: int,
    refund_percentage: int,
) -> CancellationPolicyTier:
    _validate_tier_values(min_hours_before, refund_percentage)
    await _ensure_unique(
        session,
        facility_id=facility_id,
        reservation_type=reservation_type,
        min_hours_before=min_hours_before,
    )
    tier = CancellationPolicyTier(
        facility_id=facility_id,
        reservation_type=reservation_type,
        min_hours_before=min_hours_before,
        refund_percentage=refund_percentage,
    )
    session.add(tier)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(
            "A tier already exists for that reservation type and hour threshold",
            code="cancellation_tier_exists",
        ) from exc
    await session.refresh(tier)
    return tier


async def get_tier(
    session: AsyncSession, *, facility_id: uuid.UUID, tier_id: uuid.UUID
) -> CancellationPolicyTier:
    tier = await session.get(CancellationPolicyTier, tier_id)
    if tier is None or tier.facility_id != facility_id:
        raise NotFoundError("Cancellation tier not found")
    return tier


async def update_tier(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    tier_id: uuid.UUID,
    min_hours_before: int | None = None,
    refund_percentage: int | None = None,
) -> CancellationPolicyTier:
    tier = await get_tier(session, facility_id=facility_id, tier_id=tier_id)
    next_hours = tier.min_hours_before if min_hours_before is None else min_hours_before
    next_refund = tier.refund_percentage if refund_percentage is None else refund_percentage
    _validate_tier_values(next_hours, next_refund)
    if next_hours != tier.min_hours_before:
        await _ensure_unique(
            session,
            facility_id=facility_id,
            reservation_type=tier.reservation_type,
            min_hours_before=next_hours,
            exclude_tier_id=tier.id,
        )
    tier.min_hours_before = next_hours
    tier.refund_percentage = next_refund
    await session.commit()
    await session.refresh(tier)
    return tier


async def delete_tier(
    session: AsyncSession, *, facility_id: uuid.UUID, tier_id: uuid.UUID
) -> None:
    tier = await get_tier(session, facility_id=facility_id, tier_id=tier_id)
    await session.delete(tier)
    await session.commit()
