"""Refund tier resolution and tier maintenance."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models import CancellationPolicyTier, ReservationType
from app.services import cancellation_policy_service

pytestmark = pytest.mark.asyncio

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)


def _tier(hours: int, refund: int, reservation_type: ReservationType | None = None):
    return CancellationPolicyTier(
        reservation_type=reservation_type,
        min_hours_before=hours,
        refund_percentage=refund,
    )


async def test_hours_until_start_truncates_and_floors_at_zero() -> None:
    hours = cancellation_policy_service.hours_until_start
    assert hours(NOW + timedelta(hours=5, minutes=59), NOW) == 5
    assert hours(NOW + timedelta(hours=24), NOW) == 24
    assert hours(NOW - timedelta(minutes=1), NOW) == 0
    # naive timestamps are read as UTC
    assert hours((NOW + timedelta(hours=3)).replace(tzinfo=None), NOW) == 3


async def test_highest_met_threshold_wins() -> None:
    tiers = [_tier(48, 100), _tier(24, 50), _tier(0, 0)]
    select = cancellation_policy_service.select_refund_percentage
    assert select(tiers, reservation_type=ReservationType.GAME, hours_before_start=72) == 100
    assert select(tiers, reservation_type=ReservationType.GAME, hours_before_start=48) == 100
    assert select(tiers, reservation_type=ReservationType.GAME, hours_before_start=30) == 50
    assert select(tiers, reservation_type=ReservationType.GAME, hours_before_start=2) == 0


async def test_no_matching_tier_refunds_in_full() -> None:
    tiers = [_tier(24, 50)]
    assert (
        cancellation_policy_service.select_refund_percentage(
            tiers, reservation_type=ReservationType.GAME, hours_before_start=3
        )
        == 100
    )
    assert (
        cancellation_policy_service.select_refund_percentage(
            [], reservation_type=None, hours_before_start=0
        )
        == 100
    )


async def test_type_specific_tiers_take_priority_over_general() -> None:
    tiers = [
        _tier(24, 100),
        _tier(0, 50),
        _tier(12, 25, ReservationType.PRO_SESSION),
    ]
    select = cancellation_policy_service.select_refund_percentage
    assert select(tiers, reservation_type=ReservationType.PRO_SESSION, hours_before_start=30) == 25
    # falls back to general tiers when no typed tier is met
    assert select(tiers, reservation_type=ReservationType.PRO_SESSION, hours_before_start=6) == 50
    assert select(tiers, reservation_type=ReservationType.GAME, hours_before_start=30) == 100

    same_threshold = [_tier(24, 50, ReservationType.PRO_SESSION), _tier(24, 80)]
    assert (
        select(same_threshold, reservation_type=ReservationType.PRO_SESSION, hours_before_start=30)
        == 50
    )


async def test_resolve_reads_facility_tiers(seeded) -> None:
    facility_id = seeded["facility_id"]
    async with seeded["sessionmaker"]() as session:
        await cancellation_policy_service.create_tier(
            session,
            facility_id=facility_id,
            reservation_type=None,
            min_hours_before=24,
            refund_percentage=100,
        )
        await cancellation_policy_service.create_tier(
            session,
            facility_id=facility_id,
            reservation_type=None,
            min_hours_before=0,
            refund_percentage=50,
        )
        await cancellation_policy_service.create_tier(
            session,
            facility_id=facility_id,
            reservation_type=ReservationType.CLINIC,
            min_hours_before=0,
            refund_percentage=0,
        )

        game = await cancellation_policy_service.resolve_refund_percentage(
            session,
            facility_id=facility_id,
            reservation_type=ReservationType.GAME,
            hours_before_start=5,
        )
        clinic = await cancellation_policy_service.resolve_refund_percentage(
            session,
            facility_id=facility_id,
            reservation_type=ReservationType.CLINIC,
            hours_before_start=5,
        )
        early = await cancellation_policy_service.resolve_refund_percentage(
            session,
            facility_id=facility_id,
            reservation_type=ReservationType.GAME,
            hours_before_start=36,
        )
        tiers = await cancellation_policy_service.list_tiers(session, facility_id=facility_id)

    assert (game, clinic, early) == (50, 0, 100)
    assert [tier.min_hours_before for tier in tiers][0] == 24


async def test_tier_validation_and_uniqueness(seeded) -> None:
    facility_id = seeded["facility_id"]
    async with seeded["sessionmaker"]() as session:
        with pytest.raises(ValidationError):
            await cancellation_policy_service.create_tier(
                session,
                facility_id=facility_id,
                reservation_type=None,
                min_hours_before=12,
                refund_percentage=150,
            )
        with pytest.raises(ValidationError):
            await cancellation_policy_service.create_tier(
                session,
                facility_id=facility_id,
                reservation_type=None,
                min_hours_before=-1,
                refund_percentage=50,
            )

        tier = await cancellation_policy_service.create_tier(
            session,
            facility_id=facility_id,
            reservation_type=None,
            min_hours_before=12,
            refund_percentage=75,
        )
        with pytest.raises(ConflictError) as excinfo:
            await cancellation_policy_service.create_tier(
                session,
                facility_id=facility_id,
                reservation_type=None,
                min_hours_before=12,
                refund_percentage=10,
            )
        assert excinfo.value.code == "cancellation_tier_exists"

        # same threshold is fine for a different reservation type
        await cancellation_policy_service.create_tier(
            session,
            facility_id=facility_id,
            reservation_type=ReservationType.GAME,
            min_hours_before=12,
            refund_percentage=10,
        )

        updated = await cancellation_policy_service.update_tier(
            session, facility_id=facility_id, tier_id=tier.id, refund_percentage=60
        )
        assert updated.refund_percentage == 60

        await cancellation_policy_service.delete_tier(
            session, facility_id=facility_id, tier_id=tier.id
        )
        with pytest.raises(NotFoundError):
            await cancellation_policy_service.get_tier(
                session, facility_id=facility_id, tier_id=tier.id
            )
