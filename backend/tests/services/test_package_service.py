"""Prepaid package purchase, redemption and reversal."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import PackageUnavailableError, PermissionDeniedError, ValidationError
from app.models import (
    Court,
    Facility,
    Organization,
    PackageKind,
    PackageRedemption,
    PackageStatus,
    PrepaidPackage,
    ReservationType,
    User,
)
from app.services import package_service, reservation_service
from app.services.court_locks import CourtLockRegistry

pytestmark = pytest.mark.asyncio

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)
SLOT_START = NOW + timedelta(hours=20)


async def _buy(seeded, *, kind=PackageKind.VISIT, units=3, valid_days=30, user_key="member_id"):
    async with seeded["sessionmaker"]() as session:
        package_type = await package_service.create_package_type(
            session,
            facility_id=seeded["facility_id"],
            kind=kind,
            name=f"{units} {kind.value} pack",
            unit_count=units,
            valid_days=valid_days,
        )
        return await package_service.purchase_package(
            session, package_type_id=package_type.id, user_id=seeded[user_key], now=NOW
        )


async def _book_with_package(
    seeded,
    package_id,
    *,
    locks=None,
    court_index=0,
    reservation_type=ReservationType.GAME,
    start_at=SLOT_START,
):
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        return await reservation_service.create_reservation(
            session,
            locks=locks or CourtLockRegistry(),
            facility_id=seeded["facility_id"],
            created_by=member,
            reservation_type=reservation_type,
            start_at=start_at,
            end_at=start_at + timedelta(hours=1),
            court_ids=[seeded["court_ids"][court_index]],
            package_id=package_id,
            now=NOW,
        )


async def _cancel(seeded, reservation_id, now=NOW):
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        return await reservation_service.cancel_reservation(
            session, reservation_id=reservation_id, actor=member, now=now
        )


async def _package(seeded, package_id) -> PrepaidPackage:
    async with seeded["sessionmaker"]() as session:
        return await package_service.get_package(session, package_id)


async def _redemption_count(seeded, package_id) -> int:
    async with seeded["sessionmaker"]() as session:
        result = await session.execute(
            select(func.count())
            .select_from(PackageRedemption)
            .where(PackageRedemption.package_id == package_id)
        )
        return result.scalar_one()


async def test_purchase_sets_balance_and_expiry(seeded) -> None:
    package = await _buy(seeded, units=5, valid_days=60)
    assert package.units_remaining == 5
    assert package.status == PackageStatus.ACTIVE
    assert package.expires_at.replace(tzinfo=UTC) == NOW + timedelta(days=60)

    async with seeded["sessionmaker"]() as session:
        with pytest.raises(ValidationError):
            await package_service.create_package_type(
                session,
                facility_id=seeded["facility_id"],
                kind=PackageKind.LESSON,
                name="Empty",
                unit_count=0,
                valid_days=10,
            )


async def test_booking_redeems_and_cancellation_restores(seeded) -> None:
    package = await _buy(seeded)
    reservation = await _book_with_package(seeded, package.id)

    assert (await _package(seeded, package.id)).units_remaining == 2
    assert await _redemption_count(seeded, package.id) == 1

    outcome = await _cancel(seeded, reservation.id)
    assert outcome.redemptions_restored == 1
    restored = await _package(seeded, package.id)
    assert restored.units_remaining == 3
    assert restored.status == PackageStatus.ACTIVE
    assert await _redemption_count(seeded, package.id) == 0


async def test_reversal_never_exceeds_original_count(seeded) -> None:
    package = await _buy(seeded)
    reservation = await _book_with_package(seeded, package.id)

    async with seeded["sessionmaker"]() as session:
        record = await session.get(PrepaidPackage, package.id)
        record.units_remaining = record.unit_count
        await session.commit()

    outcome = await _cancel(seeded, reservation.id)
    assert outcome.redemptions_restored == 0
    assert (await _package(seeded, package.id)).units_remaining == 3
    assert await _redemption_count(seeded, package.id) == 1


async def test_expired_packages_are_not_restored(seeded) -> None:
    package = await _buy(seeded, valid_days=1)
    reservation = await _book_with_package(seeded, package.id)

    async with seeded["sessionmaker"]() as session:
        expired = await package_service.expire_packages(
            session, now=NOW + timedelta(days=1, minutes=1)
        )
    assert expired == 1

    outcome = await _cancel(seeded, reservation.id, now=NOW + timedelta(hours=2))
    assert outcome.redemptions_restored == 0
    refreshed = await _package(seeded, package.id)
    assert refreshed.status == PackageStatus.EXPIRED
    assert refreshed.units_remaining == 2


async def test_last_unit_depletes_package(seeded) -> None:
    package = await _buy(seeded, units=1)
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        await package_service.redeem_for_user(
            session,
            package_id=package.id,
            user=member,
            facility_id=seeded["facility_id"],
            now=NOW,
        )
        depleted = await package_service.get_package(session, package.id)
        await session.refresh(depleted)
        assert depleted.units_remaining == 0
        assert depleted.status == PackageStatus.DEPLETED

        with pytest.raises(PackageUnavailableError):
            await package_service.redeem_for_user(
                session,
                package_id=package.id,
                user=member,
                facility_id=seeded["facility_id"],
                now=NOW,
            )


async def test_expired_package_cannot_be_redeemed(seeded) -> None:
    package = await _buy(seeded, valid_days=1)
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        with pytest.raises(PackageUnavailableError):
            await package_service.redeem_for_user(
                session,
                package_id=package.id,
                user=member,
                facility_id=seeded["facility_id"],
                now=NOW + timedelta(days=2),
            )


async def test_failed_redemption_rolls_back_the_booking(seeded) -> None:
    package = await _buy(seeded, units=1)
    await _book_with_package(seeded, package.id)

    with pytest.raises(PackageUnavailableError):
        await _book_with_package(seeded, package.id, court_index=1)

    async with seeded["sessionmaker"]() as session:
        mine = await reservation_service.list_reservations(
            session, facility_id=seeded["facility_id"], user_id=seeded["member_id"]
        )
    assert len(mine) == 1


async def test_visit_packs_respect_membership_level(seeded) -> None:
    visit_pack = await _buy(seeded, kind=PackageKind.VISIT)
    lesson_pack = await _buy(seeded, kind=PackageKind.LESSON)
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        member.membership_level = 2
        await session.commit()

        with pytest.raises(PackageUnavailableError):
            await package_service.check_redemption_eligibility(
                session,
                package=await package_service.get_package(session, visit_pack.id),
                user=member,
                facility_id=seeded["facility_id"],
            )
        await package_service.check_redemption_eligibility(
            session,
            package=await package_service.get_package(session, lesson_pack.id),
            user=member,
            facility_id=seeded["facility_id"],
        )

        other = await session.get(User, seeded["other_member_id"])
        with pytest.raises(PermissionDeniedError):
            await package_service.check_redemption_eligibility(
                session,
                package=await package_service.get_package(session, lesson_pack.id),
                user=other,
                facility_id=seeded["facility_id"],
            )


async def test_cross_facility_redemption_requires_organization_opt_in(seeded) -> None:
    package = await _buy(seeded)
    async with seeded["sessionmaker"]() as session:
        sister = Facility(
            organization_id=seeded["organization_id"],
            name="South Courts",
            slug=f"south-{uuid.uuid4().hex[:8]}",
            timezone="UTC",
        )
        session.add(sister)
        await session.flush()
        session.add(Court(facility_id=sister.id, name="Court 1", court_number=1))

        other_org = Organization(name="Rival Club", slug=f"rival-{uuid.uuid4().hex[:8]}")
        session.add(other_org)
        await session.flush()
        rival = Facility(
            organization_id=other_org.id,
            name="Rival Courts",
            slug=f"rival-courts-{uuid.uuid4().hex[:8]}",
            timezone="UTC",
        )
        session.add(rival)
        await session.commit()
        sister_id, rival_id = sister.id, rival.id

    async def _redeem_at(facility_id):
        async with seeded["sessionmaker"]() as session:
            member = await session.get(User, seeded["member_id"])
            return await package_service.redeem_for_user(
                session, package_id=package.id, user=member, facility_id=facility_id, now=NOW
            )

    with pytest.raises(PackageUnavailableError):
        await _redeem_at(sister_id)

    async with seeded["sessionmaker"]() as session:
        organization = await session.get(Organization, seeded["organization_id"])
        organization.cross_facility_redemption = True
        await session.commit()

    redemption = await _redeem_at(sister_id)
    assert redemption.facility_id == sister_id
    with pytest.raises(PackageUnavailableError):
        await _redeem_at(rival_id)
    assert (await _package(seeded, package.id)).units_remaining == 2


async def test_expire_packages_marks_active_and_depleted(seeded) -> None:
    short = await _buy(seeded, units=1, valid_days=1)
    long = await _buy(seeded, units=1, valid_days=90)
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        await package_service.redeem_for_user(
            session, package_id=short.id, user=member, facility_id=seeded["facility_id"], now=NOW
        )
        assert await package_service.expire_packages(session, now=NOW + timedelta(days=2)) == 1
        assert await package_service.expire_packages(session, now=NOW + timedelta(days=2)) == 0

    assert (await _package(seeded, short.id)).status == PackageStatus.EXPIRED
    assert (await _package(seeded, long.id)).status == PackageStatus.ACTIVE


async def test_package_kind_must_match_the_booking(seeded) -> None:
    lesson_pack = await _buy(seeded, kind=PackageKind.LESSON)
    visit_pack = await _buy(seeded, kind=PackageKind.VISIT)
    lesson_start = NOW + timedelta(days=2)

    with pytest.raises(PackageUnavailableError) as lesson_on_game:
        await _book_with_package(seeded, lesson_pack.id)
    assert lesson_on_game.value.details == {
        "package_kind": "lesson",
        "reservation_type": "game",
    }

    with pytest.raises(PackageUnavailableError):
        await _book_with_package(
            seeded,
            visit_pack.id,
            reservation_type=ReservationType.PRO_SESSION,
            start_at=lesson_start,
        )

    assert (await _package(seeded, lesson_pack.id)).units_remaining == 3
    assert (await _package(seeded, visit_pack.id)).units_remaining == 3
    async with seeded["sessionmaker"]() as session:
        mine = await reservation_service.list_reservations(
            session, facility_id=seeded["facility_id"], user_id=seeded["member_id"]
        )
    assert mine == []

    lesson = await _book_with_package(
        seeded,
        lesson_pack.id,
        reservation_type=ReservationType.PRO_SESSION,
        start_at=lesson_start,
    )
    assert lesson.reservation_type == ReservationType.PRO_SESSION
    assert (await _package(seeded, lesson_pack.id)).units_remaining == 2
