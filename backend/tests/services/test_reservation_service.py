"""Reservation creation rules and the cancellation lifecycle."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from app.core.errors import (
    CancellationConfirmationRequired,
    ConflictError,
    InternalError,
    PermissionDeniedError,
    ReservationLimitError,
    ValidationError,
)
from app.models import (
    Facility,
    ReservationCancellation,
    ReservationStatus,
    ReservationType,
    StaffNotification,
    StaffNotificationType,
    User,
)
from app.services import cancellation_policy_service, reservation_service
from app.services.court_locks import CourtLockRegistry

pytestmark = pytest.mark.asyncio

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)


async def _create(
    seeded,
    *,
    user_id: uuid.UUID,
    start: datetime,
    duration: timedelta = timedelta(hours=1),
    court_index: int = 0,
    reservation_type: ReservationType = ReservationType.GAME,
    locks: CourtLockRegistry | None = None,
    **extra,
):
    async with seeded["sessionmaker"]() as session:
        user = await session.get(User, user_id)
        return await reservation_service.create_reservation(
            session,
            locks=locks or CourtLockRegistry(),
            facility_id=seeded["facility_id"],
            created_by=user,
            reservation_type=reservation_type,
            start_at=start,
            end_at=start + duration,
            court_ids=[seeded["court_ids"][court_index]],
            now=NOW,
            **extra,
        )


async def _cancel(seeded, *, reservation_id, user_id, now=NOW, **extra):
    async with seeded["sessionmaker"]() as session:
        actor = await session.get(User, user_id)
        return await reservation_service.cancel_reservation(
            session, reservation_id=reservation_id, actor=actor, now=now, **extra
        )


async def _partial_refund_policy(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        for hours, refund in ((24, 100), (0, 50)):
            await cancellation_policy_service.create_tier(
                session,
                facility_id=seeded["facility_id"],
                reservation_type=None,
                min_hours_before=hours,
                refund_percentage=refund,
            )


async def test_member_booking_records_member_as_primary_participant(seeded) -> None:
    reservation = await _create(
        seeded,
        user_id=seeded["member_id"],
        start=NOW + timedelta(days=1),
        participant_ids=[seeded["other_member_id"]],
    )
    assert reservation.status == ReservationStatus.ACTIVE
    assert reservation.primary_user_id == seeded["member_id"]
    assert reservation.created_by_user_id == seeded["member_id"]
    assert set(reservation.participant_ids) == {seeded["member_id"], seeded["other_member_id"]}


async def test_member_quota_counts_only_self_booked_future_reservations(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        facility = await session.get(Facility, seeded["facility_id"])
        facility.max_member_reservations = 2
        await session.commit()

    locks = CourtLockRegistry()
    start = NOW + timedelta(days=1)
    await _create(seeded, user_id=seeded["member_id"], start=start, locks=locks)
    await _create(seeded, user_id=seeded["member_id"], start=start, court_index=1, locks=locks)
    # staff booking on the member's behalf is not part of the quota
    await _create(
        seeded,
        user_id=seeded["staff_id"],
        start=start,
        court_index=2,
        primary_user_id=seeded["member_id"],
        locks=locks,
    )

    with pytest.raises(ReservationLimitError) as excinfo:
        await _create(
            seeded, user_id=seeded["member_id"], start=start, court_index=3, locks=locks
        )
    assert excinfo.value.current_count == 2
    assert excinfo.value.limit == 2
    assert excinfo.value.to_http_exception().detail["details"] == {
        "current_count": 2,
        "limit": 2,
    }


async def test_member_booking_window_rules(seeded) -> None:
    member_id = seeded["member_id"]
    with pytest.raises(ValidationError):
        await _create(
            seeded,
            user_id=member_id,
            start=NOW + timedelta(days=1),
            duration=timedelta(minutes=30),
        )
    with pytest.raises(ValidationError):
        await _create(seeded, user_id=member_id, start=NOW + timedelta(days=9))
    with pytest.raises(ValidationError):
        await _create(seeded, user_id=member_id, start=NOW - timedelta(hours=2))
    with pytest.raises(ValidationError):
        await _create(
            seeded,
            user_id=member_id,
            start=NOW + timedelta(hours=3),
            reservation_type=ReservationType.PRO_SESSION,
        )
    with pytest.raises(PermissionDeniedError):
        await _create(
            seeded,
            user_id=member_id,
            start=NOW + timedelta(days=1),
            reservation_type=ReservationType.CLINIC,
        )
    with pytest.raises(PermissionDeniedError):
        await _create(
            seeded,
            user_id=member_id,
            start=NOW + timedelta(days=1),
            primary_user_id=seeded["other_member_id"],
        )


async def test_staff_bypass_member_window(seeded) -> None:
    reservation = await _create(
        seeded,
        user_id=seeded["staff_id"],
        start=NOW + timedelta(days=30),
        duration=timedelta(minutes=30),
        reservation_type=ReservationType.CLINIC,
    )
    assert reservation.reservation_type == ReservationType.CLINIC
    assert reservation.primary_user_id is None


async def test_full_refund_cancels_without_confirmation(seeded) -> None:
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(days=2)
    )
    outcome = await _cancel(
        seeded, reservation_id=reservation.id, user_id=seeded["member_id"]
    )
    assert outcome.refund_percentage == 100
    assert outcome.cancellation.hours_before_start == 48
    assert outcome.released_court_ids == [seeded["court_ids"][0]]
    assert outcome.reservation.status == ReservationStatus.CANCELLED

    with pytest.raises(ConflictError) as excinfo:
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])
    assert excinfo.value.code == "already_cancelled"


async def test_partial_refund_requires_confirmed_quote(seeded) -> None:
    await _partial_refund_policy(seeded)
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(hours=6)
    )

    with pytest.raises(CancellationConfirmationRequired) as excinfo:
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])
    penalty = excinfo.value.penalty
    assert penalty["refund_percentage"] == 50
    assert penalty["fee_percentage"] == 50
    assert penalty["hours_before_start"] == 6
    assert penalty["court_label"] == "Court 1"

    outcome = await _cancel(
        seeded,
        reservation_id=reservation.id,
        user_id=seeded["member_id"],
        quote_id=uuid.UUID(penalty["quote_id"]),
        now=NOW + timedelta(minutes=5),
    )
    assert outcome.refund_percentage == 50
    assert outcome.fee_waived is False

    async with seeded["sessionmaker"]() as session:
        rows = (
            await session.execute(
                select(ReservationCancellation).where(
                    ReservationCancellation.reservation_id == reservation.id
                )
            )
        ).scalars().all()
    assert len(rows) == 1
    assert rows[0].refund_percentage_applied == 50
    assert rows[0].hours_before_start == 5


async def test_stale_quote_is_reissued(seeded) -> None:
    await _partial_refund_policy(seeded)
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(hours=6)
    )
    with pytest.raises(CancellationConfirmationRequired) as first:
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])

    with pytest.raises(CancellationConfirmationRequired) as second:
        await _cancel(
            seeded,
            reservation_id=reservation.id,
            user_id=seeded["member_id"],
            quote_id=uuid.UUID(first.value.penalty["quote_id"]),
            now=NOW + timedelta(minutes=11),
        )
    assert second.value.penalty["quote_id"] != first.value.penalty["quote_id"]

    async with seeded["sessionmaker"]() as session:
        still_active = await reservation_service.get_reservation(
            session, reservation_id=reservation.id
        )
    assert still_active.status == ReservationStatus.ACTIVE


async def test_quote_is_rejected_after_policy_change(seeded) -> None:
    await _partial_refund_policy(seeded)
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(hours=6)
    )
    with pytest.raises(CancellationConfirmationRequired) as first:
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])

    async with seeded["sessionmaker"]() as session:
        tiers = await cancellation_policy_service.list_tiers(
            session, facility_id=seeded["facility_id"]
        )
        zero_tier = next(tier for tier in tiers if tier.min_hours_before == 0)
        await cancellation_policy_service.update_tier(
            session,
            facility_id=seeded["facility_id"],
            tier_id=zero_tier.id,
            refund_percentage=25,
        )

    with pytest.raises(CancellationConfirmationRequired) as second:
        await _cancel(
            seeded,
            reservation_id=reservation.id,
            user_id=seeded["member_id"],
            quote_id=uuid.UUID(first.value.penalty["quote_id"]),
            now=NOW + timedelta(minutes=1),
        )
    assert second.value.penalty["refund_percentage"] == 25


async def test_quote_is_rejected_when_time_crosses_a_tier_boundary(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        for hours, refund in ((48, 100), (24, 75), (0, 50)):
            await cancellation_policy_service.create_tier(
                session,
                facility_id=seeded["facility_id"],
                reservation_type=None,
                min_hours_before=hours,
                refund_percentage=refund,
            )
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(hours=24, minutes=5)
    )

    with pytest.raises(CancellationConfirmationRequired) as first:
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])
    assert first.value.penalty["refund_percentage"] == 75
    assert first.value.penalty["hours_before_start"] == 24

    # still inside the confirmation window, but now 23h58m before start
    with pytest.raises(CancellationConfirmationRequired) as second:
        await _cancel(
            seeded,
            reservation_id=reservation.id,
            user_id=seeded["member_id"],
            quote_id=uuid.UUID(first.value.penalty["quote_id"]),
            now=NOW + timedelta(minutes=7),
        )
    assert second.value.penalty["refund_percentage"] == 50
    assert second.value.penalty["hours_before_start"] == 23
    assert second.value.penalty["quote_id"] != first.value.penalty["quote_id"]

    outcome = await _cancel(
        seeded,
        reservation_id=reservation.id,
        user_id=seeded["member_id"],
        quote_id=uuid.UUID(second.value.penalty["quote_id"]),
        now=NOW + timedelta(minutes=8),
    )
    assert outcome.refund_percentage == 50


async def test_missing_row_after_commit_is_an_internal_error(seeded, monkeypatch) -> None:
    async def _vanished(session, **kwargs):
        return None

    monkeypatch.setattr(reservation_service, "get_reservation", _vanished)
    with pytest.raises(InternalError):
        await _create(seeded, user_id=seeded["member_id"], start=NOW + timedelta(days=1))


async def test_staff_can_waive_fee_but_members_cannot(seeded) -> None:
    await _partial_refund_policy(seeded)
    reservation = await _create(
        seeded, user_id=seeded["member_id"], start=NOW + timedelta(hours=6)
    )
    with pytest.raises(PermissionDeniedError):
        await _cancel(
            seeded,
            reservation_id=reservation.id,
            user_id=seeded["member_id"],
            waive_fee=True,
        )
    with pytest.raises(PermissionDeniedError):
        await _cancel(
            seeded, reservation_id=reservation.id, user_id=seeded["other_member_id"]
        )

    outcome = await _cancel(
        seeded, reservation_id=reservation.id, user_id=seeded["staff_id"], waive_fee=True
    )
    assert outcome.refund_percentage == 100
    assert outcome.fee_waived is True


async def test_past_reservations_cannot_be_cancelled(seeded) -> None:
    reservation = await _create(
        seeded, user_id=seeded["staff_id"], start=NOW - timedelta(hours=2)
    )
    with pytest.raises(ValidationError):
        await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["staff_id"])


async def test_member_lesson_cancellation_notifies_the_pro(seeded) -> None:
    reservation = await _create(
        seeded,
        user_id=seeded["staff_id"],
        start=NOW + timedelta(days=2),
        reservation_type=ReservationType.PRO_SESSION,
        primary_user_id=seeded["member_id"],
        pro_id=seeded["pro_id"],
    )
    await _cancel(seeded, reservation_id=reservation.id, user_id=seeded["member_id"])

    async with seeded["sessionmaker"]() as session:
        notifications = (
            await session.execute(
                select(StaffNotification).where(
                    StaffNotification.related_reservation_id == reservation.id
                )
            )
        ).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].notification_type == StaffNotificationType.LESSON_CANCELLED
    assert notifications[0].target_staff_id == seeded["pro_id"]
    assert notifications[0].message.startswith("Lesson cancelled: Morgan Tester")
