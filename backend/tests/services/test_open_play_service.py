"""Open play scheduling, signups and cutoff enforcement."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import delete, select

from app.core.errors import ConflictError, PermissionDeniedError, ValidationError
from app.models import (
    AuditAction,
    OpenPlayRule,
    OpenPlaySession,
    OpenPlaySessionStatus,
    ReservationParticipant,
    ReservationType,
    StaffNotification,
    StaffNotificationType,
    User,
    UserRole,
)
from app.services import (
    audit_service,
    availability_service,
    open_play_service,
    reservation_service,
)
from app.services.court_locks import CourtLockRegistry

pytestmark = pytest.mark.asyncio

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)
SESSION_START = NOW + timedelta(minutes=30)
SESSION_END = SESSION_START + timedelta(hours=2)


async def _schedule(seeded, locks: CourtLockRegistry, **rule_overrides):
    rule_values = {
        "name": "Weeknight Drop-in",
        "min_participants": 4,
        "max_participants_per_court": 8,
        "cancellation_cutoff_minutes": 60,
        "min_courts": 1,
        "max_courts": 4,
    }
    rule_values.update(rule_overrides)
    async with seeded["sessionmaker"]() as session:
        staff = await session.get(User, seeded["staff_id"])
        rule = await open_play_service.create_rule(
            session, facility_id=seeded["facility_id"], **rule_values
        )
        open_play = await open_play_service.schedule_session(
            session,
            locks=locks,
            rule_id=rule.id,
            start_at=SESSION_START,
            end_at=SESSION_END,
            created_by=staff,
            now=NOW - timedelta(days=1),
        )
    return rule, open_play


async def _add_signups(seeded, reservation_id: uuid.UUID, count: int) -> None:
    async with seeded["sessionmaker"]() as session:
        for index in range(count):
            player = User(
                organization_id=seeded["organization_id"],
                email=f"player-{uuid.uuid4().hex[:10]}@example.com",
                first_name="Player",
                last_name=str(index),
                role=UserRole.MEMBER,
            )
            session.add(player)
            await session.flush()
            session.add(ReservationParticipant(reservation_id=reservation_id, user_id=player.id))
        await session.commit()


async def _enforce(seeded, locks, session_id, now=NOW) -> str:
    async with seeded["sessionmaker"]() as session:
        return await open_play_service.enforce_session(
            session, locks=locks, session_id=session_id, now=now
        )


async def _notifications(seeded, session_id):
    async with seeded["sessionmaker"]() as session:
        result = await session.execute(
            select(StaffNotification)
            .where(StaffNotification.related_session_id == session_id)
            .order_by(StaffNotification.created_at)
        )
        return list(result.scalars().all())


async def _audit(seeded, session_id, action=None):
    async with seeded["sessionmaker"]() as session:
        entries = await audit_service.list_for_session(session, open_play_session_id=session_id)
    return [entry for entry in entries if action is None or entry.action == action]


@pytest.mark.parametrize(
    ("signups", "expected"),
    [(6, 1), (12, 2), (20, 3), (35, 4), (0, 1)],
)
async def test_desired_court_count_is_clamped(signups: int, expected: int) -> None:
    rule = OpenPlayRule(max_participants_per_court=8, min_courts=1, max_courts=4)
    assert open_play_service.desired_court_count(signups, rule) == expected


async def test_plan_scale_caps_at_free_courts() -> None:
    rule = OpenPlayRule(max_participants_per_court=8, min_courts=1, max_courts=4)
    decision = open_play_service.plan_scale(signups=35, existing=1, free_courts=1, rule=rule)
    assert decision.desired == 4
    assert decision.target == 2
    assert decision.capped is True

    uncapped = open_play_service.plan_scale(signups=12, existing=1, free_courts=3, rule=rule)
    assert (uncapped.target, uncapped.capped) == (2, False)


async def test_rule_invariants_are_validated(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        with pytest.raises(ValidationError):
            await open_play_service.create_rule(
                session, facility_id=seeded["facility_id"], name="Bad", min_courts=3, max_courts=2
            )
        with pytest.raises(ValidationError):
            await open_play_service.create_rule(
                session,
                facility_id=seeded["facility_id"],
                name="Bad",
                min_participants=10,
                max_participants_per_court=4,
                min_courts=1,
            )
        rule = await open_play_service.create_rule(
            session, facility_id=seeded["facility_id"], name="Morning Social"
        )
        with pytest.raises(ValidationError):
            await open_play_service.update_rule(session, rule_id=rule.id, min_courts=5)
        updated = await open_play_service.update_rule(
            session, rule_id=rule.id, max_courts=6, name="Morning Mixer"
        )
    assert (updated.max_courts, updated.name) == (6, "Morning Mixer")


async def test_schedule_session_books_minimum_courts(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks, min_courts=2, min_participants=4)
    assert open_play.status == OpenPlaySessionStatus.SCHEDULED
    assert open_play.current_court_count == 2
    assert open_play.reservation.reservation_type == ReservationType.OPEN_PLAY
    assert set(open_play.reservation.court_ids) == set(seeded["court_ids"][:2])


async def test_member_signup_rules(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        updated = await open_play_service.add_participant(
            session, session_id=open_play.id, actor=member, now=NOW
        )
        assert updated.reservation.participant_ids == [member.id]

        with pytest.raises(ConflictError) as excinfo:
            await open_play_service.add_participant(
                session, session_id=open_play.id, actor=member, now=NOW
            )
        assert excinfo.value.code == "already_signed_up"

        with pytest.raises(PermissionDeniedError):
            await open_play_service.add_participant(
                session,
                session_id=open_play.id,
                actor=member,
                user_id=seeded["other_member_id"],
                now=NOW,
            )

        removed = await open_play_service.remove_participant(
            session, session_id=open_play.id, actor=member, now=NOW
        )
        assert removed.reservation.participant_ids == []

    actions = [entry.action for entry in await _audit(seeded, open_play.id)]
    assert actions == [AuditAction.PARTICIPANT_ADDED, AuditAction.PARTICIPANT_REMOVED]


async def test_undersubscribed_session_is_cancelled_once(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    await _add_signups(seeded, open_play.reservation_id, 2)

    summary = await open_play_service.run_enforcement_pass(
        seeded["sessionmaker"], locks=locks, now=NOW
    )
    assert summary.evaluated == 1
    assert summary.cancelled == [open_play.id]

    async with seeded["sessionmaker"]() as session:
        cancelled = await open_play_service.get_session(session, session_id=open_play.id)
        freed = await availability_service.check_available(
            session,
            facility_id=seeded["facility_id"],
            court_ids=[seeded["court_ids"][0]],
            start_at=SESSION_START,
            end_at=SESSION_END,
        )
    assert cancelled.status == OpenPlaySessionStatus.CANCELLED
    assert cancelled.cancellation_reason == "Only 2 signups (minimum: 4)"
    assert cancelled.current_court_count == 0
    assert cancelled.reservation.court_ids == []
    assert freed.ok

    audit = await _audit(seeded, open_play.id, AuditAction.CANCELLED)
    notifications = await _notifications(seeded, open_play.id)
    assert len(audit) == 1
    assert audit[0].before_state["signups"] == 2
    assert len(notifications) == 1
    assert notifications[0].notification_type == StaffNotificationType.CANCELLED
    assert notifications[0].message == (
        "Weeknight Drop-in cancelled - only 2 signups (minimum: 4)"
    )

    rerun = await open_play_service.run_enforcement_pass(
        seeded["sessionmaker"], locks=locks, now=NOW + timedelta(minutes=5)
    )
    assert rerun.evaluated == 0
    assert await _enforce(seeded, locks, open_play.id) == "skipped"
    assert len(await _audit(seeded, open_play.id, AuditAction.CANCELLED)) == 1
    assert len(await _notifications(seeded, open_play.id)) == 1


async def test_sessions_outside_cutoff_are_not_evaluated(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks, cancellation_cutoff_minutes=15)
    await _add_signups(seeded, open_play.reservation_id, 1)

    summary = await open_play_service.run_enforcement_pass(
        seeded["sessionmaker"], locks=locks, now=NOW
    )
    assert summary.evaluated == 0


async def test_scale_up_then_idempotent(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    await _add_signups(seeded, open_play.reservation_id, 20)

    assert await _enforce(seeded, locks, open_play.id) == "scaled"
    async with seeded["sessionmaker"]() as session:
        scaled = await open_play_service.get_session(session, session_id=open_play.id)
    assert scaled.current_court_count == 3
    assert set(scaled.reservation.court_ids) == set(seeded["court_ids"][:3])

    notifications = await _notifications(seeded, open_play.id)
    assert [item.notification_type for item in notifications] == [StaffNotificationType.SCALE_UP]
    assert notifications[0].message == (
        "Weeknight Drop-in scaled from 1 to 3 courts - 20 participants"
    )
    audit = await _audit(seeded, open_play.id, AuditAction.SCALE_UP)
    assert audit[0].before_state["current_court_count"] == 1
    assert audit[0].after_state["current_court_count"] == 3

    assert await _enforce(seeded, locks, open_play.id) == "unchanged"
    assert len(await _notifications(seeded, open_play.id)) == 1


async def test_scale_down_releases_highest_numbered_courts(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    await _add_signups(seeded, open_play.reservation_id, 12)
    assert await _enforce(seeded, locks, open_play.id) == "scaled"

    async with seeded["sessionmaker"]() as session:
        signups = (
            await session.execute(
                select(ReservationParticipant.id)
                .where(ReservationParticipant.reservation_id == open_play.reservation_id)
                .limit(6)
            )
        ).scalars().all()
        await session.execute(
            delete(ReservationParticipant).where(ReservationParticipant.id.in_(signups))
        )
        await session.commit()

    assert await _enforce(seeded, locks, open_play.id) == "scaled"
    async with seeded["sessionmaker"]() as session:
        scaled = await open_play_service.get_session(session, session_id=open_play.id)
    assert scaled.current_court_count == 1
    assert scaled.reservation.court_ids == [seeded["court_ids"][0]]

    down = await _audit(seeded, open_play.id, AuditAction.SCALE_DOWN)
    assert len(down) == 1
    assert down[0].before_state["current_court_count"] == 2
    assert down[0].after_state["current_court_count"] == 1
    notifications = await _notifications(seeded, open_play.id)
    assert notifications[-1].notification_type == StaffNotificationType.SCALE_DOWN


async def test_scale_up_is_capped_by_free_courts(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    async with seeded["sessionmaker"]() as session:
        staff = await session.get(User, seeded["staff_id"])
        await reservation_service.create_reservation(
            session,
            locks=locks,
            facility_id=seeded["facility_id"],
            created_by=staff,
            reservation_type=ReservationType.LEAGUE,
            start_at=SESSION_START,
            end_at=SESSION_END,
            court_ids=seeded["court_ids"][1:],
            now=NOW,
        )
    await _add_signups(seeded, open_play.reservation_id, 20)

    assert await _enforce(seeded, locks, open_play.id) == "capped"
    notifications = await _notifications(seeded, open_play.id)
    assert len(notifications) == 1
    assert notifications[0].message == "Weeknight Drop-in capped at 1 courts - 20 participants"
    audit = await _audit(seeded, open_play.id, AuditAction.SCALE_UP)
    assert "availability capped at 1 courts" in audit[0].reason

    assert await _enforce(seeded, locks, open_play.id) == "unchanged"
    assert len(await _notifications(seeded, open_play.id)) == 1


async def test_auto_scale_override_is_audited_and_respected(seeded) -> None:
    locks = CourtLockRegistry()
    rule, open_play = await _schedule(seeded, locks)
    await _add_signups(seeded, open_play.reservation_id, 20)

    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        staff = await session.get(User, seeded["staff_id"])
        with pytest.raises(PermissionDeniedError):
            await open_play_service.toggle_auto_scale_override(
                session, session_id=open_play.id, actor=member
            )
        toggled = await open_play_service.toggle_auto_scale_override(
            session, session_id=open_play.id, actor=staff
        )
    assert toggled.auto_scale_override is False
    assert await _enforce(seeded, locks, open_play.id) == "unchanged"

    async with seeded["sessionmaker"]() as session:
        staff = await session.get(User, seeded["staff_id"])
        await open_play_service.toggle_auto_scale_override(
            session, session_id=open_play.id, actor=staff, disable_for_rule=True
        )
        refreshed_rule = await open_play_service.get_rule(session, rule_id=rule.id)
    assert refreshed_rule.auto_scale_enabled is False

    actions = [entry.action for entry in await _audit(seeded, open_play.id)]
    assert AuditAction.AUTO_SCALE_OVERRIDE in actions
    assert AuditAction.AUTO_SCALE_RULE_DISABLED in actions


async def test_one_failing_session_does_not_block_the_pass(seeded) -> None:
    locks = CourtLockRegistry()
    _, broken = await _schedule(seeded, locks)
    _, healthy = await _schedule(seeded, locks, name="Late Drop-in")
    await _add_signups(seeded, healthy.reservation_id, 1)

    async with seeded["sessionmaker"]() as session:
        record = await session.get(OpenPlaySession, broken.id)
        record.reservation_id = None
        await session.commit()

    summary = await open_play_service.run_enforcement_pass(
        seeded["sessionmaker"], locks=locks, now=NOW
    )
    assert summary.evaluated == 2
    assert summary.failed == [broken.id]
    assert summary.cancelled == [healthy.id]


async def test_signups_close_after_cancellation(seeded) -> None:
    locks = CourtLockRegistry()
    _, open_play = await _schedule(seeded, locks)
    await _enforce(seeded, locks, open_play.id)

    async with seeded["sessionmaker"]() as session:
        member = await session.get(User, seeded["member_id"])
        with pytest.raises(ConflictError) as excinfo:
            await open_play_service.add_participant(
                session, session_id=open_play.id, actor=member, now=NOW
            )
    assert excinfo.value.code == "enrollment_closed"
