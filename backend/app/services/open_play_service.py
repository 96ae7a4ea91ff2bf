"""Open play rules, sessions and the cutoff enforcement pass.

Near each session's cutoff the enforcement pass either cancels an
under-subscribed session or scales its court allocation to the signup count,
bounded by the rule and by what is actually free. Every decision writes an
audit entry and a staff notification in the same transaction.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.errors import (
    ConflictError,
    DomainError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.timeutils import coerce_utc
from app.models import (
    AuditAction,
    AuditLogEntry,
    Court,
    Facility,
    OpenPlayRule,
    OpenPlaySession,
    OpenPlaySessionStatus,
    Reservation,
    ReservationCourt,
    ReservationParticipant,
    ReservationStatus,
    ReservationType,
    StaffNotificationType,
    User,
)
from app.services import (
    audit_service,
    availability_service,
    notifications_service,
    reservation_service,
)
from app.services.court_locks import CourtLockRegistry, lock_court_rows

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScaleDecision:
    """Court count arithmetic for one session at one instant."""

    signups: int
    existing: int
    desired: int
    target: int
    availability_limit: int
    capped: bool


@dataclass(slots=True)
class EnforcementSummary:
    evaluated: int = 0
    cancelled: list[uuid.UUID] = field(default_factory=list)
    scaled: list[uuid.UUID] = field(default_factory=list)
    capped: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)


def ceil_div(value: int, divisor: int) -> int:
    if divisor <= 0 or value <= 0:
        return 0
    return math.ceil(value / divisor)


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def desired_court_count(signups: int, rule: OpenPlayRule) -> int:
    """``clamp(ceil(signups / per_court), min_courts, max_courts)``."""
    return clamp(
        ceil_div(signups, rule.max_participants_per_court),
        rule.min_courts,
        rule.max_courts,
    )


def plan_scale(
    *, signups: int, existing: int, free_courts: int, rule: OpenPlayRule
) -> ScaleDecision:
    desired = desired_court_count(signups, rule)
    limit = existing + free_courts
    capped = desired > limit
    return ScaleDecision(
        signups=signups,
        existing=existing,
        desired=desired,
        target=limit if capped else desired,
        availability_limit=limit,
        capped=capped,
    )


def _validate_rule_values(
    *,
    min_participants: int,
    max_participants_per_court: int,
    cancellation_cutoff_minutes: int,
    min_courts: int,
    max_courts: int,
) -> None:
    if min_participants <= 0:
        raise ValidationError("min_participants must be greater than zero")
    if max_participants_per_court <= 0:
        raise ValidationError("max_participants_per_court must be greater than zero")
    if cancellation_cutoff_minutes < 0:
        raise ValidationError("cancellation_cutoff_minutes must be zero or greater")
    if min_courts <= 0:
        raise ValidationError("min_courts must be greater than zero")
    if min_courts > max_courts:
        raise ValidationError("min_courts cannot exceed max_courts")
    if min_participants > max_participants_per_court * min_courts:
        raise ValidationError(
            "min_participants cannot exceed max_participants_per_court * min_courts"
        )


async def create_rule(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    name: str,
    min_participants: int = 4,
    max_participants_per_court: int = 8,
    cancellation_cutoff_minutes: int = 60,
    auto_scale_enabled: bool = True,
    min_courts: int = 1,
    max_courts: int = 4,
) -> OpenPlayRule:
    if not name.strip():
        raise ValidationError("Rule name is required")
    _validate_rule_values(
        min_participants=min_participants,
        max_participants_per_court=max_participants_per_court,
        cancellation_cutoff_minutes=cancellation_cutoff_minutes,
        min_courts=min_courts,
        max_courts=max_courts,
    )
    if await session.get(Facility, facility_id) is None:
        raise NotFoundError("Facility not found")
    rule = OpenPlayRule(
        facility_id=facility_id,
        name=name.strip(),
        min_participants=min_participants,
        max_participants_per_court=max_participants_per_court,
        cancellation_cutoff_minutes=cancellation_cutoff_minutes,
        auto_scale_enabled=auto_scale_enabled,
        min_courts=min_courts,
        max_courts=max_courts,
    )
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    return rule


async def get_rule(
    session: AsyncSession, *, rule_id: uuid.UUID, facility_id: uuid.UUID | None = None
) -> OpenPlayRule:
    rule = await session.get(OpenPlayRule, rule_id)
    if rule is None or (facility_id is not None and rule.facility_id != facility_id):
        raise NotFoundError("Open play rule not found")
    return rule


async def list_rules(
    session: AsyncSession, *, facility_id: uuid.UUID
) -> Sequence[OpenPlayRule]:
    result = await session.execute(
        select(OpenPlayRule)
        .where(OpenPlayRule.facility_id == facility_id)
        .order_by(OpenPlayRule.name)
    )
    return result.scalars().all()


async def update_rule(
    session: AsyncSession,
    *,
    rule_id: uuid.UUID,
    facility_id: uuid.UUID | None = None,
    **changes: Any,
) -> OpenPlayRule:
    rule = await get_rule(session, rule_id=rule_id, facility_id=facility_id)
    merged = {
        "min_participants": rule.min_participants,
        "max_participants_per_court": rule.max_participants_per_court,
        "cancellation_cutoff_minutes": rule.cancellation_cutoff_minutes,
        "min_courts": rule.min_courts,
        "max_courts": rule.max_courts,
    }
    for key, value in changes.items():
        if value is None:
            continue
        if key in merged:
            merged[key] = value
        elif key not in {"name", "auto_scale_enabled"}:
            raise ValidationError(f"Unknown rule field: {key}")
    _validate_rule_values(**merged)
    for key, value in changes.items():
        if value is not None:
            setattr(rule, key, value)
    await session.commit()
    await session.refresh(rule)
    return rule


def _session_query():
    return select(OpenPlaySession).options(
        selectinload(OpenPlaySession.rule),
        selectinload(OpenPlaySession.reservation).selectinload(Reservation.court_links),
        selectinload(OpenPlaySession.reservation).selectinload(
            Reservation.participant_links
        ),
    )


async def get_session(
    session: AsyncSession,
    *,
    session_id: uuid.UUID,
    facility_id: uuid.UUID | None = None,
) -> OpenPlaySession:
    stmt = _session_query().where(OpenPlaySession.id == session_id)
    if facility_id is not None:
        stmt = stmt.where(OpenPlaySession.facility_id == facility_id)
    result = await session.execute(stmt.execution_options(populate_existing=True))
    open_play = result.scalars().unique().one_or_none()
    if open_play is None:
        raise NotFoundError("Open play session not found")
    return open_play


async def list_sessions(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    status: OpenPlaySessionStatus | None = None,
    start_after: datetime | None = None,
) -> Sequence[OpenPlaySession]:
    stmt = (
        select(OpenPlaySession)
        .where(OpenPlaySession.facility_id == facility_id)
        .order_by(OpenPlaySession.start_at)
    )
    if status is not None:
        stmt = stmt.where(OpenPlaySession.status == status)
    if start_after is not None:
        stmt = stmt.where(OpenPlaySession.start_at >= coerce_utc(start_after))
    result = await session.execute(stmt)
    return result.scalars().all()


async def schedule_session(
    session: AsyncSession,
    *,
    locks: CourtLockRegistry,
    rule_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    created_by: User,
    now: datetime | None = None,
) -> OpenPlaySession:
    """Book ``min_courts`` free courts for a new session of ``rule_id``."""
    if not created_by.is_staff:
        raise PermissionDeniedError("Only staff can schedule open play")
    now = coerce_utc(now or datetime.now(UTC))
    start_at = coerce_utc(start_at)
    end_at = coerce_utc(end_at)
    if end_at <= start_at:
        raise ValidationError("Session end time must be after start time")
    if start_at <= now:
        raise ValidationError("Session must start in the future")

    rule = await get_rule(session, rule_id=rule_id)
    free = await availability_service.list_free_courts(
        session, facility_id=rule.facility_id, start_at=start_at, end_at=end_at
    )
    if len(free) < rule.min_courts:
        raise ConflictError(
            "Not enough free courts for this open play session",
            code="court_unavailable",
            details={"required": rule.min_courts, "available": len(free)},
        )
    court_ids = [court.id for court in free[: rule.min_courts]]

    created: dict[str, OpenPlaySession] = {}

    async def _attach_session(reservation: Reservation) -> None:
        open_play = OpenPlaySession(
            facility_id=rule.facility_id,
            open_play_rule_id=rule.id,
            reservation_id=reservation.id,
            start_at=start_at,
            end_at=end_at,
            status=OpenPlaySessionStatus.SCHEDULED,
            current_court_count=len(court_ids),
        )
        session.add(open_play)
        await session.flush()
        created["session"] = open_play

    await reservation_service.create_reservation(
        session,
        locks=locks,
        facility_id=rule.facility_id,
        created_by=created_by,
        reservation_type=ReservationType.OPEN_PLAY,
        start_at=start_at,
        end_at=end_at,
        court_ids=court_ids,
        open_play_rule_id=rule.id,
        notes=rule.name,
        before_commit=_attach_session,
        now=now,
    )
    logger.info(
        "Scheduled open play session %s for rule %s on %s court(s)",
        created["session"].id,
        rule.id,
        len(court_ids),
    )
    return await get_session(session, session_id=created["session"].id)


async def count_participants(session: AsyncSession, reservation_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ReservationParticipant)
        .where(ReservationParticipant.reservation_id == reservation_id)
    )
    return int(result.scalar_one())


def _require_scheduled(open_play: OpenPlaySession, now: datetime) -> Reservation:
    if open_play.status != OpenPlaySessionStatus.SCHEDULED:
        raise ConflictError("Open play session is not open for signups", code="enrollment_closed")
    if coerce_utc(open_play.start_at) <= now:
        raise ConflictError("Open play session has already started", code="enrollment_closed")
    reservation = open_play.reservation
    if reservation is None or reservation.status != ReservationStatus.ACTIVE:
        raise ConflictError("Open play session has no active booking", code="enrollment_closed")
    return reservation


def _resolve_participant(actor: User, user_id: uuid.UUID | None) -> uuid.UUID:
    target = user_id or actor.id
    if target != actor.id and not actor.is_staff:
        raise PermissionDeniedError("Members can only sign themselves up")
    return target


async def add_participant(
    session: AsyncSession,
    *,
    session_id: uuid.UUID,
    actor: User,
    user_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> OpenPlaySession:
    now = coerce_utc(now or datetime.now(UTC))
    target = _resolve_participant(actor, user_id)
    open_play = await get_session(session, session_id=session_id)
    reservation = _require_scheduled(open_play, now)
    rule = open_play.rule

    if any(link.user_id == target for link in reservation.participant_links):
        raise ConflictError("Already signed up for this session", code="already_signed_up")
    capacity = rule.max_participants_per_court * rule.max_courts
    if len(reservation.participant_links) >= capacity:
        raise ConflictError(
            "Open play session is full",
            code="enrollment_closed",
            details={"current_count": len(reservation.participant_links), "limit": capacity},
        )
    if await session.get(User, target) is None:
        raise NotFoundError("Member not found")

    reservation.participant_links.append(ReservationParticipant(user_id=target))
    await audit_service.record_event(
        session,
        action=AuditAction.PARTICIPANT_ADDED,
        facility_id=open_play.facility_id,
        user_id=actor.id,
        open_play_session_id=open_play.id,
        after_state={"user_id": str(target), "signups": len(reservation.participant_links)},
    )
    await session.commit()
    return await get_session(session, session_id=session_id)


async def remove_participant(
    session: AsyncSession,
    *,
    session_id: uuid.UUID,
    actor: User,
    user_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> OpenPlaySession:
    now = coerce_utc(now or datetime.now(UTC))
    target = _resolve_participant(actor, user_id)
    open_play = await get_session(session, session_id=session_id)
    reservation = _require_scheduled(open_play, now)

    link = next(
        (link for link in reservation.participant_links if link.user_id == target), None
    )
    if link is None:
        raise NotFoundError("Participant not signed up for this session")
    reservation.participant_links.remove(link)
    await session.flush()
    await audit_service.record_event(
        session,
        action=AuditAction.PARTICIPANT_REMOVED,
        facility_id=open_play.facility_id,
        user_id=actor.id,
        open_play_session_id=open_play.id,
        after_state={"user_id": str(target), "signups": len(reservation.participant_links)},
    )
    await session.commit()
    return await get_session(session, session_id=session_id)


async def _ordered_session_courts(
    session: AsyncSession, reservation_id: uuid.UUID
) -> list[uuid.UUID]:
    result = await session.execute(
        select(ReservationCourt.court_id)
        .join(Court, Court.id == ReservationCourt.court_id)
        .where(ReservationCourt.reservation_id == reservation_id)
        .order_by(Court.court_number)
    )
    return list(result.scalars().all())


async def _last_capped_reason(session: AsyncSession, open_play_id: uuid.UUID) -> str | None:
    result = await session.execute(
        select(AuditLogEntry.reason)
        .where(
            AuditLogEntry.open_play_session_id == open_play_id,
            AuditLogEntry.action.in_([AuditAction.SCALE_UP, AuditAction.SCALE_DOWN]),
        )
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _cancel_undersubscribed(
    session: AsyncSession,
    *,
    open_play: OpenPlaySession,
    reservation: Reservation,
    rule: OpenPlayRule,
    signups: int,
    now: datetime,
) -> None:
    released = await reservation_service.release_courts(session, reservation=reservation)
    reason = f"Only {signups} signups (minimum: {rule.min_participants})"
    before = {
        "status": open_play.status.value,
        "current_court_count": open_play.current_court_count,
        "reserved_courts": len(released),
        "signups": signups,
    }
    open_play.status = OpenPlaySessionStatus.CANCELLED
    open_play.cancelled_at = now
    open_play.cancellation_reason = reason
    open_play.current_court_count = 0
    await audit_service.record_event(
        session,
        action=AuditAction.CANCELLED,
        facility_id=open_play.facility_id,
        open_play_session_id=open_play.id,
        before_state=before,
        after_state={
            "status": OpenPlaySessionStatus.CANCELLED.value,
            "current_court_count": 0,
            "reserved_courts": 0,
            "signups": signups,
        },
        reason=reason,
    )
    await notifications_service.notify(
        session,
        facility_id=open_play.facility_id,
        notification_type=StaffNotificationType.CANCELLED,
        message=(
            f"{rule.name} cancelled - only {signups} signups "
            f"(minimum: {rule.min_participants})"
        ),
        related_session_id=open_play.id,
        related_reservation_id=reservation.id,
    )


async def enforce_session(
    session: AsyncSession,
    *,
    locks: CourtLockRegistry,
    session_id: uuid.UUID,
    now: datetime | None = None,
) -> str:
    """Evaluate one session and commit the decision.

    Returns one of ``skipped``, ``cancelled``, ``scaled``, ``capped`` or
    ``unchanged``. Re-running against an already settled session is a no-op.
    """
    now = coerce_utc(now or datetime.now(UTC))
    open_play = await session.get(OpenPlaySession, session_id)
    if open_play is None:
        raise NotFoundError("Open play session not found")
    facility_courts = await availability_service.list_facility_court_ids(
        session, facility_id=open_play.facility_id
    )

    async with locks.hold(facility_courts):
        try:
            await lock_court_rows(session, facility_courts)
            open_play = await get_session(session, session_id=session_id)
            if open_play.status != OpenPlaySessionStatus.SCHEDULED:
                return "skipped"
            reservation = open_play.reservation
            if reservation is None or reservation.status != ReservationStatus.ACTIVE:
                raise InternalError(f"Open play session {session_id} has no active booking")
            rule = open_play.rule
            signups = len(reservation.participant_links)

            if signups < rule.min_participants:
                await _cancel_undersubscribed(
                    session,
                    open_play=open_play,
                    reservation=reservation,
                    rule=rule,
                    signups=signups,
                    now=now,
                )
                await session.commit()
                logger.info(
                    "Cancelled open play session %s: %s signups (minimum %s)",
                    session_id,
                    signups,
                    rule.min_participants,
                )
                return "cancelled"

            if not open_play.auto_scale_active(rule):
                return "unchanged"

            existing = await _ordered_session_courts(session, reservation.id)
            desired = desired_court_count(signups, rule)
            if desired == len(existing):
                return "unchanged"

            free = await availability_service.list_free_courts(
                session,
                facility_id=open_play.facility_id,
                start_at=open_play.start_at,
                end_at=open_play.end_at,
                exclude_court_ids=existing,
            )
            decision = plan_scale(
                signups=signups, existing=len(existing), free_courts=len(free), rule=rule
            )
            reason = f"{signups} participants, {rule.max_participants_per_court} per court"
            if decision.capped:
                reason = f"{reason}; availability capped at {decision.availability_limit} courts"

            if decision.target == decision.existing:
                if await _last_capped_reason(session, open_play.id) == reason:
                    return "unchanged"
                state = {
                    "current_court_count": decision.existing,
                    "reserved_courts": decision.existing,
                }
                await audit_service.record_event(
                    session,
                    action=AuditAction.SCALE_UP,
                    facility_id=open_play.facility_id,
                    open_play_session_id=open_play.id,
                    before_state=state,
                    after_state=dict(state),
                    reason=reason,
                )
                await notifications_service.notify(
                    session,
                    facility_id=open_play.facility_id,
                    notification_type=StaffNotificationType.SCALE_UP,
                    message=(
                        f"{rule.name} capped at {decision.existing} courts - "
                        f"{signups} participants"
                    ),
                    related_session_id=open_play.id,
                    related_reservation_id=reservation.id,
                )
                await session.commit()
                logger.info(
                    "Open play session %s capped at %s courts (wanted %s)",
                    session_id,
                    decision.existing,
                    decision.desired,
                )
                return "capped"

            if decision.target > decision.existing:
                action = AuditAction.SCALE_UP
                notification_type = StaffNotificationType.SCALE_UP
                needed = decision.target - decision.existing
                await reservation_service.attach_courts(
                    session,
                    reservation=reservation,
                    court_ids=[court.id for court in free[:needed]],
                )
            else:
                action = AuditAction.SCALE_DOWN
                notification_type = StaffNotificationType.SCALE_DOWN
                await reservation_service.release_courts(
                    session,
                    reservation=reservation,
                    court_ids=existing[decision.target :],
                )
            after_count = len(reservation.court_links)
            open_play.current_court_count = after_count
            await audit_service.record_event(
                session,
                action=action,
                facility_id=open_play.facility_id,
                open_play_session_id=open_play.id,
                before_state={
                    "current_court_count": decision.existing,
                    "reserved_courts": decision.existing,
                },
                after_state={
                    "current_court_count": after_count,
                    "reserved_courts": after_count,
                },
                reason=reason,
            )
            await notifications_service.notify(
                session,
                facility_id=open_play.facility_id,
                notification_type=notification_type,
                message=(
                    f"{rule.name} scaled from {decision.existing} to {after_count} "
                    f"courts - {signups} participants"
                ),
                related_session_id=open_play.id,
                related_reservation_id=reservation.id,
            )
            await session.commit()
        except DomainError:
            await session.rollback()
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            raise InternalError(f"Failed to enforce open play session {session_id}") from exc

    logger.info(
        "Scaled open play session %s from %s to %s courts (%s signups)",
        session_id,
        decision.existing,
        after_count,
        signups,
    )
    return "scaled"


async def list_sessions_approaching_cutoff(
    session: AsyncSession,
    *,
    now: datetime,
    facility_id: uuid.UUID | None = None,
) -> list[uuid.UUID]:
    """Scheduled sessions that have not started and whose cutoff has passed."""
    now = coerce_utc(now)
    stmt = (
        select(
            OpenPlaySession.id,
            OpenPlaySession.start_at,
            OpenPlayRule.cancellation_cutoff_minutes,
        )
        .join(OpenPlayRule, OpenPlayRule.id == OpenPlaySession.open_play_rule_id)
        .where(
            OpenPlaySession.status == OpenPlaySessionStatus.SCHEDULED,
            OpenPlaySession.start_at > now,
        )
        .order_by(OpenPlaySession.start_at)
    )
    if facility_id is not None:
        stmt = stmt.where(OpenPlaySession.facility_id == facility_id)
    result = await session.execute(stmt)
    return [
        session_id
        for session_id, start_at, cutoff in result.all()
        if coerce_utc(start_at) <= now + timedelta(minutes=cutoff)
    ]


async def run_enforcement_pass(
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    locks: CourtLockRegistry,
    now: datetime | None = None,
    facility_id: uuid.UUID | None = None,
) -> EnforcementSummary:
    """Evaluate every session inside its cutoff, one transaction each."""
    now = coerce_utc(now or datetime.now(UTC))
    async with sessionmaker() as session:
        session_ids = await list_sessions_approaching_cutoff(
            session, now=now, facility_id=facility_id
        )
    logger.info("Evaluating %s open play session(s) approaching cutoff", len(session_ids))

    summary = EnforcementSummary()
    for session_id in session_ids:
        summary.evaluated += 1
        try:
            async with sessionmaker() as session:
                outcome = await enforce_session(
                    session, locks=locks, session_id=session_id, now=now
                )
        except Exception:
            summary.failed.append(session_id)
            logger.exception("Failed to enforce open play session %s", session_id)
            continue
        if outcome == "cancelled":
            summary.cancelled.append(session_id)
        elif outcome == "scaled":
            summary.scaled.append(session_id)
        elif outcome == "capped":
            summary.capped.append(session_id)
    return summary


async def toggle_auto_scale_override(
    session: AsyncSession,
    *,
    session_id: uuid.UUID,
    actor: User,
    disable_for_rule: bool = False,
) -> OpenPlaySession:
    """Flip auto-scale for one session, or switch it off for the whole rule."""
    if not actor.is_staff:
        raise PermissionDeniedError("Only staff can change auto-scale")
    open_play = await get_session(session, session_id=session_id)
    rule = open_play.rule

    if disable_for_rule:
        before = {"auto_scale_enabled": rule.auto_scale_enabled}
        rule.auto_scale_enabled = False
        open_play.auto_scale_override = None
        await audit_service.record_event(
            session,
            action=AuditAction.AUTO_SCALE_RULE_DISABLED,
            facility_id=open_play.facility_id,
            user_id=actor.id,
            open_play_session_id=open_play.id,
            before_state=before,
            after_state={"auto_scale_enabled": False, "rule_id": str(rule.id)},
            reason="Auto-scale disabled for rule",
        )
    else:
        current = open_play.auto_scale_active(rule)
        before = {"auto_scale_override": open_play.auto_scale_override, "effective": current}
        open_play.auto_scale_override = not current
        await audit_service.record_event(
            session,
            action=AuditAction.AUTO_SCALE_OVERRIDE,
            facility_id=open_play.facility_id,
            user_id=actor.id,
            open_play_session_id=open_play.id,
            before_state=before,
            after_state={
                "auto_scale_override": open_play.auto_scale_override,
                "effective": open_play.auto_scale_override,
            },
            reason="Auto-scale toggled for session",
        )
    await session.commit()
    logger.info(
        "Auto-scale override changed for open play session %s by %s (rule-wide=%s)",
        session_id,
        actor.id,
        disable_for_rule,
    )
    return await get_session(session, session_id=session_id)
