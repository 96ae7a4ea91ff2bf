"""Reservation lifecycle: create and cancel court bookings.

A reservation moves ``active -> cancelled`` exactly once. Creation checks
court availability, the member quota and optional package redemption inside
one transaction guarded by per-court locks; cancellation resolves the refund
tier, logs the cancellation, releases courts and hands the freed slot to the
waitlist.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import get_settings
from app.core.errors import (
    AvailabilityConflictError,
    CancellationConfirmationRequired,
    ConflictError,
    DomainError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ReservationLimitError,
    ValidationError,
)
from app.core.timeutils import coerce_utc, facility_zone, local_date
from app.models import (
    CancellationQuote,
    Court,
    CourtStatus,
    Facility,
    Reservation,
    ReservationCancellation,
    ReservationCourt,
    ReservationParticipant,
    ReservationStatus,
    ReservationType,
    StaffNotificationType,
    User,
)
from app.services import (
    availability_service,
    cancellation_policy_service,
    notifications_service,
    package_service,
    waitlist_service,
)
from app.services.court_locks import CourtLockRegistry, lock_court_rows

logger = logging.getLogger(__name__)

_ALLOWED_STATUS_TRANSITIONS: dict[ReservationStatus, set[ReservationStatus]] = {
    ReservationStatus.ACTIVE: {ReservationStatus.CANCELLED},
    ReservationStatus.CANCELLED: set(),
}

MEMBER_BOOKABLE_TYPES = frozenset({ReservationType.GAME, ReservationType.PRO_SESSION})


@dataclass(slots=True)
class CancellationOutcome:
    """What a completed cancellation changed."""

    reservation: Reservation
    cancellation: ReservationCancellation
    refund_percentage: int
    fee_waived: bool
    released_court_ids: list[uuid.UUID] = field(default_factory=list)
    redemptions_restored: int = 0
    waitlist_offers_created: int = 0


def _member_quota_key(user_id: uuid.UUID) -> str:
    return f"member-quota:{user_id}"


def _reservation_query():
    return select(Reservation).options(
        selectinload(Reservation.court_links),
        selectinload(Reservation.participant_links),
    )


async def get_reservation(
    session: AsyncSession,
    *,
    reservation_id: uuid.UUID,
    facility_id: uuid.UUID | None = None,
) -> Reservation | None:
    stmt = _reservation_query().where(Reservation.id == reservation_id)
    if facility_id is not None:
        stmt = stmt.where(Reservation.facility_id == facility_id)
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalars().unique().one_or_none()


async def list_reservations(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    start_at: datetime | None = None,
    end_at: datetime | None = None,
    user_id: uuid.UUID | None = None,
    include_cancelled: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> Sequence[Reservation]:
    stmt = (
        _reservation_query()
        .where(Reservation.facility_id == facility_id)
        .order_by(Reservation.start_at)
        .offset(skip)
        .limit(limit)
    )
    if start_at is not None:
        stmt = stmt.where(Reservation.end_at > coerce_utc(start_at))
    if end_at is not None:
        stmt = stmt.where(Reservation.start_at < coerce_utc(end_at))
    if user_id is not None:
        stmt = stmt.where(Reservation.primary_user_id == user_id)
    if not include_cancelled:
        stmt = stmt.where(Reservation.status == ReservationStatus.ACTIVE)
    result = await session.execute(stmt)
    return result.scalars().unique().all()


def _validate_times(start_at: datetime, end_at: datetime) -> None:
    if start_at >= end_at:
        raise ValidationError("Reservation end time must be after start time")


def _validate_status_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if target == current:
        return
    allowed = _ALLOWED_STATUS_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise ConflictError(
            f"Invalid status transition from {current.value} to {target.value}",
            code="invalid_status_transition",
        )


def _validate_member_window(
    facility: Facility,
    *,
    reservation_type: ReservationType,
    start_at: datetime,
    end_at: datetime,
    now: datetime,
) -> None:
    if reservation_type not in MEMBER_BOOKABLE_TYPES:
        raise PermissionDeniedError("Members cannot book this reservation type")
    if end_at - start_at < timedelta(minutes=facility.min_booking_minutes):
        raise ValidationError(
            f"Reservations must be at least {facility.min_booking_minutes} minutes"
        )
    if start_at <= now:
        raise ValidationError("start_at must be in the future")
    last_bookable_day = local_date(now, facility.timezone) + timedelta(
        days=facility.max_advance_booking_days
    )
    if local_date(start_at, facility.timezone) > last_bookable_day:
        raise ValidationError(
            f"start_at must be within {facility.max_advance_booking_days} days"
        )
    if reservation_type == ReservationType.PRO_SESSION:
        notice = timedelta(hours=facility.lesson_min_notice_hours)
        if start_at < now + notice:
            raise ValidationError(
                f"Lessons require at least {facility.lesson_min_notice_hours} hours notice"
            )


async def _load_bookable_courts(
    session: AsyncSession, *, facility_id: uuid.UUID, court_ids: Sequence[uuid.UUID]
) -> list[Court]:
    result = await session.execute(select(Court).where(Court.id.in_(court_ids)))
    courts = {court.id: court for court in result.scalars().all()}
    missing = [court_id for court_id in court_ids if court_id not in courts]
    foreign = [
        court_id
        for court_id, court in courts.items()
        if court.facility_id != facility_id
    ]
    if missing or foreign:
        raise ValidationError("Court does not belong to the facility")
    closed = [court.id for court in courts.values() if court.status != CourtStatus.ACTIVE]
    if closed:
        raise AvailabilityConflictError(closed, "Courts are under maintenance")
    return [courts[court_id] for court_id in court_ids]


async def count_active_member_reservations(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    user_id: uuid.UUID,
    reservation_type: ReservationType,
    now: datetime,
) -> int:
    """Active future bookings a member made for themselves, for one type."""
    result = await session.execute(
        select(func.count())
        .select_from(Reservation)
        .where(
            Reservation.facility_id == facility_id,
            Reservation.primary_user_id == user_id,
            Reservation.created_by_user_id == user_id,
            Reservation.reservation_type == reservation_type,
            Reservation.status == ReservationStatus.ACTIVE,
            Reservation.start_at > coerce_utc(now),
        )
    )
    return int(result.scalar_one())


async def attach_courts(
    session: AsyncSession,
    *,
    reservation: Reservation,
    court_ids: Iterable[uuid.UUID],
) -> list[uuid.UUID]:
    """Add court links; the caller holds the court locks and has checked availability."""
    existing = {link.court_id for link in reservation.court_links}
    added: list[uuid.UUID] = []
    for court_id in court_ids:
        if court_id in existing:
            continue
        reservation.court_links.append(ReservationCourt(court_id=court_id))
        existing.add(court_id)
        added.append(court_id)
    await session.flush()
    return added


async def release_courts(
    session: AsyncSession,
    *,
    reservation: Reservation,
    court_ids: Iterable[uuid.UUID] | None = None,
) -> list[uuid.UUID]:
    """Remove court links from a reservation, returning the freed court ids."""
    targets = None if court_ids is None else set(court_ids)
    released: list[uuid.UUID] = []
    for link in list(reservation.court_links):
        if targets is None or link.court_id in targets:
            reservation.court_links.remove(link)
            released.append(link.court_id)
    await session.flush()
    return released


async def _ensure_no_overlap_before_commit(
    session: AsyncSession, reservation: Reservation, court_ids: Sequence[uuid.UUID]
) -> None:
    availability = await availability_service.check_available(
        session,
        facility_id=reservation.facility_id,
        court_ids=court_ids,
        start_at=reservation.start_at,
        end_at=reservation.end_at,
        exclude_reservation_id=reservation.id,
    )
    if not availability.ok:
        raise AvailabilityConflictError(availability.conflicting_court_ids)


async def create_reservation(
    session: AsyncSession,
    *,
    locks: CourtLockRegistry,
    facility_id: uuid.UUID,
    created_by: User,
    reservation_type: ReservationType,
    start_at: datetime,
    end_at: datetime,
    court_ids: Sequence[uuid.UUID],
    primary_user_id: uuid.UUID | None = None,
    participant_ids: Iterable[uuid.UUID] = (),
    pro_id: uuid.UUID | None = None,
    open_play_rule_id: uuid.UUID | None = None,
    clinic_type_id: uuid.UUID | None = None,
    package_id: uuid.UUID | None = None,
    notes: str | None = None,
    before_commit: Callable[[Reservation], Awaitable[None]] | None = None,
    now: datetime | None = None,
) -> Reservation:
    """Book courts for a time window in a single unit of work.

    ``before_commit`` lets a caller (waitlist acceptance) stage its own writes
    in the same transaction, while the court locks are still held.
    """
    now = coerce_utc(now or datetime.now(UTC))
    start_at = coerce_utc(start_at)
    end_at = coerce_utc(end_at)
    court_ids = list(dict.fromkeys(court_ids))
    _validate_times(start_at, end_at)
    if not court_ids:
        raise ValidationError("At least one court is required")

    is_member_booking = not created_by.is_staff
    if is_member_booking:
        if primary_user_id is not None and primary_user_id != created_by.id:
            raise PermissionDeniedError("Members can only book for themselves")
        primary_user_id = created_by.id

    facility = await session.get(Facility, facility_id)
    if facility is None:
        raise NotFoundError("Facility not found")
    if is_member_booking:
        _validate_member_window(
            facility,
            reservation_type=reservation_type,
            start_at=start_at,
            end_at=end_at,
            now=now,
        )
    await _load_bookable_courts(session, facility_id=facility_id, court_ids=court_ids)

    if package_id is not None:
        if primary_user_id is None:
            raise ValidationError("A package can only be redeemed for a member booking")
        owner = created_by
        if primary_user_id != created_by.id:
            owner = await session.get(User, primary_user_id)
        if owner is None:
            raise NotFoundError("Member not found")
        package = await package_service.get_package(session, package_id)
        await package_service.check_redemption_eligibility(
            session,
            package=package,
            user=owner,
            facility_id=facility_id,
            reservation_type=reservation_type,
        )

    lock_keys: list[Any] = list(court_ids)
    if is_member_booking:
        lock_keys.append(_member_quota_key(created_by.id))

    async with locks.hold(lock_keys):
        try:
            await lock_court_rows(session, court_ids)
            if is_member_booking:
                current = await count_active_member_reservations(
                    session,
                    facility_id=facility_id,
                    user_id=created_by.id,
                    reservation_type=reservation_type,
                    now=now,
                )
                if current >= facility.max_member_reservations:
                    raise ReservationLimitError(
                        current_count=current, limit=facility.max_member_reservations
                    )
            await availability_service.ensure_courts_available(
                session,
                facility_id=facility_id,
                court_ids=court_ids,
                start_at=start_at,
                end_at=end_at,
            )

            reservation = Reservation(
                facility_id=facility_id,
                reservation_type=reservation_type,
                status=ReservationStatus.ACTIVE,
                start_at=start_at,
                end_at=end_at,
                primary_user_id=primary_user_id,
                created_by_user_id=created_by.id,
                pro_id=pro_id,
                open_play_rule_id=open_play_rule_id,
                clinic_type_id=clinic_type_id,
                notes=notes,
            )
            reservation.court_links = [
                ReservationCourt(court_id=court_id) for court_id in court_ids
            ]
            participants = list(participant_ids)
            if primary_user_id is not None:
                participants.insert(0, primary_user_id)
            reservation.participant_links = [
                ReservationParticipant(user_id=user_id)
                for user_id in dict.fromkeys(participants)
            ]
            session.add(reservation)
            await session.flush()

            if package_id is not None:
                await package_service.redeem_package(
                    session,
                    package_id=package_id,
                    facility_id=facility_id,
                    reservation_id=reservation.id,
                    now=now,
                )

            if before_commit is not None:
                await before_commit(reservation)

            await _ensure_no_overlap_before_commit(session, reservation, court_ids)
            await session.commit()
        except DomainError:
            await session.rollback()
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("Failed to create reservation at facility %s", facility_id)
            raise InternalError("Failed to create reservation") from exc

    logger.info(
        "Reservation %s created at facility %s for courts %s",
        reservation.id,
        facility_id,
        ",".join(str(court_id) for court_id in court_ids),
    )
    created = await get_reservation(session, reservation_id=reservation.id)
    if created is None:
        raise InternalError("Reservation vanished after commit")
    return created


def _format_window(reservation: Reservation, timezone_name: str | None) -> str:
    zone = facility_zone(timezone_name)
    start = coerce_utc(reservation.start_at).astimezone(zone)
    end = coerce_utc(reservation.end_at).astimezone(zone)
    return f"{start:%a %b %d %I:%M %p} - {end:%I:%M %p}"


async def _court_label(session: AsyncSession, court_ids: Sequence[uuid.UUID]) -> str:
    if not court_ids:
        return ""
    result = await session.execute(
        select(Court.name).where(Court.id.in_(court_ids)).order_by(Court.court_number)
    )
    return ", ".join(result.scalars().all())


async def _issue_quote(
    session: AsyncSession,
    *,
    reservation: Reservation,
    facility: Facility,
    actor: User,
    refund_percentage: int,
    hours_before_start: int,
    now: datetime,
) -> dict[str, Any]:
    window = timedelta(minutes=get_settings().cancellation_confirmation_window_minutes)
    quote = CancellationQuote(
        reservation_id=reservation.id,
        user_id=actor.id,
        refund_percentage=refund_percentage,
        hours_before_start=hours_before_start,
        calculated_at=now,
        expires_at=now + window,
    )
    session.add(quote)
    await session.commit()
    return {
        "quote_id": str(quote.id),
        "reservation_id": str(reservation.id),
        "refund_percentage": refund_percentage,
        "fee_percentage": 100 - refund_percentage,
        "hours_before_start": hours_before_start,
        "start_at": coerce_utc(reservation.start_at).isoformat(),
        "end_at": coerce_utc(reservation.end_at).isoformat(),
        "court_label": await _court_label(session, reservation.court_ids),
        "facility_name": facility.name,
        "calculated_at": now.isoformat(),
        "expires_at": (now + window).isoformat(),
    }


async def _load_quote(
    session: AsyncSession,
    *,
    quote_id: uuid.UUID,
    reservation: Reservation,
    actor: User,
) -> CancellationQuote:
    quote = await session.get(CancellationQuote, quote_id)
    if (
        quote is None
        or quote.reservation_id != reservation.id
        or quote.user_id != actor.id
        or quote.consumed_at is not None
    ):
        raise ValidationError("Unknown cancellation quote")
    return quote


def _quote_is_current(quote: CancellationQuote, *, refund_percentage: int, now: datetime) -> bool:
    window = timedelta(minutes=get_settings().cancellation_confirmation_window_minutes)
    if now - coerce_utc(quote.calculated_at) > window:
        return False
    return quote.refund_percentage == refund_percentage


async def cancel_reservation(
    session: AsyncSession,
    *,
    reservation_id: uuid.UUID,
    actor: User,
    waive_fee: bool | None = None,
    quote_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> CancellationOutcome:
    """Cancel a future reservation, applying the facility refund policy.

    A partial refund needs confirmation: the first call raises
    ``CancellationConfirmationRequired`` with a persisted quote; repeating the
    call with that ``quote_id`` inside the confirmation window, while the tier
    is unchanged, completes the cancellation. Staff may instead pass
    ``waive_fee`` explicitly.
    """
    now = coerce_utc(now or datetime.now(UTC))
    reservation = await get_reservation(session, reservation_id=reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found")
    facility = await session.get(Facility, reservation.facility_id)
    if facility is None:
        raise NotFoundError("Reservation not found")

    is_staff = actor.is_staff
    if is_staff and facility.organization_id != actor.organization_id:
        raise NotFoundError("Reservation not found")
    if not is_staff and reservation.primary_user_id != actor.id:
        raise PermissionDeniedError("Only the reservation owner can cancel it")
    if waive_fee and not is_staff:
        raise PermissionDeniedError("Only staff can waive cancellation fees")
    _validate_status_transition(reservation.status, ReservationStatus.CANCELLED)
    if reservation.status == ReservationStatus.CANCELLED:
        raise ConflictError("Reservation is already cancelled", code="already_cancelled")
    if coerce_utc(reservation.start_at) <= now:
        raise ValidationError("Only future reservations can be cancelled")

    hours_before = cancellation_policy_service.hours_until_start(reservation.start_at, now)
    refund = await cancellation_policy_service.resolve_refund_percentage(
        session,
        facility_id=reservation.facility_id,
        reservation_type=reservation.reservation_type,
        hours_before_start=hours_before,
    )

    fee_waived = False
    if is_staff and waive_fee:
        refund = cancellation_policy_service.FULL_REFUND_PERCENTAGE
        fee_waived = True
    elif refund < cancellation_policy_service.FULL_REFUND_PERCENTAGE and not (
        is_staff and waive_fee is False
    ):
        if quote_id is None:
            penalty = await _issue_quote(
                session,
                reservation=reservation,
                facility=facility,
                actor=actor,
                refund_percentage=refund,
                hours_before_start=hours_before,
                now=now,
            )
            raise CancellationConfirmationRequired(penalty)
        quote = await _load_quote(
            session, quote_id=quote_id, reservation=reservation, actor=actor
        )
        if not _quote_is_current(quote, refund_percentage=refund, now=now):
            penalty = await _issue_quote(
                session,
                reservation=reservation,
                facility=facility,
                actor=actor,
                refund_percentage=refund,
                hours_before_start=hours_before,
                now=now,
            )
            raise CancellationConfirmationRequired(
                penalty, "Cancellation penalty changed; confirm the updated penalty"
            )
        quote.consumed_at = now

    try:
        cancellation = ReservationCancellation(
            reservation_id=reservation.id,
            cancelled_by_user_id=actor.id,
            cancelled_at=now,
            refund_percentage_applied=refund,
            fee_waived=fee_waived,
            hours_before_start=hours_before,
        )
        session.add(cancellation)
        released = await release_courts(session, reservation=reservation)
        reservation.participant_links.clear()
        try:
            reversal = await package_service.reverse_redemptions(
                session, reservation_id=reservation.id, now=now
            )
        except SQLAlchemyError as exc:
            raise InternalError("Failed to restore package redemptions") from exc

        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_at = now

        if (
            reservation.reservation_type == ReservationType.PRO_SESSION
            and not is_staff
            and reservation.pro_id is not None
        ):
            await notifications_service.notify(
                session,
                facility_id=reservation.facility_id,
                notification_type=StaffNotificationType.LESSON_CANCELLED,
                message=(
                    f"Lesson cancelled: {actor.display_name} "
                    f"({_format_window(reservation, facility.timezone)})"
                ),
                related_reservation_id=reservation.id,
                target_staff_id=reservation.pro_id,
            )
        await session.commit()
    except DomainError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Failed to cancel reservation %s", reservation_id)
        raise InternalError("Failed to cancel reservation") from exc

    logger.info(
        "Reservation %s cancelled by %s (refund=%s%%, waived=%s)",
        reservation.id,
        actor.id,
        refund,
        fee_waived,
    )
    outcome = CancellationOutcome(
        reservation=reservation,
        cancellation=cancellation,
        refund_percentage=refund,
        fee_waived=fee_waived,
        released_court_ids=released,
        redemptions_restored=reversal.restored,
    )

    if released:
        try:
            offers = await waitlist_service.notify_released_slot(
                session,
                facility_id=reservation.facility_id,
                start_at=reservation.start_at,
                end_at=reservation.end_at,
                court_ids=released,
                now=now,
            )
            outcome.waitlist_offers_created = len(offers)
        except Exception:
            await session.rollback()
            logger.exception(
                "Failed to notify waitlist for cancelled reservation %s", reservation.id
            )
    return outcome
