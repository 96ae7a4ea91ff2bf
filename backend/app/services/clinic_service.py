"""Clinic scheduling and enrollment.

A clinic is a staff-booked ``clinic`` reservation tied to a clinic type that
bounds its enrollment. When a cancellation takes the enrolled count from at or
above the type's minimum to below it, staff are notified in the same
transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from app.core.timeutils import coerce_utc, facility_zone
from app.models import (
    AuditAction,
    ClinicType,
    Facility,
    Reservation,
    ReservationParticipant,
    ReservationStatus,
    ReservationType,
    StaffNotificationType,
    User,
)
from app.services import audit_service, notifications_service, reservation_service
from app.services.court_locks import CourtLockRegistry

logger = logging.getLogger(__name__)


async def create_clinic_type(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    name: str,
    min_participants: int,
    max_participants: int,
) -> ClinicType:
    if await session.get(Facility, facility_id) is None:
        raise NotFoundError("Facility not found")
    clinic_type = ClinicType(
        facility_id=facility_id,
        name=name,
        min_participants=min_participants,
        max_participants=max_participants,
    )
    session.add(clinic_type)
    await session.commit()
    await session.refresh(clinic_type)
    return clinic_type


async def get_clinic_type(session: AsyncSession, clinic_type_id: uuid.UUID) -> ClinicType:
    clinic_type = await session.get(ClinicType, clinic_type_id)
    if clinic_type is None:
        raise NotFoundError("Clinic type not found")
    return clinic_type


async def schedule_clinic(
    session: AsyncSession,
    *,
    locks: CourtLockRegistry,
    clinic_type_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    court_ids: Sequence[uuid.UUID],
    created_by: User,
    pro_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Reservation:
    """Book courts for one clinic session."""
    if not created_by.is_staff:
        raise PermissionDeniedError("Only staff can schedule clinics")
    clinic_type = await get_clinic_type(session, clinic_type_id)
    return await reservation_service.create_reservation(
        session,
        locks=locks,
        facility_id=clinic_type.facility_id,
        created_by=created_by,
        reservation_type=ReservationType.CLINIC,
        start_at=start_at,
        end_at=end_at,
        court_ids=court_ids,
        pro_id=pro_id,
        clinic_type_id=clinic_type.id,
        now=now,
    )


async def _load_open_clinic(
    session: AsyncSession, reservation_id: uuid.UUID, now: datetime
) -> tuple[Reservation, ClinicType]:
    reservation = await reservation_service.get_reservation(
        session, reservation_id=reservation_id
    )
    if (
        reservation is None
        or reservation.reservation_type != ReservationType.CLINIC
        or reservation.clinic_type_id is None
    ):
        raise NotFoundError("Clinic not found")
    if reservation.status != ReservationStatus.ACTIVE:
        raise ConflictError("Clinic has been cancelled", code="enrollment_closed")
    if coerce_utc(reservation.start_at) <= now:
        raise ConflictError("Clinic has already started", code="enrollment_closed")
    clinic_type = await get_clinic_type(session, reservation.clinic_type_id)
    return reservation, clinic_type


def _resolve_enrollee(actor: User, user_id: uuid.UUID | None) -> uuid.UUID:
    target = user_id or actor.id
    if target != actor.id and not actor.is_staff:
        raise PermissionDeniedError("Members can only manage their own enrollment")
    return target


async def enroll(
    session: AsyncSession,
    *,
    reservation_id: uuid.UUID,
    actor: User,
    user_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Reservation:
    now = coerce_utc(now or datetime.now(UTC))
    target = _resolve_enrollee(actor, user_id)
    reservation, clinic_type = await _load_open_clinic(session, reservation_id, now)

    if any(link.user_id == target for link in reservation.participant_links):
        raise ConflictError("Already enrolled in this clinic", code="already_enrolled")
    enrolled = len(reservation.participant_links)
    if enrolled >= clinic_type.max_participants:
        raise ConflictError(
            "Clinic is full",
            code="enrollment_closed",
            details={"current_count": enrolled, "limit": clinic_type.max_participants},
        )
    if await session.get(User, target) is None:
        raise NotFoundError("Member not found")

    reservation.participant_links.append(ReservationParticipant(user_id=target))
    await audit_service.record_event(
        session,
        action=AuditAction.PARTICIPANT_ADDED,
        facility_id=reservation.facility_id,
        user_id=actor.id,
        after_state={
            "reservation_id": str(reservation.id),
            "user_id": str(target),
            "enrolled": enrolled + 1,
        },
    )
    await session.commit()
    return await reservation_service.get_reservation(session, reservation_id=reservation_id)


async def cancel_enrollment(
    session: AsyncSession,
    *,
    reservation_id: uuid.UUID,
    actor: User,
    user_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Reservation:
    """Withdraw an enrollee, alerting staff if the clinic falls below its minimum."""
    now = coerce_utc(now or datetime.now(UTC))
    target = _resolve_enrollee(actor, user_id)
    reservation, clinic_type = await _load_open_clinic(session, reservation_id, now)

    link = next(
        (link for link in reservation.participant_links if link.user_id == target), None
    )
    if link is None:
        raise NotFoundError("Not enrolled in this clinic")
    before = len(reservation.participant_links)
    reservation.participant_links.remove(link)
    await session.flush()
    after = len(reservation.participant_links)

    await audit_service.record_event(
        session,
        action=AuditAction.PARTICIPANT_REMOVED,
        facility_id=reservation.facility_id,
        user_id=actor.id,
        before_state={"enrolled": before},
        after_state={
            "reservation_id": str(reservation.id),
            "user_id": str(target),
            "enrolled": after,
        },
    )
    minimum = clinic_type.min_participants
    if before >= minimum > after:
        facility = await session.get(Facility, reservation.facility_id)
        starts = coerce_utc(reservation.start_at).astimezone(
            facility_zone(facility.timezone if facility else None)
        )
        await notifications_service.notify(
            session,
            facility_id=reservation.facility_id,
            notification_type=StaffNotificationType.CLINIC_ENROLLMENT_BELOW_MINIMUM,
            message=(
                f"{clinic_type.name} on {starts:%b} {starts.day} "
                f"{starts.hour % 12 or 12}:{starts:%M %p} dropped below minimum "
                f"enrollment ({after}/{minimum})"
            ),
            related_reservation_id=reservation.id,
        )
        logger.info(
            "Clinic %s dropped below minimum enrollment (%d/%d)",
            reservation.id,
            after,
            minimum,
        )
    await session.commit()
    return await reservation_service.get_reservation(session, reservation_id=reservation_id)
