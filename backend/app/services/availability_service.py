"""Court availability and conflict detection.

Two bookings conflict when ``existing.start < candidate.end`` and
``existing.end > candidate.start``; windows are half-open, so back-to-back
bookings on the same court are allowed. These helpers only read; callers run
them inside the transaction that performs the insert.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AvailabilityConflictError
from app.core.timeutils import coerce_utc
from app.models import (
    Court,
    CourtStatus,
    Reservation,
    ReservationCourt,
    ReservationStatus,
)


@dataclass(slots=True)
class AvailabilityResult:
    """Outcome of an availability check."""

    conflicting_court_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicting_court_ids


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    return coerce_utc(start_a) < coerce_utc(end_b) and coerce_utc(end_a) > coerce_utc(start_b)


def _busy_courts_stmt(
    *,
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    court_ids: Sequence[uuid.UUID] | None = None,
    exclude_reservation_id: uuid.UUID | None = None,
):
    stmt = (
        select(ReservationCourt.court_id)
        .join(Reservation, Reservation.id == ReservationCourt.reservation_id)
        .where(
            Reservation.facility_id == facility_id,
            Reservation.status == ReservationStatus.ACTIVE,
            Reservation.start_at < coerce_utc(end_at),
            Reservation.end_at > coerce_utc(start_at),
        )
        .distinct()
    )
    if court_ids is not None:
        stmt = stmt.where(ReservationCourt.court_id.in_(court_ids))
    if exclude_reservation_id is not None:
        stmt = stmt.where(Reservation.id != exclude_reservation_id)
    return stmt


async def check_available(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    court_ids: Iterable[uuid.UUID],
    start_at: datetime,
    end_at: datetime,
    exclude_reservation_id: uuid.UUID | None = None,
) -> AvailabilityResult:
    """Return the subset of ``court_ids`` already booked in the window."""
    requested = list(dict.fromkeys(court_ids))
    if not requested:
        return AvailabilityResult()
    result = await session.execute(
        _busy_courts_stmt(
            facility_id=facility_id,
            start_at=start_at,
            end_at=end_at,
            court_ids=requested,
            exclude_reservation_id=exclude_reservation_id,
        )
    )
    busy = set(result.scalars().all())
    return AvailabilityResult([court_id for court_id in requested if court_id in busy])


async def ensure_courts_available(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    court_ids: Iterable[uuid.UUID],
    start_at: datetime,
    end_at: datetime,
    exclude_reservation_id: uuid.UUID | None = None,
) -> None:
    availability = await check_available(
        session,
        facility_id=facility_id,
        court_ids=court_ids,
        start_at=start_at,
        end_at=end_at,
        exclude_reservation_id=exclude_reservation_id,
    )
    if not availability.ok:
        raise AvailabilityConflictError(availability.conflicting_court_ids)


async def list_free_courts(
    session: AsyncSession,
    *,
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    exclude_court_ids: Iterable[uuid.UUID] = (),
) -> list[Court]:
    """Active facility courts with no overlapping booking, by court number."""
    busy_result = await session.execute(
        _busy_courts_stmt(facility_id=facility_id, start_at=start_at, end_at=end_at)
    )
    unavailable = set(busy_result.scalars().all()) | set(exclude_court_ids)
    courts_result = await session.execute(
        select(Court)
        .where(Court.facility_id == facility_id, Court.status == CourtStatus.ACTIVE)
        .order_by(Court.court_number)
    )
    return [court for court in courts_result.scalars().all() if court.id not in unavailable]


async def list_facility_court_ids(
    session: AsyncSession, *, facility_id: uuid.UUID
) -> list[uuid.UUID]:
    result = await session.execute(
        select(Court.id).where(Court.facility_id == facility_id).order_by(Court.court_number)
    )
    return list(result.scalars().all())
