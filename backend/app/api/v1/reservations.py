"""Reservation management API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.models.user import User
from app.schemas.cancellation import CancellationRead, CancellationRequest
from app.schemas.reservation import ReservationCreate, ReservationRead
from app.services import reservation_service
from app.services.court_locks import CourtLockRegistry

router = APIRouter()


@router.get("", response_model=list[ReservationRead], summary="List reservations")
async def list_reservations(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    start_at: datetime | None = None,
    end_at: datetime | None = None,
    include_cancelled: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> list[ReservationRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    reservations = await reservation_service.list_reservations(
        session,
        facility_id=facility_id,
        start_at=start_at,
        end_at=end_at,
        user_id=None if current_user.is_staff else current_user.id,
        include_cancelled=include_cancelled,
        skip=skip,
        limit=min(limit, 100),
    )
    return [ReservationRead.model_validate(obj) for obj in reservations]


@router.post(
    "",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create reservation",
)
async def create_reservation(
    payload: ReservationCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    locks: Annotated[CourtLockRegistry, Depends(deps.get_court_locks)],
) -> ReservationRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        reservation = await reservation_service.create_reservation(
            session,
            locks=locks,
            created_by=current_user,
            **payload.model_dump(),
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ReservationRead.model_validate(reservation)


@router.get(
    "/{reservation_id}", response_model=ReservationRead, summary="Get reservation"
)
async def get_reservation(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ReservationRead:
    reservation = await reservation_service.get_reservation(
        session, reservation_id=reservation_id
    )
    visible = reservation is not None and (
        current_user.is_staff
        or current_user.id == reservation.primary_user_id
        or current_user.id in reservation.participant_ids
    )
    if not visible:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found"
        )
    await deps.ensure_facility_access(session, current_user, reservation.facility_id)
    return ReservationRead.model_validate(reservation)


@router.post(
    "/{reservation_id}/cancel",
    response_model=CancellationRead,
    summary="Cancel reservation",
    responses={409: {"description": "Penalty confirmation required or conflict"}},
)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    payload: CancellationRequest | None = None,
) -> CancellationRead:
    payload = payload or CancellationRequest()
    try:
        outcome = await reservation_service.cancel_reservation(
            session,
            reservation_id=reservation_id,
            actor=current_user,
            waive_fee=payload.waive_fee,
            quote_id=payload.quote_id,
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return CancellationRead(
        reservation_id=outcome.reservation.id,
        cancelled_at=outcome.cancellation.cancelled_at,
        refund_percentage=outcome.refund_percentage,
        fee_waived=outcome.fee_waived,
        hours_before_start=outcome.cancellation.hours_before_start,
        released_court_ids=outcome.released_court_ids,
        redemptions_restored=outcome.redemptions_restored,
        waitlist_offers_created=outcome.waitlist_offers_created,
    )
