"""Clinic type, scheduling and enrollment endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError, NotFoundError
from app.models.user import User
from app.schemas.clinic import ClinicSchedule, ClinicTypeCreate, ClinicTypeRead
from app.schemas.open_play import ParticipantChange
from app.schemas.reservation import ReservationRead
from app.services import clinic_service, reservation_service
from app.services.court_locks import CourtLockRegistry

router = APIRouter()


async def _authorize_clinic(
    session: AsyncSession, user: User, reservation_id: uuid.UUID
) -> None:
    reservation = await reservation_service.get_reservation(
        session, reservation_id=reservation_id
    )
    if reservation is None:
        raise NotFoundError("Clinic not found")
    await deps.ensure_facility_access(session, user, reservation.facility_id)


@router.post(
    "/types",
    response_model=ClinicTypeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create clinic type",
)
async def create_clinic_type(
    payload: ClinicTypeCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> ClinicTypeRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        clinic_type = await clinic_service.create_clinic_type(session, **payload.model_dump())
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ClinicTypeRead.model_validate(clinic_type)


@router.post(
    "",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a clinic",
)
async def schedule_clinic(
    payload: ClinicSchedule,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
    locks: Annotated[CourtLockRegistry, Depends(deps.get_court_locks)],
) -> ReservationRead:
    try:
        clinic_type = await clinic_service.get_clinic_type(session, payload.clinic_type_id)
        await deps.ensure_facility_access(session, current_user, clinic_type.facility_id)
        reservation = await clinic_service.schedule_clinic(
            session, locks=locks, created_by=current_user, **payload.model_dump()
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/{reservation_id}/enrollments",
    response_model=ReservationRead,
    summary="Enroll in a clinic",
)
async def enroll(
    reservation_id: uuid.UUID,
    payload: ParticipantChange,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ReservationRead:
    try:
        await _authorize_clinic(session, current_user, reservation_id)
        reservation = await clinic_service.enroll(
            session, reservation_id=reservation_id, actor=current_user, user_id=payload.user_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ReservationRead.model_validate(reservation)


@router.delete(
    "/{reservation_id}/enrollments",
    response_model=ReservationRead,
    summary="Cancel a clinic enrollment",
)
async def cancel_enrollment(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    user_id: uuid.UUID | None = None,
) -> ReservationRead:
    try:
        await _authorize_clinic(session, current_user, reservation_id)
        reservation = await clinic_service.cancel_enrollment(
            session, reservation_id=reservation_id, actor=current_user, user_id=user_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ReservationRead.model_validate(reservation)
