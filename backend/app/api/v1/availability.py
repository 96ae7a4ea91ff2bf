"""Court availability endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.user import User
from app.schemas.reservation import AvailabilityQuery, AvailabilityRead, FreeCourtRead
from app.services import availability_service

router = APIRouter()


@router.post("/check", response_model=AvailabilityRead, summary="Check courts for a window")
async def check_availability(
    payload: AvailabilityQuery,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> AvailabilityRead:
    if payload.end_at <= payload.start_at:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_at must be after start_at",
        )
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    result = await availability_service.check_available(
        session,
        facility_id=payload.facility_id,
        court_ids=payload.court_ids,
        start_at=payload.start_at,
        end_at=payload.end_at,
        exclude_reservation_id=payload.exclude_reservation_id,
    )
    return AvailabilityRead(
        available=result.ok, conflicting_court_ids=result.conflicting_court_ids
    )


@router.get("/free", response_model=list[FreeCourtRead], summary="List free courts")
async def list_free_courts(
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> list[FreeCourtRead]:
    if end_at <= start_at:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_at must be after start_at",
        )
    await deps.ensure_facility_access(session, current_user, facility_id)
    courts = await availability_service.list_free_courts(
        session, facility_id=facility_id, start_at=start_at, end_at=end_at
    )
    return [FreeCourtRead.model_validate(court) for court in courts]
