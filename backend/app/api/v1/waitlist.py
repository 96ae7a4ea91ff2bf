"""Waitlist management endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.models.user import User
from app.schemas.reservation import ReservationRead
from app.schemas.waitlist import (
    WaitlistConfigRead,
    WaitlistConfigUpdate,
    WaitlistEntryDetail,
    WaitlistEntryRead,
    WaitlistJoin,
)
from app.services import waitlist_service
from app.services.court_locks import CourtLockRegistry

router = APIRouter(prefix="/waitlist")


@router.get("/config", response_model=WaitlistConfigRead, summary="Get waitlist config")
async def get_config(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> WaitlistConfigRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    config = await waitlist_service.get_config(session, facility_id=facility_id)
    return WaitlistConfigRead.model_validate(config)


@router.put("/config", response_model=WaitlistConfigRead, summary="Update waitlist config")
async def update_config(
    facility_id: uuid.UUID,
    payload: WaitlistConfigUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> WaitlistConfigRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    try:
        config = await waitlist_service.upsert_config(
            session, facility_id=facility_id, **payload.model_dump()
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return WaitlistConfigRead.model_validate(config)


@router.post(
    "",
    response_model=WaitlistEntryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Join the waitlist for a slot",
)
async def join_waitlist(
    payload: WaitlistJoin,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> WaitlistEntryRead:
    await deps.ensure_facility_access(session, current_user, payload.facility_id)
    try:
        entry = await waitlist_service.join_waitlist(
            session,
            facility_id=payload.facility_id,
            user=current_user,
            start_at=payload.start_at,
            end_at=payload.end_at,
            court_id=payload.court_id,
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return WaitlistEntryRead.model_validate(entry)


@router.get("/mine", response_model=list[WaitlistEntryDetail], summary="My waitlist entries")
async def list_my_entries(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    facility_id: uuid.UUID | None = None,
) -> list[WaitlistEntryDetail]:
    entries = await waitlist_service.list_entries_for_user(
        session, user_id=current_user.id, facility_id=facility_id
    )
    return [WaitlistEntryDetail.model_validate(entry) for entry in entries]


@router.get("/slot", response_model=list[WaitlistEntryDetail], summary="Queue for one slot")
async def list_slot_entries(
    facility_id: uuid.UUID,
    start_at: datetime,
    end_at: datetime,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> list[WaitlistEntryDetail]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    entries = await waitlist_service.list_entries_for_slot(
        session, facility_id=facility_id, start_at=start_at, end_at=end_at
    )
    return [WaitlistEntryDetail.model_validate(entry) for entry in entries]


@router.delete(
    "/{entry_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Leave the waitlist"
)
async def leave_waitlist(
    entry_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> Response:
    try:
        await waitlist_service.leave_waitlist(session, entry_id=entry_id, user=current_user)
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/offers/{offer_id}/accept",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Accept a waitlist offer",
)
async def accept_offer(
    offer_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    locks: Annotated[CourtLockRegistry, Depends(deps.get_court_locks)],
) -> ReservationRead:
    if current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Offers are accepted by the waitlisted member",
        )
    try:
        reservation = await waitlist_service.accept_offer(
            session, locks=locks, offer_id=offer_id, user=current_user
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return ReservationRead.model_validate(reservation)
