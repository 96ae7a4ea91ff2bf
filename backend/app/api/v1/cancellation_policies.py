"""Cancellation policy tier management."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.models.reservation import ReservationType
from app.models.user import User
from app.schemas.cancellation import (
    CancellationTierCreate,
    CancellationTierRead,
    CancellationTierUpdate,
)
from app.services import cancellation_policy_service

router = APIRouter()


@router.get(
    "/{facility_id}/cancellation-tiers",
    response_model=list[CancellationTierRead],
    summary="List cancellation tiers",
)
async def list_tiers(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> list[CancellationTierRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    tiers = await cancellation_policy_service.list_tiers(session, facility_id=facility_id)
    return [CancellationTierRead.model_validate(tier) for tier in tiers]


@router.get(
    "/{facility_id}/cancellation-tiers/preview",
    summary="Preview the refund for a reservation type and start time",
)
async def preview_refund(
    facility_id: uuid.UUID,
    start_at: datetime,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    reservation_type: ReservationType | None = None,
) -> dict[str, int]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    hours = cancellation_policy_service.hours_until_start(start_at, datetime.now(UTC))
    refund = await cancellation_policy_service.resolve_refund_percentage(
        session,
        facility_id=facility_id,
        reservation_type=reservation_type,
        hours_before_start=hours,
    )
    return {"hours_before_start": hours, "refund_percentage": refund}


@router.post(
    "/{facility_id}/cancellation-tiers",
    response_model=CancellationTierRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create cancellation tier",
)
async def create_tier(
    facility_id: uuid.UUID,
    payload: CancellationTierCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> CancellationTierRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    try:
        tier = await cancellation_policy_service.create_tier(
            session, facility_id=facility_id, **payload.model_dump()
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return CancellationTierRead.model_validate(tier)


@router.patch(
    "/{facility_id}/cancellation-tiers/{tier_id}",
    response_model=CancellationTierRead,
    summary="Update cancellation tier",
)
async def update_tier(
    facility_id: uuid.UUID,
    tier_id: uuid.UUID,
    payload: CancellationTierUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> CancellationTierRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    try:
        tier = await cancellation_policy_service.update_tier(
            session, facility_id=facility_id, tier_id=tier_id, **payload.model_dump()
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return CancellationTierRead.model_validate(tier)


@router.delete(
    "/{facility_id}/cancellation-tiers/{tier_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete cancellation tier",
)
async def delete_tier(
    facility_id: uuid.UUID,
    tier_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> Response:
    await deps.ensure_facility_access(session, current_user, facility_id)
    try:
        await cancellation_policy_service.delete_tier(
            session, facility_id=facility_id, tier_id=tier_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
