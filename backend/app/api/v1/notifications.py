"""Staff notification feed."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import DomainError
from app.models.user import User
from app.schemas.notification import StaffNotificationRead
from app.services import notifications_service

router = APIRouter(prefix="/notifications")


@router.get("", response_model=list[StaffNotificationRead], summary="List staff notifications")
async def list_notifications(
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
    unread_only: bool = False,
    limit: int = 50,
) -> list[StaffNotificationRead]:
    await deps.ensure_facility_access(session, current_user, facility_id)
    notifications = await notifications_service.list_for_facility(
        session,
        facility_id=facility_id,
        staff_id=current_user.id,
        unread_only=unread_only,
        limit=min(limit, 200),
    )
    return [StaffNotificationRead.model_validate(item) for item in notifications]


@router.post(
    "/{notification_id}/read",
    response_model=StaffNotificationRead,
    summary="Mark notification read",
)
async def mark_read(
    notification_id: uuid.UUID,
    facility_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_staff)],
) -> StaffNotificationRead:
    await deps.ensure_facility_access(session, current_user, facility_id)
    try:
        notification = await notifications_service.mark_read(
            session, notification_id=notification_id, facility_id=facility_id
        )
    except DomainError as exc:
        raise exc.to_http_exception() from exc
    return StaffNotificationRead.model_validate(notification)
