"""Staff notification helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models import StaffNotification, StaffNotificationType


async def notify(
    session: AsyncSession,
    *,
    facility_id: UUID,
    notification_type: StaffNotificationType,
    message: str,
    related_session_id: UUID | None = None,
    related_reservation_id: UUID | None = None,
    target_staff_id: UUID | None = None,
) -> StaffNotification:
    """Stage a staff notification in the caller's transaction."""
    notification = StaffNotification(
        facility_id=facility_id,
        notification_type=notification_type,
        message=message,
        related_session_id=related_session_id,
        related_reservation_id=related_reservation_id,
        target_staff_id=target_staff_id,
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_for_facility(
    session: AsyncSession,
    *,
    facility_id: UUID,
    staff_id: UUID | None = None,
    unread_only: bool = False,
    limit: int = 50,
) -> list[StaffNotification]:
    """Return facility-wide notifications plus any targeted at ``staff_id``."""
    stmt = (
        select(StaffNotification)
        .where(StaffNotification.facility_id == facility_id)
        .order_by(StaffNotification.created_at.desc())
        .limit(limit)
    )
    if staff_id is not None:
        stmt = stmt.where(
            or_(
                StaffNotification.target_staff_id.is_(None),
                StaffNotification.target_staff_id == staff_id,
            )
        )
    if unread_only:
        stmt = stmt.where(StaffNotification.read_at.is_(None))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_read(
    session: AsyncSession,
    *,
    notification_id: UUID,
    facility_id: UUID,
) -> StaffNotification:
    notification = await session.get(StaffNotification, notification_id)
    if notification is None or notification.facility_id != facility_id:
        raise NotFoundError("Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.now(UTC)
        await session.commit()
    return notification
