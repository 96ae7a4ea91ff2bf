"""Staff-facing notifications emitted by the booking core."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import CreatedAtMixin


class StaffNotificationType(str, enum.Enum):
    """Tags read by the notification surface."""

    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    CANCELLED = "cancelled"
    LESSON_CANCELLED = "lesson_cancelled"
    CLINIC_ENROLLMENT_BELOW_MINIMUM = "clinic_enrollment_below_minimum"


class StaffNotification(CreatedAtMixin, Base):
    """Message for front-desk staff, optionally targeted at one person."""

    __tablename__ = "staff_notifications"
    __table_args__ = (
        Index("ix_staff_notifications_facility_created", "facility_id", "created_at"),
        Index("ix_staff_notifications_target", "target_staff_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    notification_type: Mapped[StaffNotificationType] = mapped_column(
        Enum(StaffNotificationType), nullable=False
    )
    message: Mapped[str] = mapped_column(String(1024), nullable=False)
    related_session_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("open_play_sessions.id", ondelete="SET NULL")
    )
    related_reservation_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL")
    )
    target_staff_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
