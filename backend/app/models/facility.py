"""Facilities and their courts."""

from __future__ import annotations

import enum
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin


if TYPE_CHECKING:  # pragma: no cover - typing only imports
    from app.models.organization import Organization


class CourtStatus(str, enum.Enum):
    """Operational state of a court."""

    ACTIVE = "active"
    MAINTENANCE = "maintenance"


class Facility(TimestampMixin, Base):
    """A physical venue; holds the booking policy knobs the core consumes."""

    __tablename__ = "facilities"
    __table_args__ = (
        CheckConstraint("max_advance_booking_days >= 0", name="advance_days_nonnegative"),
        CheckConstraint("max_member_reservations >= 0", name="member_limit_nonnegative"),
        CheckConstraint("lesson_min_notice_hours >= 0", name="lesson_notice_nonnegative"),
        CheckConstraint("min_booking_minutes > 0", name="min_booking_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    max_advance_booking_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=7
    )
    max_member_reservations: Mapped[int] = mapped_column(
        Integer, nullable=False, default=30
    )
    lesson_min_notice_hours: Mapped[int] = mapped_column(
        Integer, nullable=False, default=24
    )
    min_booking_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60
    )

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="facilities"
    )
    courts: Mapped[list["Court"]] = relationship(
        "Court",
        back_populates="facility",
        cascade="all, delete-orphan",
        order_by="Court.court_number",
    )


class Court(TimestampMixin, Base):
    """A bookable court; the unit of slot exclusivity."""

    __tablename__ = "courts"
    __table_args__ = (
        UniqueConstraint("facility_id", "court_number", name="uq_courts_facility_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    court_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CourtStatus] = mapped_column(
        Enum(CourtStatus), nullable=False, default=CourtStatus.ACTIVE
    )

    facility: Mapped["Facility"] = relationship("Facility", back_populates="courts")
