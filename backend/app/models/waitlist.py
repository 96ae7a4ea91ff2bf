"""Waitlist configuration, entries and time-limited offers."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.facility import Court
    from app.models.user import User


class WaitlistNotificationMode(str, enum.Enum):
    """How a freed slot is offered to the queue."""

    BROADCAST = "broadcast"
    SEQUENTIAL = "sequential"


class WaitlistStatus(str, enum.Enum):
    """Lifecycle of waitlist entries."""

    PENDING = "pending"
    NOTIFIED = "notified"
    EXPIRED = "expired"
    FULFILLED = "fulfilled"


class WaitlistOfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class WaitlistConfig(TimestampMixin, Base):
    """Per-facility waitlist behaviour."""

    __tablename__ = "waitlist_configs"
    __table_args__ = (
        CheckConstraint("max_waitlist_size >= 0", name="max_size_nonnegative"),
        CheckConstraint(
            "notification_window_minutes >= 0", name="window_nonnegative"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    max_waitlist_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notification_mode: Mapped[WaitlistNotificationMode] = mapped_column(
        Enum(WaitlistNotificationMode),
        nullable=False,
        default=WaitlistNotificationMode.BROADCAST,
    )
    offer_expiry_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=30
    )
    notification_window_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )


class WaitlistEntry(TimestampMixin, Base):
    """A member queued for a specific facility slot."""

    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index(
            "ix_waitlist_slot",
            "facility_id",
            "target_date",
            "target_start_at",
            "target_end_at",
        ),
        Index("ix_waitlist_status", "status"),
        Index("ix_waitlist_user", "user_id"),
        Index(
            "ux_waitlist_slot_court_user",
            "facility_id",
            "target_date",
            "target_start_at",
            "target_end_at",
            "target_court_id",
            "user_id",
            unique=True,
            postgresql_where=text("target_court_id IS NOT NULL"),
            sqlite_where=text("target_court_id IS NOT NULL"),
        ),
        Index(
            "ux_waitlist_slot_any_court_user",
            "facility_id",
            "target_date",
            "target_start_at",
            "target_end_at",
            "user_id",
            unique=True,
            postgresql_where=text("target_court_id IS NULL"),
            sqlite_where=text("target_court_id IS NULL"),
        ),
        Index(
            "ux_waitlist_slot_court_position",
            "facility_id",
            "target_date",
            "target_start_at",
            "target_end_at",
            "target_court_id",
            "position",
            unique=True,
            postgresql_where=text("target_court_id IS NOT NULL"),
            sqlite_where=text("target_court_id IS NOT NULL"),
        ),
        Index(
            "ux_waitlist_slot_any_court_position",
            "facility_id",
            "target_date",
            "target_start_at",
            "target_end_at",
            "position",
            unique=True,
            postgresql_where=text("target_court_id IS NULL"),
            sqlite_where=text("target_court_id IS NULL"),
        ),
        CheckConstraint("target_start_at < target_end_at", name="time_order"),
        CheckConstraint("position > 0", name="position_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_court_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("courts.id", ondelete="CASCADE"), nullable=True
    )
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    target_start_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    target_end_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[WaitlistStatus] = mapped_column(
        Enum(WaitlistStatus), nullable=False, default=WaitlistStatus.PENDING
    )

    user: Mapped["User"] = relationship("User")
    target_court: Mapped["Court | None"] = relationship("Court")
    offers: Mapped[list["WaitlistOffer"]] = relationship(
        "WaitlistOffer", back_populates="entry", cascade="all, delete-orphan"
    )


class WaitlistOffer(TimestampMixin, Base):
    """A time-limited invitation for an entry to claim a freed court."""

    __tablename__ = "waitlist_offers"
    __table_args__ = (
        Index(
            "ux_waitlist_offers_entry_pending",
            "waitlist_entry_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_waitlist_offers_status_expires", "status", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    waitlist_entry_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("waitlist_entries.id", ondelete="CASCADE"), nullable=False
    )
    court_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("courts.id", ondelete="SET NULL"), nullable=True
    )
    offered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[WaitlistOfferStatus] = mapped_column(
        Enum(WaitlistOfferStatus),
        nullable=False,
        default=WaitlistOfferStatus.PENDING,
    )
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reservation_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True
    )

    entry: Mapped["WaitlistEntry"] = relationship("WaitlistEntry", back_populates="offers")
