"""Reservation models."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.facility import Court, Facility
    from app.models.user import User


class ReservationStatus(str, enum.Enum):
    """Lifecycle states for reservations."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class ReservationType(str, enum.Enum):
    """Kinds of court usage that can be booked."""

    GAME = "game"
    PRO_SESSION = "pro_session"
    OPEN_PLAY = "open_play"
    CLINIC = "clinic"
    LEAGUE = "league"
    EVENT = "event"
    MAINTENANCE = "maintenance"


class Reservation(TimestampMixin, Base):
    """A half-open [start_at, end_at) claim on one or more courts."""

    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="time_order"),
        Index("ix_reservations_facility_window", "facility_id", "start_at", "end_at"),
        Index("ix_reservations_primary_user", "primary_user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    reservation_type: Mapped[ReservationType] = mapped_column(
        Enum(ReservationType), nullable=False
    )
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus), default=ReservationStatus.ACTIVE, nullable=False
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    primary_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    pro_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    open_play_rule_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("open_play_rules.id", ondelete="SET NULL")
    )
    clinic_type_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("clinic_types.id", ondelete="SET NULL")
    )
    notes: Mapped[str | None] = mapped_column(String(1024))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    facility: Mapped["Facility"] = relationship("Facility")
    primary_user: Mapped["User | None"] = relationship(
        "User", foreign_keys=[primary_user_id]
    )
    pro: Mapped["User | None"] = relationship("User", foreign_keys=[pro_id])
    court_links: Mapped[list["ReservationCourt"]] = relationship(
        "ReservationCourt",
        back_populates="reservation",
        cascade="all, delete-orphan",
    )
    participant_links: Mapped[list["ReservationParticipant"]] = relationship(
        "ReservationParticipant",
        back_populates="reservation",
        cascade="all, delete-orphan",
    )

    @property
    def court_ids(self) -> list[uuid.UUID]:
        return [link.court_id for link in self.court_links]

    @property
    def participant_ids(self) -> list[uuid.UUID]:
        return [link.user_id for link in self.participant_links]

    @property
    def is_staff_created_for_other(self) -> bool:
        return self.created_by_user_id != self.primary_user_id


class ReservationCourt(Base):
    """Join row claiming a court for a reservation."""

    __tablename__ = "reservation_courts"
    __table_args__ = (
        UniqueConstraint("reservation_id", "court_id", name="uq_reservation_courts_pair"),
        Index("ix_reservation_courts_court", "court_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    court_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("courts.id", ondelete="CASCADE"), nullable=False
    )

    reservation: Mapped["Reservation"] = relationship(
        "Reservation", back_populates="court_links"
    )
    court: Mapped["Court"] = relationship("Court")


class ReservationParticipant(Base):
    """Join row listing a player on a reservation."""

    __tablename__ = "reservation_participants"
    __table_args__ = (
        UniqueConstraint(
            "reservation_id", "user_id", name="uq_reservation_participants_pair"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    reservation: Mapped["Reservation"] = relationship(
        "Reservation", back_populates="participant_links"
    )
    user: Mapped["User"] = relationship("User")
