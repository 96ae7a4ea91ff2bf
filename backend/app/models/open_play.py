"""Open play rules and the sessions scheduled from them."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.reservation import Reservation


class OpenPlaySessionStatus(str, enum.Enum):
    """Lifecycle of a drop-in session."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class OpenPlayRule(TimestampMixin, Base):
    """Facility policy deciding go/no-go and court scaling for open play."""

    __tablename__ = "open_play_rules"
    __table_args__ = (
        CheckConstraint("min_participants > 0", name="min_participants_positive"),
        CheckConstraint(
            "max_participants_per_court > 0", name="max_per_court_positive"
        ),
        CheckConstraint("cancellation_cutoff_minutes >= 0", name="cutoff_nonnegative"),
        CheckConstraint("min_courts > 0", name="min_courts_positive"),
        CheckConstraint("min_courts <= max_courts", name="court_bounds"),
        CheckConstraint(
            "min_participants <= max_participants_per_court * min_courts",
            name="participants_fit_min_courts",
        ),
        Index("ix_open_play_rules_facility", "facility_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    min_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    max_participants_per_court: Mapped[int] = mapped_column(
        Integer, nullable=False, default=8
    )
    cancellation_cutoff_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60
    )
    auto_scale_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    min_courts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_courts: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    sessions: Mapped[list["OpenPlaySession"]] = relationship(
        "OpenPlaySession", back_populates="rule"
    )


class OpenPlaySession(TimestampMixin, Base):
    """One occurrence of an open play rule backed by a reservation."""

    __tablename__ = "open_play_sessions"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="time_order"),
        CheckConstraint("current_court_count >= 0", name="court_count_nonnegative"),
        Index("ix_open_play_sessions_status_start", "status", "start_at"),
        Index("ix_open_play_sessions_facility", "facility_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    open_play_rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("open_play_rules.id", ondelete="CASCADE"), nullable=False
    )
    reservation_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL")
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[OpenPlaySessionStatus] = mapped_column(
        Enum(OpenPlaySessionStatus),
        nullable=False,
        default=OpenPlaySessionStatus.SCHEDULED,
    )
    current_court_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_scale_override: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(String(512))

    rule: Mapped["OpenPlayRule"] = relationship("OpenPlayRule", back_populates="sessions")
    reservation: Mapped["Reservation | None"] = relationship("Reservation")

    def auto_scale_active(self, rule: OpenPlayRule) -> bool:
        if self.auto_scale_override is not None:
            return self.auto_scale_override
        return rule.auto_scale_enabled
