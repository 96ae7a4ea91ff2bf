"""Cancellation policy tiers, the cancellation log and pending quotes."""

from __future__ import annotations

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
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import CreatedAtMixin, TimestampMixin
from app.models.reservation import ReservationType

if TYPE_CHECKING:  # pragma: no cover
    from app.models.reservation import Reservation


class CancellationPolicyTier(TimestampMixin, Base):
    """Refund percentage granted when cancelling at least N hours ahead."""

    __tablename__ = "cancellation_policy_tiers"
    __table_args__ = (
        UniqueConstraint(
            "facility_id",
            "reservation_type",
            "min_hours_before",
            name="uq_cancellation_tiers_facility_type_hours",
        ),
        Index(
            "ux_cancellation_tiers_facility_any_type_hours",
            "facility_id",
            "min_hours_before",
            unique=True,
            postgresql_where=text("reservation_type IS NULL"),
            sqlite_where=text("reservation_type IS NULL"),
        ),
        CheckConstraint("min_hours_before >= 0", name="min_hours_nonnegative"),
        CheckConstraint(
            "refund_percentage >= 0 AND refund_percentage <= 100",
            name="refund_percentage_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    reservation_type: Mapped[ReservationType | None] = mapped_column(
        Enum(ReservationType), nullable=True
    )
    min_hours_before: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_percentage: Mapped[int] = mapped_column(Integer, nullable=False)


class ReservationCancellation(CreatedAtMixin, Base):
    """Append-only record written once per cancelled reservation."""

    __tablename__ = "reservation_cancellations"
    __table_args__ = (
        UniqueConstraint("reservation_id", name="uq_reservation_cancellations_reservation"),
        CheckConstraint("hours_before_start >= 0", name="hours_nonnegative"),
        CheckConstraint(
            "refund_percentage_applied >= 0 AND refund_percentage_applied <= 100",
            name="refund_applied_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    cancelled_by_user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    refund_percentage_applied: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_waived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hours_before_start: Mapped[int] = mapped_column(Integer, nullable=False)

    reservation: Mapped["Reservation"] = relationship("Reservation")


class CancellationQuote(CreatedAtMixin, Base):
    """Server-held penalty quote a member must confirm before cancelling."""

    __tablename__ = "cancellation_quotes"
    __table_args__ = (
        Index("ix_cancellation_quotes_reservation", "reservation_id"),
        Index("ix_cancellation_quotes_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    refund_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    hours_before_start: Mapped[int] = mapped_column(Integer, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
