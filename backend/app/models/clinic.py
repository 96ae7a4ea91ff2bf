"""Clinic formats that staff schedule as court reservations."""

from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


class ClinicType(TimestampMixin, Base):
    """Enrollment bounds shared by every session of a clinic."""

    __tablename__ = "clinic_types"
    __table_args__ = (
        CheckConstraint("min_participants > 0", name="clinic_min_positive"),
        CheckConstraint("max_participants > 0", name="clinic_max_positive"),
        CheckConstraint("min_participants <= max_participants", name="clinic_bounds"),
        Index("ix_clinic_types_facility", "facility_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    min_participants: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
