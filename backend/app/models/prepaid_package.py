"""Prepaid visit packs and lesson packages with their redemption log."""

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
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import CreatedAtMixin, TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.facility import Facility
    from app.models.user import User


class PackageKind(str, enum.Enum):
    """What one unit of a package buys."""

    VISIT = "visit"
    LESSON = "lesson"


class PackageTypeStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PackageStatus(str, enum.Enum):
    """Lifecycle of a purchased package."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class PackageType(TimestampMixin, Base):
    """Purchasable bundle offered by a facility."""

    __tablename__ = "package_types"
    __table_args__ = (
        CheckConstraint("unit_count > 0", name="unit_count_positive"),
        CheckConstraint("valid_days > 0", name="valid_days_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[PackageKind] = mapped_column(Enum(PackageKind), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_days: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PackageTypeStatus] = mapped_column(
        Enum(PackageTypeStatus), nullable=False, default=PackageTypeStatus.ACTIVE
    )


class PrepaidPackage(TimestampMixin, Base):
    """A member-owned balance of visits or lessons."""

    __tablename__ = "prepaid_packages"
    __table_args__ = (
        CheckConstraint("units_remaining >= 0", name="remaining_nonnegative"),
        CheckConstraint("units_remaining <= unit_count", name="remaining_within_cap"),
        Index("ix_prepaid_packages_user_kind", "user_id", "kind"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    package_type_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("package_types.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[PackageKind] = mapped_column(Enum(PackageKind), nullable=False)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False)
    units_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[PackageStatus] = mapped_column(
        Enum(PackageStatus), nullable=False, default=PackageStatus.ACTIVE
    )

    package_type: Mapped["PackageType"] = relationship("PackageType")
    facility: Mapped["Facility"] = relationship("Facility")
    user: Mapped["User"] = relationship("User")


class PackageRedemption(CreatedAtMixin, Base):
    """One consumed unit; deleted only when its reservation is cancelled."""

    __tablename__ = "package_redemptions"
    __table_args__ = (
        Index("ix_package_redemptions_reservation", "reservation_id"),
        Index("ix_package_redemptions_package", "package_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    package_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prepaid_packages.id", ondelete="CASCADE"), nullable=False
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False
    )
    reservation_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True
    )
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    package: Mapped["PrepaidPackage"] = relationship("PrepaidPackage")
