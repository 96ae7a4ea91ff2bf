"""Organization model representing a tenant that owns facilities."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin


if TYPE_CHECKING:  # pragma: no cover - typing only imports
    from app.models.facility import Facility
    from app.models.user import User


class Organization(TimestampMixin, Base):
    """A tenant (club or operator) grouping one or more facilities."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    cross_facility_redemption: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    facilities: Mapped[list["Facility"]] = relationship(
        "Facility", back_populates="organization", cascade="all, delete-orphan"
    )
    users: Mapped[list["User"]] = relationship(
        "User", back_populates="organization", cascade="all, delete-orphan"
    )
