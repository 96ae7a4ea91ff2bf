"""User model for members, pros and staff identities."""
from __future__ import annotations

import enum
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.organization import Organization


class UserRole(str, enum.Enum):
    """Role enumeration for platform permissions."""

    ADMIN = "admin"
    STAFF = "staff"
    PRO = "pro"
    MEMBER = "member"


STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF, UserRole.PRO})


class UserStatus(str, enum.Enum):
    """Enumerates user activation states."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(TimestampMixin, Base):
    """Identity consumed by the booking core; managed elsewhere."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    home_facility_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("facilities.id", ondelete="SET NULL")
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False
    )
    membership_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="users"
    )

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
