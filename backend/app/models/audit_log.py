"""Audit log entries explaining automated and staff decisions."""

from __future__ import annotations

import uuid
from typing import Any, TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import CreatedAtMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.user import User


class AuditAction:
    """Action names written to ``AuditLogEntry.action``."""

    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    CANCELLED = "cancelled"
    AUTO_SCALE_OVERRIDE = "auto_scale_override"
    AUTO_SCALE_RULE_DISABLED = "auto_scale_rule_disabled"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    WAITLIST_OFFERED = "waitlist_offered"
    WAITLIST_OFFER_EXPIRED = "waitlist_offer_expired"


class AuditLogEntry(CreatedAtMixin, Base):
    """Immutable before/after record of a decision."""

    __tablename__ = "audit_log_entries"
    __table_args__ = (
        Index("ix_audit_log_session", "open_play_session_id"),
        Index("ix_audit_log_facility_created", "facility_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    facility_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("facilities.id", ondelete="SET NULL")
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    open_play_session_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("open_play_sessions.id", ondelete="SET NULL")
    )
    waitlist_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("waitlist_entries.id", ondelete="SET NULL")
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    before_state: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    after_state: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    reason: Mapped[str | None] = mapped_column(String(1024))

    user: Mapped["User | None"] = relationship("User")
