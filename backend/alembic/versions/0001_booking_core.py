"""Booking core schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy persists enum member names.
user_role = sa.Enum("ADMIN", "STAFF", "PRO", "MEMBER", name="userrole")
user_status = sa.Enum("ACTIVE", "SUSPENDED", name="userstatus")
court_status = sa.Enum("ACTIVE", "MAINTENANCE", name="courtstatus")
reservation_status = sa.Enum("ACTIVE", "CANCELLED", name="reservationstatus")
reservation_type = sa.Enum(
    "GAME",
    "PRO_SESSION",
    "OPEN_PLAY",
    "CLINIC",
    "LEAGUE",
    "EVENT",
    "MAINTENANCE",
    name="reservationtype",
)
open_play_status = sa.Enum(
    "SCHEDULED", "CANCELLED", "COMPLETED", name="openplaysessionstatus"
)
waitlist_mode = sa.Enum("BROADCAST", "SEQUENTIAL", name="waitlistnotificationmode")
waitlist_status = sa.Enum(
    "PENDING", "NOTIFIED", "EXPIRED", "FULFILLED", name="waitliststatus"
)
offer_status = sa.Enum("PENDING", "ACCEPTED", "EXPIRED", name="waitlistofferstatus")
package_kind = sa.Enum("VISIT", "LESSON", name="packagekind")
package_type_status = sa.Enum("ACTIVE", "INACTIVE", name="packagetypestatus")
package_status = sa.Enum("ACTIVE", "EXPIRED", "DEPLETED", name="packagestatus")
notification_type = sa.Enum(
    "SCALE_UP",
    "SCALE_DOWN",
    "CANCELLED",
    "LESSON_CANCELLED",
    "CLINIC_ENROLLMENT_BELOW_MINIMUM",
    name="staffnotificationtype",
)


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True)


def _fk(name: str, target: str, *, ondelete: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Uuid(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _timestamps() -> list[sa.Column]:
    return [
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column(
            "cross_facility_redemption",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
    )

    op.create_table(
        "facilities",
        _id(),
        _fk("organization_id", "organizations.id", ondelete="CASCADE"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("max_advance_booking_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("max_member_reservations", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("lesson_min_notice_hours", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("min_booking_minutes", sa.Integer(), nullable=False, server_default="60"),
        *_timestamps(),
        sa.CheckConstraint("max_advance_booking_days >= 0", name="advance_days_nonnegative"),
        sa.CheckConstraint("max_member_reservations >= 0", name="member_limit_nonnegative"),
        sa.CheckConstraint("lesson_min_notice_hours >= 0", name="lesson_notice_nonnegative"),
        sa.CheckConstraint("min_booking_minutes > 0", name="min_booking_positive"),
    )

    op.create_table(
        "users",
        _id(),
        _fk("organization_id", "organizations.id", ondelete="CASCADE"),
        _fk("home_facility_id", "facilities.id", ondelete="SET NULL", nullable=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("status", user_status, nullable=False, server_default="ACTIVE"),
        sa.Column("membership_level", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )

    op.create_table(
        "courts",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("court_number", sa.Integer(), nullable=False),
        sa.Column("status", court_status, nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.UniqueConstraint("facility_id", "court_number", name="uq_courts_facility_number"),
    )
    op.create_index("ix_courts_facility_id", "courts", ["facility_id"])

    op.create_table(
        "open_play_rules",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("min_participants", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("max_participants_per_court", sa.Integer(), nullable=False, server_default="8"),
        sa.Column("cancellation_cutoff_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("auto_scale_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_courts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_courts", sa.Integer(), nullable=False, server_default="4"),
        *_timestamps(),
        sa.CheckConstraint("min_participants > 0", name="min_participants_positive"),
        sa.CheckConstraint("max_participants_per_court > 0", name="max_per_court_positive"),
        sa.CheckConstraint("cancellation_cutoff_minutes >= 0", name="cutoff_nonnegative"),
        sa.CheckConstraint("min_courts > 0", name="min_courts_positive"),
        sa.CheckConstraint("min_courts <= max_courts", name="court_bounds"),
        sa.CheckConstraint(
            "min_participants <= max_participants_per_court * min_courts",
            name="participants_fit_min_courts",
        ),
    )
    op.create_index("ix_open_play_rules_facility", "open_play_rules", ["facility_id"])

    op.create_table(
        "clinic_types",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("min_participants", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_participants", sa.Integer(), nullable=False, server_default="12"),
        *_timestamps(),
        sa.CheckConstraint("min_participants > 0", name="clinic_min_positive"),
        sa.CheckConstraint("max_participants > 0", name="clinic_max_positive"),
        sa.CheckConstraint("min_participants <= max_participants", name="clinic_bounds"),
    )
    op.create_index("ix_clinic_types_facility", "clinic_types", ["facility_id"])

    op.create_table(
        "reservations",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("reservation_type", reservation_type, nullable=False),
        sa.Column("status", reservation_status, nullable=False, server_default="ACTIVE"),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        _fk("primary_user_id", "users.id", ondelete="SET NULL", nullable=True),
        _fk("created_by_user_id", "users.id", ondelete="RESTRICT"),
        _fk("pro_id", "users.id", ondelete="SET NULL", nullable=True),
        _fk("open_play_rule_id", "open_play_rules.id", ondelete="SET NULL", nullable=True),
        _fk("clinic_type_id", "clinic_types.id", ondelete="SET NULL", nullable=True),
        sa.Column("notes", sa.String(length=1024)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.CheckConstraint("start_at < end_at", name="time_order"),
    )
    op.create_index(
        "ix_reservations_facility_window",
        "reservations",
        ["facility_id", "start_at", "end_at"],
    )
    op.create_index("ix_reservations_primary_user", "reservations", ["primary_user_id"])

    op.create_table(
        "reservation_courts",
        _id(),
        _fk("reservation_id", "reservations.id", ondelete="CASCADE"),
        _fk("court_id", "courts.id", ondelete="CASCADE"),
        sa.UniqueConstraint("reservation_id", "court_id", name="uq_reservation_courts_pair"),
    )
    op.create_index("ix_reservation_courts_court", "reservation_courts", ["court_id"])

    op.create_table(
        "reservation_participants",
        _id(),
        _fk("reservation_id", "reservations.id", ondelete="CASCADE"),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        sa.UniqueConstraint(
            "reservation_id", "user_id", name="uq_reservation_participants_pair"
        ),
    )

    op.create_table(
        "cancellation_policy_tiers",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("reservation_type", reservation_type, nullable=True),
        sa.Column("min_hours_before", sa.Integer(), nullable=False),
        sa.Column("refund_percentage", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "facility_id",
            "reservation_type",
            "min_hours_before",
            name="uq_cancellation_tiers_facility_type_hours",
        ),
        sa.CheckConstraint("min_hours_before >= 0", name="min_hours_nonnegative"),
        sa.CheckConstraint(
            "refund_percentage >= 0 AND refund_percentage <= 100",
            name="refund_percentage_range",
        ),
    )
    op.create_index(
        "ux_cancellation_tiers_facility_any_type_hours",
        "cancellation_policy_tiers",
        ["facility_id", "min_hours_before"],
        unique=True,
        postgresql_where=sa.text("reservation_type IS NULL"),
        sqlite_where=sa.text("reservation_type IS NULL"),
    )

    op.create_table(
        "reservation_cancellations",
        _id(),
        _fk("reservation_id", "reservations.id", ondelete="CASCADE"),
        _fk("cancelled_by_user_id", "users.id", ondelete="RESTRICT"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refund_percentage_applied", sa.Integer(), nullable=False),
        sa.Column("fee_waived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("hours_before_start", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("reservation_id", name="uq_reservation_cancellations_reservation"),
        sa.CheckConstraint("hours_before_start >= 0", name="hours_nonnegative"),
        sa.CheckConstraint(
            "refund_percentage_applied >= 0 AND refund_percentage_applied <= 100",
            name="refund_applied_range",
        ),
    )

    op.create_table(
        "cancellation_quotes",
        _id(),
        _fk("reservation_id", "reservations.id", ondelete="CASCADE"),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        sa.Column("refund_percentage", sa.Integer(), nullable=False),
        sa.Column("hours_before_start", sa.Integer(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index(
        "ix_cancellation_quotes_reservation", "cancellation_quotes", ["reservation_id"]
    )
    op.create_index("ix_cancellation_quotes_expires", "cancellation_quotes", ["expires_at"])

    op.create_table(
        "open_play_sessions",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        _fk("open_play_rule_id", "open_play_rules.id", ondelete="CASCADE"),
        _fk("reservation_id", "reservations.id", ondelete="SET NULL", nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", open_play_status, nullable=False, server_default="SCHEDULED"),
        sa.Column("current_court_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("auto_scale_override", sa.Boolean(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancellation_reason", sa.String(length=512)),
        *_timestamps(),
        sa.CheckConstraint("start_at < end_at", name="time_order"),
        sa.CheckConstraint("current_court_count >= 0", name="court_count_nonnegative"),
    )
    op.create_index(
        "ix_open_play_sessions_status_start", "open_play_sessions", ["status", "start_at"]
    )
    op.create_index("ix_open_play_sessions_facility", "open_play_sessions", ["facility_id"])

    op.create_table(
        "waitlist_configs",
        _id(),
        sa.Column(
            "facility_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("facilities.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("max_waitlist_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notification_mode", waitlist_mode, nullable=False, server_default="BROADCAST"),
        sa.Column("offer_expiry_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("notification_window_minutes", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("max_waitlist_size >= 0", name="max_size_nonnegative"),
        sa.CheckConstraint("notification_window_minutes >= 0", name="window_nonnegative"),
    )

    op.create_table(
        "waitlist_entries",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        _fk("target_court_id", "courts.id", ondelete="CASCADE", nullable=True),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("target_start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("target_end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", waitlist_status, nullable=False, server_default="PENDING"),
        *_timestamps(),
        sa.CheckConstraint("target_start_at < target_end_at", name="time_order"),
        sa.CheckConstraint("position > 0", name="position_positive"),
    )
    slot_columns = ["facility_id", "target_date", "target_start_at", "target_end_at"]
    op.create_index("ix_waitlist_slot", "waitlist_entries", slot_columns)
    op.create_index("ix_waitlist_status", "waitlist_entries", ["status"])
    op.create_index("ix_waitlist_user", "waitlist_entries", ["user_id"])
    for name, extra, predicate in (
        ("ux_waitlist_slot_court_user", ["target_court_id", "user_id"], "target_court_id IS NOT NULL"),
        ("ux_waitlist_slot_any_court_user", ["user_id"], "target_court_id IS NULL"),
        ("ux_waitlist_slot_court_position", ["target_court_id", "position"], "target_court_id IS NOT NULL"),
        ("ux_waitlist_slot_any_court_position", ["position"], "target_court_id IS NULL"),
    ):
        op.create_index(
            name,
            "waitlist_entries",
            slot_columns + extra,
            unique=True,
            postgresql_where=sa.text(predicate),
            sqlite_where=sa.text(predicate),
        )

    op.create_table(
        "waitlist_offers",
        _id(),
        _fk("waitlist_entry_id", "waitlist_entries.id", ondelete="CASCADE"),
        _fk("court_id", "courts.id", ondelete="SET NULL", nullable=True),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", offer_status, nullable=False, server_default="PENDING"),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        _fk("reservation_id", "reservations.id", ondelete="SET NULL", nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ux_waitlist_offers_entry_pending",
        "waitlist_offers",
        ["waitlist_entry_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )
    op.create_index(
        "ix_waitlist_offers_status_expires", "waitlist_offers", ["status", "expires_at"]
    )

    op.create_table(
        "package_types",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("kind", package_kind, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit_count", sa.Integer(), nullable=False),
        sa.Column("valid_days", sa.Integer(), nullable=False),
        sa.Column("status", package_type_status, nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.CheckConstraint("unit_count > 0", name="unit_count_positive"),
        sa.CheckConstraint("valid_days > 0", name="valid_days_positive"),
    )

    op.create_table(
        "prepaid_packages",
        _id(),
        _fk("package_type_id", "package_types.id", ondelete="RESTRICT"),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("kind", package_kind, nullable=False),
        sa.Column("unit_count", sa.Integer(), nullable=False),
        sa.Column("units_remaining", sa.Integer(), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", package_status, nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.CheckConstraint("units_remaining >= 0", name="remaining_nonnegative"),
        sa.CheckConstraint("units_remaining <= unit_count", name="remaining_within_cap"),
    )
    op.create_index("ix_prepaid_packages_user_kind", "prepaid_packages", ["user_id", "kind"])

    op.create_table(
        "package_redemptions",
        _id(),
        _fk("package_id", "prepaid_packages.id", ondelete="CASCADE"),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        _fk("reservation_id", "reservations.id", ondelete="SET NULL", nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_package_redemptions_reservation", "package_redemptions", ["reservation_id"]
    )
    op.create_index("ix_package_redemptions_package", "package_redemptions", ["package_id"])

    op.create_table(
        "audit_log_entries",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="SET NULL", nullable=True),
        _fk("user_id", "users.id", ondelete="SET NULL", nullable=True),
        _fk("open_play_session_id", "open_play_sessions.id", ondelete="SET NULL", nullable=True),
        _fk("waitlist_entry_id", "waitlist_entries.id", ondelete="SET NULL", nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("before_state", sa.JSON()),
        sa.Column("after_state", sa.JSON()),
        sa.Column("reason", sa.String(length=1024)),
        _created_at(),
    )
    op.create_index("ix_audit_log_session", "audit_log_entries", ["open_play_session_id"])
    op.create_index(
        "ix_audit_log_facility_created", "audit_log_entries", ["facility_id", "created_at"]
    )

    op.create_table(
        "staff_notifications",
        _id(),
        _fk("facility_id", "facilities.id", ondelete="CASCADE"),
        sa.Column("notification_type", notification_type, nullable=False),
        sa.Column("message", sa.String(length=1024), nullable=False),
        _fk("related_session_id", "open_play_sessions.id", ondelete="SET NULL", nullable=True),
        _fk("related_reservation_id", "reservations.id", ondelete="SET NULL", nullable=True),
        _fk("target_staff_id", "users.id", ondelete="SET NULL", nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index(
        "ix_staff_notifications_facility_created",
        "staff_notifications",
        ["facility_id", "created_at"],
    )
    op.create_index("ix_staff_notifications_target", "staff_notifications", ["target_staff_id"])


def downgrade() -> None:
    for table in (
        "staff_notifications",
        "audit_log_entries",
        "package_redemptions",
        "prepaid_packages",
        "package_types",
        "waitlist_offers",
        "waitlist_entries",
        "waitlist_configs",
        "open_play_sessions",
        "cancellation_quotes",
        "reservation_cancellations",
        "cancellation_policy_tiers",
        "reservation_participants",
        "reservation_courts",
        "reservations",
        "open_play_rules",
        "clinic_types",
        "courts",
        "users",
        "facilities",
        "organizations",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (
        notification_type,
        package_status,
        package_type_status,
        package_kind,
        offer_status,
        waitlist_status,
        waitlist_mode,
        open_play_status,
        reservation_type,
        reservation_status,
        court_status,
        user_status,
        user_role,
    ):
        enum_type.drop(bind, checkfirst=True)
