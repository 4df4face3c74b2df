# alembic/versions/001_initial_schema.py
"""Initial schema - users, topics, availability, packages, bookings, attendance, outbox

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

On PostgreSQL the bookings table also gets an exclusion constraint so two
non-cancelled bookings of one teacher can never overlap, whatever the
application layer does.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json_type() -> sa.types.TypeEngine:
    return postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    """Create booking engine tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("role IN ('STUDENT', 'TEACHER', 'ADMIN')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "topics",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("level", sa.String(32), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "availability_windows",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("teacher_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day_of_week"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
    )
    op.create_index(
        "ix_availability_teacher_day", "availability_windows", ["teacher_id", "day_of_week"]
    )

    op.create_table(
        "packages",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total_lessons", sa.Integer(), nullable=False),
        sa.Column("used_lessons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_lessons", sa.Integer(), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("total_lessons > 0", name="ck_packages_total_positive"),
        sa.CheckConstraint("used_lessons >= 0", name="ck_packages_used_non_negative"),
        sa.CheckConstraint("remaining_lessons >= 0", name="ck_packages_remaining_non_negative"),
        sa.CheckConstraint(
            "used_lessons + remaining_lessons = total_lessons",
            name="ck_packages_ledger_balanced",
        ),
    )
    op.create_index("ix_packages_user_valid_until", "packages", ["user_id", "valid_until"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("teacher_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("topic_id", sa.String(26), sa.ForeignKey("topics.id"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column(
            "package_id",
            sa.String(26),
            sa.ForeignKey("packages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("external_event_ref", sa.String(255), nullable=True),
        sa.Column("external_meeting_link", sa.String(512), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("attended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('SCHEDULED', 'COMPLETED', 'NO_SHOW', 'CANCELLED')",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        sa.CheckConstraint("scheduled_at < ends_at", name="check_time_order"),
    )
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index(
        "ix_bookings_teacher_span", "bookings", ["teacher_id", "scheduled_at", "ends_at"]
    )

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE bookings
            ADD CONSTRAINT bookings_no_overlap_per_teacher
            EXCLUDE USING gist (
                teacher_id WITH =,
                tstzrange(scheduled_at, ends_at, '[)') WITH &&
            )
            WHERE (status <> 'CANCELLED')
            """
        )

    op.create_table(
        "attendance_logs",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(32), nullable=False, server_default="manual"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "action IN ('marked_present', 'marked_absent')", name="ck_attendance_logs_action"
        ),
    )
    op.create_index("ix_attendance_logs_booking_id", "attendance_logs", ["booking_id"])
    op.create_index("ix_attendance_logs_student_id", "attendance_logs", ["student_id"])

    op.create_table(
        "student_stats",
        sa.Column("student_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total_classes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attended_classes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attendance_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("student_id"),
    )

    op.create_table(
        "event_outbox",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("payload", _json_type(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),
    )
    op.create_index("ix_event_outbox_event_type", "event_outbox", ["event_type"])
    op.create_index("ix_event_outbox_aggregate_id", "event_outbox", ["aggregate_id"])
    op.create_index("ix_event_outbox_status", "event_outbox", ["status"])
    op.create_index("ix_event_outbox_next_attempt_at", "event_outbox", ["next_attempt_at"])
    op.create_index("ix_event_outbox_due", "event_outbox", ["status", "next_attempt_at"])

    op.create_table(
        "notification_delivery",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("payload", _json_type(), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_notification_delivery_idempotency"),
    )
    op.create_index(
        "ix_notification_delivery_event_type", "notification_delivery", ["event_type"]
    )


def downgrade() -> None:
    """Drop booking engine tables."""
    op.drop_table("notification_delivery")
    op.drop_table("event_outbox")
    op.drop_table("student_stats")
    op.drop_table("attendance_logs")
    op.drop_table("bookings")
    op.drop_table("packages")
    op.drop_table("availability_windows")
    op.drop_table("topics")
    op.drop_table("users")
