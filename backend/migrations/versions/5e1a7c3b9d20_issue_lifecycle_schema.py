"""Issue lifecycle schema.

Revision ID: 5e1a7c3b9d20
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from geoalchemy2 import Geometry
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "5e1a7c3b9d20"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # PostGIS is required for Geometry columns.
    op.execute(sa.text("CREATE EXTENSION IF NOT EXISTS postgis"))
    op.execute(sa.text("CREATE SEQUENCE IF NOT EXISTS issue_number_seq"))

    op.create_table(
        "departments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.UniqueConstraint("code"),
        if_not_exists=True,
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("sla_hours", sa.Integer(), server_default=sa.text("72"), nullable=False),
        sa.Column(
            "default_priority", sa.String(length=10), server_default="medium", nullable=False
        ),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.UniqueConstraint("code"),
        if_not_exists=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), server_default="citizen", nullable=False),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "notification_preferences",
            JSONB(),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.UniqueConstraint("email"),
        if_not_exists=True,
    )

    op.create_table(
        "issues",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("number", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_id", sa.String(length=36), nullable=False),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("is_emergency", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("tags", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column(
            "location", Geometry("POINT", srid=4326, spatial_index=False), nullable=False
        ),
        sa.Column("address", JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("reported_by", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("assigned_department_id", sa.String(length=36), nullable=True),
        sa.Column("assigned_user_id", sa.String(length=36), nullable=True),
        sa.Column("escalation_level", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_breach_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_resolution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voters", JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("followers", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("comments", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("view_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("share_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("feedback", JSONB(), nullable=True),
        sa.Column("urgency_score", sa.Integer(), nullable=True),
        sa.Column("is_duplicate", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("original_issue_id", sa.String(length=36), nullable=True),
        sa.Column("duplicate_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_by", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.ForeignKeyConstraint(["reported_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["original_issue_id"], ["issues.id"]),
        sa.UniqueConstraint("number"),
        if_not_exists=True,
    )

    op.create_table(
        "issue_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("issue_id", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("previous_status", sa.String(length=20), nullable=True),
        sa.Column("changed_by", sa.String(length=36), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        if_not_exists=True,
    )

    op.create_table(
        "issue_escalations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("issue_id", sa.String(length=36), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("escalated_by", sa.String(length=36), nullable=False),
        sa.Column("escalated_to", sa.String(length=36), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        if_not_exists=True,
    )

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("notification_id", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=10), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(length=30), nullable=True),
        sa.Column("issue_id", sa.String(length=36), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "logged_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        if_not_exists=True,
    )

    # Spatial index for bounding box queries
    op.create_index(
        "idx_issues_location",
        "issues",
        ["location"],
        unique=False,
        postgresql_using="gist",
        if_not_exists=True,
    )
    op.create_index(
        "idx_issues_category_created",
        "issues",
        ["category_id", sa.text("created_at DESC")],
        unique=False,
        if_not_exists=True,
    )
    op.create_index("ix_issues_status", "issues", ["status"], if_not_exists=True)
    op.create_index("ix_issues_priority", "issues", ["priority"], if_not_exists=True)
    op.create_index("ix_issues_sla_deadline", "issues", ["sla_deadline"], if_not_exists=True)
    op.create_index("ix_issues_urgency_score", "issues", ["urgency_score"], if_not_exists=True)
    op.create_index(
        "ix_issues_assigned_department_id",
        "issues",
        ["assigned_department_id"],
        if_not_exists=True,
    )
    op.create_index("ix_users_role", "users", ["role"], if_not_exists=True)
    op.create_index("ix_users_department_id", "users", ["department_id"], if_not_exists=True)
    op.create_index(
        "idx_status_history_issue",
        "issue_status_history",
        ["issue_id", "position"],
        unique=True,
        if_not_exists=True,
    )
    op.create_index(
        "idx_escalations_issue",
        "issue_escalations",
        ["issue_id", "level"],
        unique=True,
        if_not_exists=True,
    )
    op.create_index(
        "ix_notification_log_notification_id",
        "notification_log",
        ["notification_id"],
        unique=True,
        if_not_exists=True,
    )
    op.create_index(
        "idx_notification_log_issue",
        "notification_log",
        ["issue_id", sa.text("logged_at DESC")],
        if_not_exists=True,
    )
    op.create_index(
        "idx_notification_log_inbox",
        "notification_log",
        ["user_id", "channel", sa.text("sent_at DESC")],
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_index("idx_notification_log_inbox", table_name="notification_log", if_exists=True)
    op.drop_index("idx_notification_log_issue", table_name="notification_log", if_exists=True)
    op.drop_index(
        "ix_notification_log_notification_id", table_name="notification_log", if_exists=True
    )
    op.drop_index("idx_escalations_issue", table_name="issue_escalations", if_exists=True)
    op.drop_index("idx_status_history_issue", table_name="issue_status_history", if_exists=True)
    op.drop_index("ix_users_department_id", table_name="users", if_exists=True)
    op.drop_index("ix_users_role", table_name="users", if_exists=True)
    op.drop_index("ix_issues_assigned_department_id", table_name="issues", if_exists=True)
    op.drop_index("ix_issues_urgency_score", table_name="issues", if_exists=True)
    op.drop_index("ix_issues_sla_deadline", table_name="issues", if_exists=True)
    op.drop_index("ix_issues_priority", table_name="issues", if_exists=True)
    op.drop_index("ix_issues_status", table_name="issues", if_exists=True)
    op.drop_index("idx_issues_category_created", table_name="issues", if_exists=True)
    op.drop_index("idx_issues_location", table_name="issues", if_exists=True)

    op.drop_table("notification_log", if_exists=True)
    op.drop_table("issue_escalations", if_exists=True)
    op.drop_table("issue_status_history", if_exists=True)
    op.drop_table("issues", if_exists=True)
    op.drop_table("users", if_exists=True)
    op.drop_table("categories", if_exists=True)
    op.drop_table("departments", if_exists=True)

    op.execute(sa.text("DROP SEQUENCE IF EXISTS issue_number_seq"))
