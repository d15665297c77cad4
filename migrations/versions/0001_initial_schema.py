"""Initial wellness schema: accounts, companies, tasks, events and polls.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing = set(inspector.get_table_names())

    # ---------- Accounts ----------
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=True),
            sa.Column("first_name", sa.String(128), nullable=True),
            sa.Column("last_name", sa.String(128), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("email"),
        )

    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("key"),
        )

    if "permissions" not in existing:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("key"),
        )

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id", "role_id"),
        )

    if "role_permissions" not in existing:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("permission_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("role_id", "permission_id"),
        )

    if "audit_events" not in existing:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_audit_events_action", "audit_events", ["action"])
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    if "password_reset_tokens" not in existing:
        op.create_table(
            "password_reset_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token", sa.String(128), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("token"),
        )
        op.create_index("idx_password_reset_tokens_user", "password_reset_tokens", ["user_id"])

    # ---------- Companies & tasks ----------
    if "companies" not in existing:
        op.create_table(
            "companies",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("contact_person_name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("phone", sa.String(64), nullable=False),
            sa.Column("team_size", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("logo_url", sa.String(1024), nullable=True),
            sa.Column("branding_color", sa.String(16), nullable=False, server_default="#211100"),
            sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_calories_burned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("daily_goal", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("email"),
            sa.UniqueConstraint("user_id"),
        )
        op.create_index("idx_companies_points", "companies", ["total_points"])

    if "tasks" not in existing:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("video_url", sa.String(1024), nullable=True),
            sa.Column("points_reward", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("calories_burned", sa.Integer(), nullable=False, server_default="50"),
            sa.Column("date", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "task_proofs" not in existing:
        op.create_table(
            "task_proofs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("company_id", sa.Integer(), nullable=False),
            sa.Column("content_urls", JSON_TYPE, nullable=False),
            sa.Column("content_type", sa.String(16), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_task_proofs_company", "task_proofs", ["company_id"])
        op.create_index("idx_task_proofs_task", "task_proofs", ["task_id"])
        op.create_index("idx_task_proofs_status", "task_proofs", ["status"])

    # ---------- Events ----------
    if "events" not in existing:
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("event_date", sa.DateTime(), nullable=False),
            sa.Column("branding_color", sa.String(16), nullable=False, server_default="#211100"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("short_code", sa.String(50), nullable=True),
            sa.Column("email_subject", sa.String(255), nullable=True),
            sa.Column("email_body_text", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("short_code"),
        )

    if "event_registrations" not in existing:
        op.create_table(
            "event_registrations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), nullable=False),
            sa.Column("first_name", sa.String(128), nullable=False),
            sa.Column("last_name", sa.String(128), nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("phone", sa.String(64), nullable=False),
            sa.Column("company_name", sa.String(255), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("qr_code", sa.Text(), nullable=True),
            sa.Column("qr_code_payload", sa.Text(), nullable=True),
            sa.Column("qr_code_issued_at", sa.DateTime(), nullable=True),
            sa.Column("checked_in", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("checked_in_at", sa.DateTime(), nullable=True),
            sa.Column("registered_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("approved_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        )
        op.create_index("idx_event_registrations_event", "event_registrations", ["event_id"])
        op.create_index("idx_event_registrations_email", "event_registrations", ["email"])

    # ---------- Polls ----------
    if "poll_subjects" not in existing:
        op.create_table(
            "poll_subjects",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("short_code", sa.String(50), nullable=False),
            sa.Column("current_poll_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("short_code"),
        )

    if "polls" not in existing:
        op.create_table(
            "polls",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("subject_id", sa.Integer(), nullable=False),
            sa.Column("question", sa.Text(), nullable=False),
            sa.Column("options", JSON_TYPE, nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["subject_id"], ["poll_subjects.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("subject_id", "order_index", name="uq_polls_subject_order"),
        )
        op.create_index("idx_polls_subject", "polls", ["subject_id"])

    if "poll_votes" not in existing:
        op.create_table(
            "poll_votes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("poll_id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.String(128), nullable=False),
            sa.Column("option_id", sa.String(32), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["poll_id"], ["polls.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("poll_id", "session_id", name="uq_poll_votes_poll_session"),
        )
        op.create_index("idx_poll_votes_poll", "poll_votes", ["poll_id"])


def downgrade() -> None:
    op.drop_index("idx_poll_votes_poll", table_name="poll_votes")
    op.drop_table("poll_votes")
    op.drop_index("idx_polls_subject", table_name="polls")
    op.drop_table("polls")
    op.drop_table("poll_subjects")

    op.drop_index("idx_event_registrations_email", table_name="event_registrations")
    op.drop_index("idx_event_registrations_event", table_name="event_registrations")
    op.drop_table("event_registrations")
    op.drop_table("events")

    op.drop_index("idx_task_proofs_status", table_name="task_proofs")
    op.drop_index("idx_task_proofs_task", table_name="task_proofs")
    op.drop_index("idx_task_proofs_company", table_name="task_proofs")
    op.drop_table("task_proofs")
    op.drop_table("tasks")
    op.drop_index("idx_companies_points", table_name="companies")
    op.drop_table("companies")

    op.drop_index("idx_password_reset_tokens_user", table_name="password_reset_tokens")
    op.drop_table("password_reset_tokens")
    op.drop_index("idx_audit_events_entity", table_name="audit_events")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
