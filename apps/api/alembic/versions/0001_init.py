"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id(name: str = "id", **kw) -> sa.Column:
  return sa.Column(name, sa.String(length=36), **kw)


def _timestamps() -> list[sa.Column]:
  return [
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  ]


def upgrade() -> None:
  op.create_table(
    "users",
    _id(primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    *_timestamps(),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "projects",
    _id(primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    _id("owner_id", sa.ForeignKey("users.id"), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_projects_owner_id", "projects", ["owner_id"], unique=False)

  op.create_table(
    "project_columns",
    _id(primary_key=True),
    _id("project_id", sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("column_type", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("width", sa.Integer(), nullable=False, server_default="150"),
    sa.Column("is_visible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("settings", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    *_timestamps(),
  )
  op.create_index("ix_project_columns_project_id", "project_columns", ["project_id"], unique=False)

  op.create_table(
    "task_groups",
    _id(primary_key=True),
    _id("project_id", sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("color", sa.String(), nullable=False, server_default="#3498db"),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("is_collapsed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    *_timestamps(),
  )
  op.create_index("ix_task_groups_project_id", "task_groups", ["project_id"], unique=False)

  op.create_table(
    "tasks",
    _id(primary_key=True),
    _id("project_id", sa.ForeignKey("projects.id"), nullable=False),
    _id("group_id", sa.ForeignKey("task_groups.id"), nullable=True),
    _id("parent_task_id", sa.ForeignKey("tasks.id"), nullable=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),
    sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
    _id("assignee_id", sa.ForeignKey("users.id"), nullable=True),
    sa.Column("additional_assignee_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    _id("created_by", sa.ForeignKey("users.id"), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    *_timestamps(),
  )
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_group_id", "tasks", ["group_id"], unique=False)
  op.create_index("ix_tasks_parent_task_id", "tasks", ["parent_task_id"], unique=False)

  op.create_table(
    "task_column_values",
    _id(primary_key=True),
    _id("task_id", sa.ForeignKey("tasks.id"), nullable=False),
    _id("column_id", sa.ForeignKey("project_columns.id"), nullable=False),
    sa.Column("value_text", sa.Text(), nullable=True),
    sa.Column("value_number", sa.Float(), nullable=True),
    sa.Column("value_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("value_bool", sa.Boolean(), nullable=True),
    sa.Column("value_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    *_timestamps(),
    sa.UniqueConstraint("task_id", "column_id", name="ux_task_column_values_task_column"),
  )
  op.create_index("ix_task_column_values_task_id", "task_column_values", ["task_id"], unique=False)
  op.create_index("ix_task_column_values_column_id", "task_column_values", ["column_id"], unique=False)

  op.create_table(
    "task_comments",
    _id(primary_key=True),
    _id("task_id", sa.ForeignKey("tasks.id"), nullable=False),
    _id("author_id", sa.ForeignKey("users.id"), nullable=True),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_comments_task_id", "task_comments", ["task_id"], unique=False)

  op.create_table(
    "task_attachments",
    _id(primary_key=True),
    _id("task_id", sa.ForeignKey("tasks.id"), nullable=False),
    _id("uploaded_by", sa.ForeignKey("users.id"), nullable=True),
    sa.Column("file_name", sa.String(), nullable=False),
    sa.Column("file_url", sa.String(), nullable=False),
    sa.Column("mime", sa.String(), nullable=True),
    sa.Column("size_bytes", sa.Integer(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_attachments_task_id", "task_attachments", ["task_id"], unique=False)

  op.create_table(
    "automation_rules",
    _id(primary_key=True),
    _id("project_id", sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("trigger", sa.String(), nullable=False),
    sa.Column("trigger_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("action_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    _id("created_by", sa.ForeignKey("users.id"), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_automation_rules_project_id", "automation_rules", ["project_id"], unique=False)

  op.create_table(
    "rule_firings",
    _id(primary_key=True),
    _id("rule_id", sa.ForeignKey("automation_rules.id"), nullable=False),
    _id("task_id", sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("fired_on", sa.Date(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("rule_id", "task_id", "fired_on", name="ux_rule_firings_rule_task_day"),
  )
  op.create_index("ix_rule_firings_rule_id", "rule_firings", ["rule_id"], unique=False)
  op.create_index("ix_rule_firings_task_id", "rule_firings", ["task_id"], unique=False)

  op.create_table(
    "in_app_notifications",
    _id(primary_key=True),
    _id("user_id", sa.ForeignKey("users.id"), nullable=False),
    _id("project_id", nullable=True),
    sa.Column("level", sa.String(), nullable=False, server_default="info"),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("event_type", sa.String(), nullable=True),
    sa.Column("entity_type", sa.String(), nullable=True),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_in_app_notifications_user_id", "in_app_notifications", ["user_id"], unique=False)
  op.create_index("ix_in_app_notifications_project_id", "in_app_notifications", ["project_id"], unique=False)

  op.create_table(
    "audit_events",
    _id(primary_key=True),
    _id("project_id", nullable=True),
    _id("task_id", nullable=True),
    sa.Column("actor_id", sa.String(), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_project_id", "audit_events", ["project_id"], unique=False)
  op.create_index("ix_audit_events_task_id", "audit_events", ["task_id"], unique=False)


def downgrade() -> None:
  op.drop_table("audit_events")
  op.drop_table("in_app_notifications")
  op.drop_table("rule_firings")
  op.drop_table("automation_rules")
  op.drop_table("task_attachments")
  op.drop_table("task_comments")
  op.drop_table("task_column_values")
  op.drop_table("tasks")
  op.drop_table("task_groups")
  op.drop_table("project_columns")
  op.drop_table("projects")
  op.drop_table("users")
