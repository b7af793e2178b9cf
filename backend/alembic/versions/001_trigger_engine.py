"""Trigger engine schema: users, activity events, triggers, scheduled notifications, audit tables, throttle settings."""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "app_users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("auth_user_id", sa.String(64), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("push_token", sa.String(256), nullable=True),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(16), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_user_id"),
    )

    op.create_table(
        "analytics_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("event_name", sa.String(64), nullable=False),
        sa.Column("event_data", _JSON, nullable=True),
        sa.Column("device_info", _JSON, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_analytics_events_user_timestamp", "analytics_events", ["user_id", "timestamp"])
    op.create_index("ix_analytics_events_name_timestamp", "analytics_events", ["event_name", "timestamp"])

    op.create_table(
        "notification_triggers",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.String(32), nullable=False),
        sa.Column("condition_config", _JSON, nullable=False),
        sa.Column("template_id", sa.String(36), nullable=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("body", sa.String(500), nullable=False),
        sa.Column("target_audience", _JSON, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_triggers_trigger_type", "notification_triggers", ["trigger_type"])

    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("body", sa.String(500), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("target_audience", _JSON, nullable=True),
        sa.Column("data", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("recipients_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recipients_delivered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recipients_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_report", _JSON, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scheduled_notifications_status_scheduled", "scheduled_notifications", ["status", "scheduled_for"]
    )

    # Audit: one row per send attempt
    op.create_table(
        "trigger_executions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("trigger_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("executed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("notification_id", sa.String(36), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("condition_values", _JSON, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trigger_executions_trigger_id", "trigger_executions", ["trigger_id"])
    op.create_index(
        "ix_trigger_executions_trigger_user_executed", "trigger_executions", ["trigger_id", "user_id", "executed_at"]
    )

    # Audit: one row per delivered (user, notification); sole input to throttling
    op.create_table(
        "user_notification_history",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("notification_id", sa.String(36), nullable=False),
        sa.Column("trigger_id", sa.String(36), nullable=True),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("throttle_key", sa.String(96), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_notification_history_user_sent", "user_notification_history", ["user_id", "sent_at"])
    op.create_index("ix_user_notification_history_throttle_key", "user_notification_history", ["throttle_key"])

    op.create_table(
        "throttle_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("max_notifications_per_day", sa.Integer(), nullable=False),
        sa.Column("cooldown_hours_between_campaigns", sa.Integer(), nullable=False),
        sa.Column("priority_override_threshold", sa.Integer(), nullable=False),
        sa.Column("respect_user_preferences", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "notification_analytics",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("notification_id", sa.String(36), nullable=False),
        sa.Column("event_type", sa.String(16), nullable=False),
        sa.Column("device_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("metadata", _JSON, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_analytics_notification_id", "notification_analytics", ["notification_id"])


def downgrade() -> None:
    op.drop_index("ix_notification_analytics_notification_id", table_name="notification_analytics")
    op.drop_table("notification_analytics")
    op.drop_table("throttle_settings")
    op.drop_index("ix_user_notification_history_throttle_key", table_name="user_notification_history")
    op.drop_index("ix_user_notification_history_user_sent", table_name="user_notification_history")
    op.drop_table("user_notification_history")
    op.drop_index("ix_trigger_executions_trigger_user_executed", table_name="trigger_executions")
    op.drop_index("ix_trigger_executions_trigger_id", table_name="trigger_executions")
    op.drop_table("trigger_executions")
    op.drop_index("ix_scheduled_notifications_status_scheduled", table_name="scheduled_notifications")
    op.drop_table("scheduled_notifications")
    op.drop_index("ix_notification_triggers_trigger_type", table_name="notification_triggers")
    op.drop_table("notification_triggers")
    op.drop_index("ix_analytics_events_name_timestamp", table_name="analytics_events")
    op.drop_index("ix_analytics_events_user_timestamp", table_name="analytics_events")
    op.drop_table("analytics_events")
    op.drop_table("app_users")
