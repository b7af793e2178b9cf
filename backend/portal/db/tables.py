"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL. alembic/env.py asserts the registered models match.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "app_users",
    "analytics_events",
    "notification_triggers",
    "scheduled_notifications",
    "trigger_executions",
    "user_notification_history",
    "throttle_settings",
    "notification_analytics",
)
