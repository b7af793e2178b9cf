"""
Centralized constants for the trigger engine and scheduler.

Change job IDs, event names or status values here instead of scattering literals
across services, routes and migrations.
"""
# Scheduler job IDs (must match ids used in main.py add_job)
TRIGGER_JOB_ID = "process_triggers"

# Trigger types (notification_triggers.trigger_type)
TRIGGER_USER_INACTIVE = "user_inactive"
TRIGGER_SIGNUP_INCOMPLETE = "signup_incomplete"
TRIGGER_VIDEO_ABANDONED = "video_abandoned"
TRIGGER_PRACTICE_STREAK_BROKEN = "practice_streak_broken"
TRIGGER_MILESTONE_REACHED = "milestone_reached"
TRIGGER_TYPES = (
    TRIGGER_USER_INACTIVE,
    TRIGGER_SIGNUP_INCOMPLETE,
    TRIGGER_VIDEO_ABANDONED,
    TRIGGER_PRACTICE_STREAK_BROKEN,
    TRIGGER_MILESTONE_REACHED,
)

# scheduled_notifications.status: pending -> sent | failed | cancelled
STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
TERMINAL_STATUSES = (STATUS_SENT, STATUS_FAILED, STATUS_CANCELLED)

# Analytics event names written by the mobile app
EVENT_VIDEO_PROGRESS = "Video_Progress"
EVENT_VIDEO_ABANDONED = "Video_Abandoned"
EVENT_VIDEO_COMPLETED = "Video_Completed"
EVENT_PRACTICE_SESSION_ADDED = "Practice_Session_Added"
VIDEO_PROGRESS_EVENTS = (EVENT_VIDEO_PROGRESS, EVENT_VIDEO_ABANDONED, EVENT_VIDEO_COMPLETED)

# Views below this share are bounces, not abandonments
MIN_ABANDON_WATCH_PERCENT = 10.0

# Milestone kinds for milestone_reached
MILESTONE_VIDEO_COMPLETED = "video_completed"
MILESTONE_PRACTICE_HOURS = "practice_hours"
MILESTONE_STREAK_ACHIEVED = "streak_achieved"

# User roles (AppUser.role)
ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)

# user_notification_history.category for sends without a trigger
CATEGORY_ADMIN = "admin"

# notification_analytics.event_type
ANALYTICS_SENT = "sent"
ANALYTICS_DELIVERED = "delivered"
ANALYTICS_OPENED = "opened"
ANALYTICS_CLICKED = "clicked"
ANALYTICS_FAILED = "failed"

# Throttle denial reasons
REASON_DAILY_LIMIT = "daily limit"
REASON_COOLDOWN = "cooldown"

# Informational notes for sends that resolved to nobody
NOTE_NO_TARGET_USERS = "No target users found"
NOTE_NO_PUSH_TOKENS = "No valid push tokens"
