from portal.models.activity_event import ActivityEvent
from portal.models.app_user import AppUser
from portal.models.notification_analytics import NotificationAnalyticsEvent
from portal.models.notification_trigger import NotificationTrigger
from portal.models.scheduled_notification import ScheduledNotification
from portal.models.throttle_settings import ThrottleSettings
from portal.models.trigger_execution import TriggerExecution
from portal.models.user_notification_history import UserNotificationHistory

__all__ = [
    "ActivityEvent",
    "AppUser",
    "NotificationAnalyticsEvent",
    "NotificationTrigger",
    "ScheduledNotification",
    "ThrottleSettings",
    "TriggerExecution",
    "UserNotificationHistory",
]
