"""
Notification dispatcher: personalize, persist, deliver, record.

Trigger sends create a single-user ScheduledNotification (scheduled_for = now) and deliver it
immediately. Admin notifications are resolved to their audience and sent as one batched
gateway call. Outcome per notification:
  - transport failure, or every recipient failed  -> failed (error_message set), no history
  - at least one recipient delivered              -> sent; failed recipients kept in delivery_report
  - nobody targeted / no usable push address      -> sent with an informational note
History rows are written only for recipients the gateway accepted.
The dispatcher flushes but never commits; the caller owns the transaction.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from portal.core.constants import (
    ANALYTICS_FAILED,
    ANALYTICS_SENT,
    CATEGORY_ADMIN,
    NOTE_NO_PUSH_TOKENS,
    NOTE_NO_TARGET_USERS,
    STATUS_FAILED,
    STATUS_SENT,
)
from portal.core.errors import NotificationStateError, error_message
from portal.core.timeutil import utcnow
from portal.models.app_user import AppUser
from portal.models.notification_trigger import NotificationTrigger
from portal.models.scheduled_notification import ScheduledNotification
from portal.services.audience import reachable, resolve_audience, single_user_audience
from portal.services.push.base import DeliveryGateway
from portal.services.push.types import GatewayResult
from portal.services.recorder import record_history, record_notification_event, throttle_key

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(firstName|lastName|name)\s*\}\}")


def personalize(content: str, user: AppUser) -> str:
    """Fill {{firstName}}, {{lastName}}, {{name}}; missing first name reads as 'there'."""
    first = (user.first_name or "").strip()
    last = (user.last_name or "").strip()
    values = {
        "firstName": first or "there",
        "lastName": last,
        "name": f"{first} {last}".strip() if first else "there",
    }
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], content or "")


def _mask(address: str) -> str:
    return address[:20] + "..." if len(address) > 20 else address


@dataclass
class DispatchResult:
    notification_id: str | None
    status: str
    delivered: int = 0
    failed: int = 0
    error: str | None = None
    note: str | None = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_SENT


@dataclass
class TriggerSend:
    """
    A trigger notification in flight. Keeps a plain copy of the row and the users the
    gateway accepted, so a failed transaction can be rebuilt as a failed notification
    with its history.
    """
    notification: ScheduledNotification
    fields: dict[str, Any]
    trigger_id: str
    category: str
    delivered_user_ids: list[str] = field(default_factory=list)

    @property
    def notification_id(self) -> str:
        return self.fields["id"]


class NotificationDispatcher:
    def __init__(self, gateway: DeliveryGateway, *, tz_name: str | None = None):
        self.gateway = gateway
        self.tz_name = tz_name

    # --- Trigger path ---

    def dispatch_trigger(
        self,
        db: Session,
        trigger: NotificationTrigger,
        user: AppUser,
        *,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Personalize the trigger template for one user, create the notification and deliver it now."""
        now = now or utcnow()
        send = self.begin_trigger(db, trigger, user, now=now)
        return self.send_trigger(db, send, user, now=now)

    def begin_trigger(
        self,
        db: Session,
        trigger: NotificationTrigger,
        user: AppUser,
        *,
        now: datetime | None = None,
    ) -> TriggerSend:
        """Create (flush) the single-user pending notification for a trigger send."""
        now = now or utcnow()
        notification = ScheduledNotification(
            title=personalize(trigger.title, user),
            body=personalize(trigger.body, user),
            scheduled_for=now,
            status="pending",
            target_audience=single_user_audience(user.id),
            data={
                "trigger_id": trigger.id,
                "trigger_type": trigger.trigger_type,
                "user_id": user.id,
            },
        )
        db.add(notification)
        db.flush()
        return TriggerSend(
            notification=notification,
            fields={
                "id": notification.id,
                "title": notification.title,
                "body": notification.body,
                "scheduled_for": notification.scheduled_for,
                "target_audience": dict(notification.target_audience),
                "data": dict(notification.data),
            },
            trigger_id=trigger.id,
            category=trigger.trigger_type,
        )

    def send_trigger(
        self,
        db: Session,
        send: TriggerSend,
        user: AppUser,
        *,
        now: datetime | None = None,
    ) -> DispatchResult:
        return self._deliver(
            db,
            send.notification,
            [user],
            trigger_id=send.trigger_id,
            category=send.category,
            now=now or utcnow(),
            in_flight=send,
        )

    # --- Scheduled / admin path ---

    def process_notification(
        self,
        db: Session,
        notification: ScheduledNotification,
        *,
        respect_preferences: bool = True,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Resolve the audience of a pending notification and deliver it as one batch."""
        now = now or utcnow()
        if notification.is_terminal:
            raise NotificationStateError(f"Notification {notification.id} is already {notification.status}")
        users = resolve_audience(db, notification.target_audience)
        if not users:
            logger.info("No target users found for notification: %s", notification.id)
            return self._complete_empty(notification, NOTE_NO_TARGET_USERS, now)
        targets = reachable(users, respect_preferences=respect_preferences)
        data = notification.data if isinstance(notification.data, dict) else {}
        return self._deliver(
            db,
            notification,
            targets,
            trigger_id=data.get("trigger_id"),
            category=data.get("trigger_type") or data.get("category") or CATEGORY_ADMIN,
            now=now,
        )

    # --- Shared delivery ---

    def _complete_empty(self, notification: ScheduledNotification, note: str, now: datetime) -> DispatchResult:
        notification.recipients_total = 0
        notification.delivery_report = {"note": note}
        notification.transition(STATUS_SENT, at=now)
        return DispatchResult(notification_id=notification.id, status=STATUS_SENT, note=note)

    def _deliver(
        self,
        db: Session,
        notification: ScheduledNotification,
        users: list[AppUser],
        *,
        trigger_id: str | None,
        category: str,
        now: datetime,
        in_flight: TriggerSend | None = None,
    ) -> DispatchResult:
        users_by_address: dict[str, list[AppUser]] = {}
        for u in users:
            address = (u.push_token or "").strip()
            if address:
                users_by_address.setdefault(address, []).append(u)
        if not users_by_address:
            logger.info("No valid push tokens for notification: %s", notification.id)
            return self._complete_empty(notification, NOTE_NO_PUSH_TOKENS, now)

        addresses = list(users_by_address)
        payload: dict[str, Any] = dict(notification.data) if isinstance(notification.data, dict) else {}
        payload.setdefault("notification_id", notification.id)
        logger.info("Sending to %s devices for notification: %s", len(addresses), notification.id)
        try:
            result = self.gateway.send(addresses, notification.title, notification.body, payload)
        except Exception as e:
            # Gateways report failures in the result; anything raised is treated as transport failure
            logger.exception("Gateway raised for notification %s", notification.id)
            result = GatewayResult.transport_failure(error_message(e))

        notification.recipients_total = len(addresses)
        if result.transport_error:
            notification.recipients_delivered = 0
            notification.recipients_failed = len(addresses)
            notification.delivery_report = {"transport_error": result.transport_error}
            notification.transition(STATUS_FAILED, at=now, error_message=result.transport_error)
            record_notification_event(db, notification.id, ANALYTICS_FAILED, len(addresses), at=now)
            logger.error("Failed to send notification %s: %s", notification.id, result.transport_error)
            return DispatchResult(
                notification_id=notification.id,
                status=STATUS_FAILED,
                failed=len(addresses),
                error=result.transport_error,
            )

        if in_flight is not None:
            in_flight.delivered_user_ids = [
                u.id for r in result.recipients if r.ok for u in users_by_address.get(r.address, [])
            ]

        failures = [
            {
                "address": _mask(r.address),
                "user_ids": [u.id for u in users_by_address.get(r.address, [])],
                "error": r.error,
            }
            for r in result.recipients
            if not r.ok
        ]
        notification.recipients_delivered = result.delivered
        notification.recipients_failed = result.failed
        notification.delivery_report = {
            "delivered": result.delivered,
            "failed": result.failed,
            "errors": failures,
        }
        if result.failed:
            record_notification_event(
                db, notification.id, ANALYTICS_FAILED, result.failed, metadata={"errors": failures}, at=now
            )

        if result.delivered == 0:
            error = result.error or "Delivery failed"
            notification.transition(STATUS_FAILED, at=now, error_message=error)
            logger.error("Failed to send notification %s: %s", notification.id, error)
            return DispatchResult(
                notification_id=notification.id, status=STATUS_FAILED, failed=result.failed, error=error
            )

        notification.transition(STATUS_SENT, at=now)
        record_notification_event(db, notification.id, ANALYTICS_SENT, result.delivered, at=now)
        key = throttle_key(category, now, self.tz_name)
        for r in result.recipients:
            if not r.ok:
                continue
            for u in users_by_address.get(r.address, []):
                record_history(db, u.id, notification.id, trigger_id, category, key, at=now)
        if result.failed:
            logger.warning(
                "Notification %s partially delivered: %s ok, %s failed (%s)",
                notification.id, result.delivered, result.failed, result.error,
            )
        else:
            logger.info("Successfully sent notification: %s", notification.id)
        return DispatchResult(
            notification_id=notification.id,
            status=STATUS_SENT,
            delivered=result.delivered,
            failed=result.failed,
            error=result.error if result.failed else None,
        )
