"""
Trigger runner: one pass of the notification engine.

Periodic run (no arguments):
  - due pending notifications exist -> deliver them (mode "notifications")
  - otherwise -> evaluate active triggers by priority, highest first (mode "triggers")
On-demand run: deliver one pending notification by id, no trigger evaluation (mode "notification").

Per trigger: parse condition -> evaluate -> for each eligible user:
  backoff check -> lock user -> throttle gate -> dispatch -> record execution -> commit.
A failing trigger is logged and skipped; a failing user is recorded as a failed execution.
If the user's transaction fails after its notification was created, the notification is
re-inserted as failed (with history for any device the gateway already reached).
Throttle denials and backoff skips are counted but not recorded as executions.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.constants import STATUS_FAILED, STATUS_PENDING
from portal.core.errors import DispatchError, NotFoundError, error_message
from portal.core.timeutil import ensure_utc, utcnow
from portal.models.app_user import AppUser
from portal.models.notification_trigger import NotificationTrigger
from portal.models.scheduled_notification import ScheduledNotification
from portal.services.dispatcher import NotificationDispatcher, TriggerSend
from portal.services.push.base import DeliveryGateway
from portal.services.recorder import record_execution, record_history, throttle_key
from portal.services.retry import BackoffPolicy, retry_not_before
from portal.services.throttle import ThrottleGate
from portal.services.throttle_settings_service import load_throttle_config
from portal.services.triggers.conditions import condition_snapshot, parse_condition
from portal.services.triggers.evaluators import find_eligible_users

logger = logging.getLogger(__name__)

MODE_NOTIFICATIONS = "notifications"
MODE_NOTIFICATION = "notification"
MODE_TRIGGERS = "triggers"


@dataclass
class RunSummary:
    mode: str
    success: bool = True
    processed: int = 0
    sent: int = 0
    failed: int = 0
    throttled: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "mode": self.mode,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "throttled": self.throttled,
            "skipped": self.skipped,
        }
        if self.errors:
            out["errors"] = list(self.errors)
        if self.message:
            out["message"] = self.message
        return out


class TriggerRunner:
    def __init__(
        self,
        gateway: DeliveryGateway,
        *,
        gate: ThrottleGate | None = None,
        backoff: BackoffPolicy | None = None,
        batch_limit: int | None = None,
        tz_name: str | None = None,
    ):
        self.dispatcher = NotificationDispatcher(gateway, tz_name=tz_name)
        self._gate = gate
        self.backoff = backoff or BackoffPolicy.from_settings()
        self.batch_limit = batch_limit
        self.tz_name = tz_name

    def gate_for(self, db: Session) -> ThrottleGate:
        """Injected gate, or one built from the throttle settings as they are right now."""
        if self._gate is not None:
            return self._gate
        return ThrottleGate(load_throttle_config(db), tz_name=self.tz_name)

    # --- Entry points ---

    def run_periodic(self, db: Session, now: datetime | None = None) -> RunSummary:
        now = ensure_utc(now) if now else utcnow()
        try:
            due = self._due_notifications(db, now)
        except SQLAlchemyError as e:
            logger.exception("Error fetching notifications: %s", e)
            db.rollback()
            return RunSummary(mode=MODE_NOTIFICATIONS, success=False, errors=[f"Failed to fetch notifications: {e}"])
        if due:
            return self.process_due_notifications(db, now, due)
        return self.run_triggers(db, now)

    def process_due_notifications(
        self,
        db: Session,
        now: datetime | None = None,
        notifications: list[ScheduledNotification] | None = None,
    ) -> RunSummary:
        now = ensure_utc(now) if now else utcnow()
        summary = RunSummary(mode=MODE_NOTIFICATIONS)
        due = notifications if notifications is not None else self._due_notifications(db, now)
        if not due:
            summary.message = "No pending notifications"
            return summary
        logger.info("Found %s notifications to process", len(due))
        for notification_id in [n.id for n in due]:
            self._process_one(db, notification_id, summary, now)
        logger.info("Processing complete: %s", summary.to_dict())
        return summary

    def process_notification_by_id(
        self, db: Session, notification_id: str, now: datetime | None = None
    ) -> RunSummary:
        now = ensure_utc(now) if now else utcnow()
        summary = RunSummary(mode=MODE_NOTIFICATION)
        notification = db.get(ScheduledNotification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.status != STATUS_PENDING:
            summary.message = f"Notification {notification_id} is already {notification.status}"
            return summary
        logger.info("Processing specific notification: %s", notification_id)
        self._process_one(db, notification_id, summary, now)
        return summary

    def run_triggers(self, db: Session, now: datetime | None = None) -> RunSummary:
        now = ensure_utc(now) if now else utcnow()
        summary = RunSummary(mode=MODE_TRIGGERS)
        try:
            triggers = (
                db.query(NotificationTrigger)
                .filter(NotificationTrigger.is_active.is_(True))
                .order_by(NotificationTrigger.priority.desc(), NotificationTrigger.created_at.asc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.exception("Error fetching triggers: %s", e)
            db.rollback()
            summary.success = False
            summary.errors.append(f"Failed to fetch triggers: {e}")
            return summary
        if not triggers:
            summary.message = "No active triggers found"
            return summary

        # Later commits expire these rows; a trigger can also be deleted mid-run
        for trigger_id, name in [(t.id, t.name) for t in triggers]:
            try:
                trigger = db.get(NotificationTrigger, trigger_id)
                if trigger is None:
                    logger.info("Trigger %s was deleted during the run; skipping", name)
                    continue
                self._run_trigger(db, trigger, summary, now)
            except Exception as e:
                db.rollback()
                logger.warning("Error processing trigger %s: %s", name, e, exc_info=True)
                summary.errors.append(f"Trigger {name}: {error_message(e)}")
        logger.info("Trigger run complete: %s", summary.to_dict())
        return summary

    # --- Internals ---

    def _due_notifications(self, db: Session, now: datetime) -> list[ScheduledNotification]:
        return (
            db.query(ScheduledNotification)
            .filter(ScheduledNotification.status == STATUS_PENDING, ScheduledNotification.scheduled_for <= now)
            .order_by(ScheduledNotification.scheduled_for.asc())
            .all()
        )

    def _process_one(self, db: Session, notification_id: str, summary: RunSummary, now: datetime) -> None:
        summary.processed += 1
        try:
            notification = db.get(ScheduledNotification, notification_id)
            config = load_throttle_config(db)
            result = self.dispatcher.process_notification(
                db, notification, respect_preferences=config.respect_user_preferences, now=now
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("Error processing notification %s", notification_id)
            self._mark_failed(db, notification_id, error_message(e), now)
            summary.failed += 1
            summary.errors.append(f"Notification {notification_id}: {error_message(e)}")
            return
        if result.success:
            summary.sent += 1
            if result.failed:
                summary.errors.append(f"Notification {notification_id}: {result.failed} recipients failed ({result.error})")
        else:
            summary.failed += 1
            summary.errors.append(f"Notification {notification_id}: {result.error}")

    def _mark_failed(self, db: Session, notification_id: str, message: str, now: datetime) -> None:
        notification = db.get(ScheduledNotification, notification_id)
        if notification is None or notification.is_terminal:
            return
        notification.transition(STATUS_FAILED, at=now, error_message=message)
        db.commit()

    def _run_trigger(self, db: Session, trigger: NotificationTrigger, summary: RunSummary, now: datetime) -> None:
        condition = parse_condition(trigger.trigger_type, trigger.condition_config)
        logger.info("Processing trigger: %s (%s)", trigger.name, condition.type)
        users = find_eligible_users(db, condition, now, self.batch_limit, tz_name=self.tz_name)
        logger.info("Found %s eligible users for trigger %s", len(users), trigger.name)
        snapshot = condition_snapshot(condition)
        for user_id in [u.id for u in users]:
            self._run_for_user(db, trigger, user_id, snapshot, summary, now)

    def _run_for_user(
        self,
        db: Session,
        trigger: NotificationTrigger,
        user_id: str,
        snapshot: dict[str, Any],
        summary: RunSummary,
        now: datetime,
    ) -> None:
        trigger_id = trigger.id
        send: TriggerSend | None = None
        try:
            not_before = retry_not_before(db, trigger_id, user_id, self.backoff)
            if not_before is not None and now < not_before:
                summary.skipped += 1
                logger.debug("Backing off user %s on trigger %s until %s", user_id, trigger_id, not_before)
                return

            gate = self.gate_for(db)
            gate.lock_user(db, user_id)
            decision = gate.can_send(db, user_id, trigger.priority, now=now)
            if not decision.allowed:
                db.rollback()  # release the user lock
                summary.throttled += 1
                logger.debug(
                    "Throttled notification for user %s on trigger %s (%s)", user_id, trigger_id, decision.reason
                )
                return

            user = db.get(AppUser, user_id)
            if user is None:
                raise DispatchError(f"User {user_id} no longer exists")
            send = self.dispatcher.begin_trigger(db, trigger, user, now=now)
            result = self.dispatcher.send_trigger(db, send, user, now=now)
            record_execution(
                db,
                trigger_id,
                user_id,
                result.success,
                result.notification_id,
                result.error,
                condition_values=snapshot,
                at=now,
            )
            db.commit()
        except Exception as e:
            db.rollback()
            message = error_message(e)
            logger.exception("Error processing user %s for trigger %s", user_id, trigger_id)
            self._record_user_failure(db, trigger_id, user_id, send, message, snapshot, now)
            summary.processed += 1
            summary.failed += 1
            summary.errors.append(f"User {user_id}: {message}")
            return

        summary.processed += 1
        if result.success:
            summary.sent += 1
        else:
            summary.failed += 1
            summary.errors.append(f"User {user_id}: {result.error}")

    def _record_user_failure(
        self,
        db: Session,
        trigger_id: str,
        user_id: str,
        send: TriggerSend | None,
        message: str,
        snapshot: dict[str, Any],
        now: datetime,
    ) -> None:
        """Failed execution, plus the rolled-back notification as failed when one was created. Never raises."""
        try:
            notification_id = None
            if send is not None:
                self._restore_failed_send(db, send, message, now)
                notification_id = send.notification_id
            record_execution(
                db, trigger_id, user_id, False, notification_id, message, condition_values=snapshot, at=now
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Could not record failure for user %s on trigger %s", user_id, trigger_id)

    def _restore_failed_send(self, db: Session, send: TriggerSend, message: str, now: datetime) -> None:
        """
        Re-insert a trigger notification lost to a rollback, as failed. Users the gateway
        already accepted get their history rows back so the throttle still counts the push.
        """
        delivered = list(send.delivered_user_ids)
        row = ScheduledNotification(**send.fields, status=STATUS_PENDING)
        row.transition(STATUS_FAILED, at=now, error_message=message)
        row.recipients_total = 1
        row.recipients_delivered = len(delivered)
        row.recipients_failed = 0 if delivered else 1
        row.delivery_report = {"error": message, "delivered_user_ids": delivered}
        db.add(row)
        db.flush()
        if delivered:
            logger.warning(
                "Notification %s reached %s user(s) before failing; keeping history", send.notification_id, len(delivered)
            )
        key = throttle_key(send.category, now, self.tz_name)
        for uid in delivered:
            record_history(db, uid, send.notification_id, send.trigger_id, send.category, key, at=now)
