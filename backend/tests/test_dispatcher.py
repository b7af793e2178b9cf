from portal.core.constants import NOTE_NO_PUSH_TOKENS, NOTE_NO_TARGET_USERS
from portal.models.app_user import AppUser
from portal.models.notification_analytics import NotificationAnalyticsEvent
from portal.models.scheduled_notification import ScheduledNotification
from portal.models.user_notification_history import UserNotificationHistory
from portal.services.dispatcher import NotificationDispatcher, personalize

from conftest import FakeGateway


def test_personalize_missing_first_name():
    user = AppUser(first_name=None, last_name=None)
    assert personalize("Hi {{firstName}}, keep your streak!", user) == "Hi there, keep your streak!"


def test_personalize_all_placeholders():
    user = AppUser(first_name="Ada", last_name="Lovelace")
    assert personalize("{{firstName}}|{{ lastName }}|{{name}}", user) == "Ada|Lovelace|Ada Lovelace"
    assert personalize("{{lastName}}!", AppUser(first_name="Ada")) == "!"
    assert personalize("{{unknown}} stays", user) == "{{unknown}} stays"


def test_dispatch_trigger_sends_and_records_history(db, make_user, make_trigger, gateway, now):
    user = make_user(first_name="Sam")
    trigger = make_trigger()
    result = NotificationDispatcher(gateway).dispatch_trigger(db, trigger, user, now=now)
    db.commit()

    assert result.success
    assert gateway.calls[0]["addresses"] == [user.push_token]
    assert gateway.calls[0]["title"] == "Hi Sam"
    assert gateway.calls[0]["data"]["trigger_id"] == trigger.id

    notification = db.get(ScheduledNotification, result.notification_id)
    assert notification.status == "sent"
    assert notification.target_audience == {"type": "users", "userIds": [user.id]}
    assert notification.recipients_delivered == 1

    history = db.query(UserNotificationHistory).all()
    assert len(history) == 1
    assert history[0].trigger_id == trigger.id
    assert history[0].category == "user_inactive"
    assert history[0].throttle_key == "user_inactive_2026-03-10"


def test_dispatch_trigger_provider_rejection_marks_failed(db, make_user, make_trigger, now):
    user = make_user()
    gateway = FakeGateway(failures={user.push_token: "DeviceNotRegistered: gone"})
    result = NotificationDispatcher(gateway).dispatch_trigger(db, make_trigger(), user, now=now)
    db.commit()

    assert not result.success
    notification = db.get(ScheduledNotification, result.notification_id)
    assert notification.status == "failed"
    assert "DeviceNotRegistered" in notification.error_message
    assert db.query(UserNotificationHistory).count() == 0


def test_gateway_exception_is_transport_failure(db, make_user, make_trigger, now):
    gateway = FakeGateway(raises=RuntimeError("connection reset"))
    result = NotificationDispatcher(gateway).dispatch_trigger(db, make_trigger(), make_user(), now=now)
    assert result.status == "failed"
    assert result.error == "connection reset"


def test_partial_batch_is_sent_with_report(db, make_user, now):
    users = [make_user() for _ in range(3)]
    gateway = FakeGateway(failures={users[1].push_token: "InvalidCredentials"})
    notification = ScheduledNotification(
        title="Weekly update", body="New lessons", scheduled_for=now, status="pending",
        target_audience={"type": "all"},
    )
    db.add(notification)
    db.commit()

    result = NotificationDispatcher(gateway).process_notification(db, notification, now=now)
    db.commit()

    assert result.status == "sent"
    assert (result.delivered, result.failed) == (2, 1)
    assert notification.recipients_total == 3
    assert notification.recipients_failed == 1
    assert notification.error_message is None
    assert notification.delivery_report["errors"][0]["user_ids"] == [users[1].id]
    delivered_to = {h.user_id for h in db.query(UserNotificationHistory).all()}
    assert delivered_to == {users[0].id, users[2].id}
    events = {e.event_type: e.device_count for e in db.query(NotificationAnalyticsEvent).all()}
    assert events == {"sent": 2, "failed": 1}


def test_admin_send_history_has_no_trigger(db, make_user, gateway, now):
    user = make_user()
    notification = ScheduledNotification(
        title="Hello", body="Admin", scheduled_for=now, status="pending",
        target_audience={"type": "users", "userIds": [user.id]},
    )
    db.add(notification)
    db.commit()
    NotificationDispatcher(gateway).process_notification(db, notification, now=now)
    db.commit()
    row = db.query(UserNotificationHistory).one()
    assert row.trigger_id is None
    assert row.category == "admin"


def test_no_target_users_is_successful_noop(db, gateway, now):
    notification = ScheduledNotification(
        title="Nobody", body="x", scheduled_for=now, status="pending",
        target_audience={"type": "users", "userIds": []},
    )
    db.add(notification)
    db.commit()
    result = NotificationDispatcher(gateway).process_notification(db, notification, now=now)
    assert result.success
    assert result.note == NOTE_NO_TARGET_USERS
    assert notification.status == "sent"
    assert notification.delivery_report == {"note": NOTE_NO_TARGET_USERS}
    assert gateway.calls == []


def test_no_push_tokens_is_successful_noop(db, make_user, gateway, now):
    make_user(push_token=None)
    notification = ScheduledNotification(
        title="Nobody reachable", body="x", scheduled_for=now, status="pending", target_audience={"type": "all"},
    )
    db.add(notification)
    db.commit()
    result = NotificationDispatcher(gateway).process_notification(db, notification, now=now)
    assert result.success
    assert result.note == NOTE_NO_PUSH_TOKENS
    assert gateway.calls == []


def test_respect_preferences_toggle(db, make_user, gateway, now):
    opted_in = make_user()
    opted_out = make_user(notifications_enabled=False)
    notification = ScheduledNotification(
        title="All", body="x", scheduled_for=now, status="pending", target_audience={"type": "all"},
    )
    db.add(notification)
    db.commit()
    NotificationDispatcher(gateway).process_notification(db, notification, respect_preferences=False, now=now)
    assert set(gateway.sent_addresses) == {opted_in.push_token, opted_out.push_token}
