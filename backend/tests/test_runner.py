from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from portal.core.errors import NotFoundError
from portal.models.notification_trigger import NotificationTrigger
from portal.models.scheduled_notification import ScheduledNotification
from portal.models.trigger_execution import TriggerExecution
from portal.models.user_notification_history import UserNotificationHistory
from portal.services.retry import BackoffPolicy
from portal.services.throttle import ThrottleGate
from portal.services.throttle_settings_service import ThrottleConfig
from portal.services.triggers.runner import TriggerRunner

from conftest import FakeGateway


def _gate(**kw):
    values = {
        "enabled": True,
        "max_notifications_per_day": 3,
        "cooldown_hours_between_campaigns": 24,
        "priority_override_threshold": 8,
        "respect_user_preferences": True,
    }
    values.update(kw)
    return ThrottleGate(ThrottleConfig(**values))


def _inactive_user(make_user, add_event, now, **kw):
    user = make_user(**kw)
    add_event(user.id, "App_Open", now - timedelta(days=10))
    return user


def test_run_sends_and_records(db, make_user, make_trigger, add_event, gateway, now):
    user = _inactive_user(make_user, add_event, now, first_name=None)
    trigger = make_trigger()

    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    assert summary.to_dict() == {
        "success": True, "mode": "triggers", "processed": 1, "sent": 1,
        "failed": 0, "throttled": 0, "skipped": 0,
    }
    assert gateway.calls[0]["title"] == "Hi there"
    execution = db.query(TriggerExecution).one()
    assert execution.success
    assert execution.user_id == user.id
    assert execution.condition_values["days_inactive"] == 3
    assert db.query(UserNotificationHistory).filter_by(trigger_id=trigger.id).count() == 1


def test_second_run_is_throttled(db, make_user, make_trigger, add_event, gateway, now):
    _inactive_user(make_user, add_event, now)
    make_trigger()
    runner = TriggerRunner(gateway, gate=_gate())

    runner.run_triggers(db, now)
    again = runner.run_triggers(db, now + timedelta(minutes=5))

    assert again.sent == 0
    assert again.throttled == 1
    assert len(gateway.calls) == 1
    # Throttle denials are counted, not recorded
    assert db.query(TriggerExecution).count() == 1


def test_daily_cap_scenario(db, make_user, make_trigger, add_event, add_history, gateway, now):
    user = _inactive_user(make_user, add_event, now)
    for hours in (6, 4, 2):
        add_history(user.id, now - timedelta(hours=hours))
    make_trigger(priority=5)

    summary = TriggerRunner(gateway, gate=_gate(cooldown_hours_between_campaigns=1)).run_triggers(db, now)

    assert summary.throttled == 1
    assert gateway.calls == []
    assert db.query(UserNotificationHistory).filter_by(user_id=user.id).count() == 3


def test_priority_override_scenario(db, make_user, make_trigger, add_event, add_history, gateway, now):
    user = _inactive_user(make_user, add_event, now)
    add_history(user.id, now - timedelta(hours=1))
    make_trigger(name="urgent", priority=9)

    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    assert summary.sent == 1
    assert gateway.sent_addresses == [user.push_token]


def test_priority_order_and_shared_cooldown(db, make_user, make_trigger, add_event, gateway, now):
    user = _inactive_user(make_user, add_event, now, first_name=None, last_name=None, created_at=now - timedelta(days=60))
    make_trigger(name="low", priority=3, title="low")
    make_trigger(
        name="high", trigger_type="signup_incomplete", condition_config={"hours_since_signup": 24},
        priority=7, title="high",
    )

    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    # The higher-priority trigger wins; the second send hits the cooldown
    assert [c["title"] for c in gateway.calls] == ["high"]
    assert summary.throttled == 1
    assert db.query(UserNotificationHistory).filter_by(user_id=user.id).count() == 1


def test_malformed_trigger_is_isolated(db, make_user, make_trigger, add_event, gateway, now):
    _inactive_user(make_user, add_event, now)
    make_trigger(name="broken", condition_config={"days_inactive": "soon"}, priority=9)
    make_trigger(name="healthy", priority=5)

    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    assert summary.success
    assert summary.sent == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].startswith("Trigger broken:")


def test_dispatch_failure_recorded(db, make_user, make_trigger, add_event, now):
    user = _inactive_user(make_user, add_event, now)
    gateway = FakeGateway(failures={user.push_token: "DeviceNotRegistered: not registered"})
    make_trigger()

    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    assert summary.failed == 1
    assert summary.errors == [f"User {user.id}: DeviceNotRegistered: not registered"]
    execution = db.query(TriggerExecution).one()
    assert not execution.success
    assert "DeviceNotRegistered" in execution.error_message
    notification = db.get(ScheduledNotification, execution.notification_id)
    assert notification.status == "failed"
    assert db.query(UserNotificationHistory).count() == 0


def test_unexpected_error_recorded_per_user(db, make_user, make_trigger, add_event, now):
    _inactive_user(make_user, add_event, now)
    _inactive_user(make_user, add_event, now)
    make_trigger()

    gateway = FakeGateway()
    runner = TriggerRunner(gateway, gate=_gate())

    def boom(*args, **kwargs):
        raise ValueError("template store offline")

    runner.dispatcher.send_trigger = boom
    summary = runner.run_triggers(db, now)

    assert summary.failed == 2
    assert all(e.endswith("template store offline") for e in summary.errors)
    assert gateway.calls == []
    executions = db.query(TriggerExecution).filter_by(success=False).all()
    assert len(executions) == 2
    for execution in executions:
        notification = db.get(ScheduledNotification, execution.notification_id)
        assert notification.status == "failed"
        assert notification.error_message == "template store offline"
    assert db.query(UserNotificationHistory).count() == 0


def test_failure_after_accepted_push_keeps_notification_and_history(
    db, make_user, make_trigger, add_event, gateway, now, monkeypatch
):
    user = _inactive_user(make_user, add_event, now)
    trigger = make_trigger()
    runner = TriggerRunner(gateway, gate=_gate())

    def history_down(*args, **kwargs):
        raise RuntimeError("history write failed")

    monkeypatch.setattr("portal.services.dispatcher.record_history", history_down)
    summary = runner.run_triggers(db, now)

    assert summary.failed == 1
    assert gateway.sent_addresses == [user.push_token]
    notification = db.query(ScheduledNotification).one()
    assert notification.status == "failed"
    assert notification.error_message == "history write failed"
    assert notification.recipients_delivered == 1
    history = db.query(UserNotificationHistory).one()
    assert history.user_id == user.id
    assert history.notification_id == notification.id
    assert history.trigger_id == trigger.id
    execution = db.query(TriggerExecution).one()
    assert not execution.success
    assert execution.notification_id == notification.id
    assert execution.error_message == "history write failed"

    # The push did go out, so the cooldown holds once the retry backoff has passed
    monkeypatch.undo()
    later = runner.run_triggers(db, now + timedelta(minutes=31))
    assert later.throttled == 1
    assert len(gateway.calls) == 1


def test_failure_recording_error_does_not_stop_the_run(
    db, make_user, make_trigger, add_event, gateway, now, monkeypatch
):
    _inactive_user(make_user, add_event, now)
    _inactive_user(make_user, add_event, now)
    make_trigger()

    def store_down(*args, **kwargs):
        raise RuntimeError("executions table unavailable")

    monkeypatch.setattr("portal.services.triggers.runner.record_execution", store_down)
    summary = TriggerRunner(gateway, gate=_gate()).run_triggers(db, now)

    assert summary.success
    assert summary.processed == 2
    assert summary.failed == 2
    assert len(summary.errors) == 2
    assert len(gateway.calls) == 2
    assert db.query(TriggerExecution).count() == 0


def test_trigger_deleted_mid_run_is_skipped(db, engine, make_user, make_trigger, add_event, gateway, now):
    _inactive_user(make_user, add_event, now)
    make_trigger(name="first", priority=9)
    doomed = make_trigger(name="second", priority=1)
    doomed_id = doomed.id
    runner = TriggerRunner(gateway, gate=_gate(priority_override_threshold=10))
    run_trigger = runner._run_trigger

    def run_then_delete(db_, trigger, summary, now_):
        run_trigger(db_, trigger, summary, now_)
        other = sessionmaker(bind=engine)()
        other.query(NotificationTrigger).filter_by(id=doomed_id).delete()
        other.commit()
        other.close()

    runner._run_trigger = run_then_delete
    summary = runner.run_triggers(db, now)

    assert summary.errors == []
    assert summary.sent == 1
    assert summary.throttled == 0
    assert db.query(NotificationTrigger).filter_by(id=doomed_id).count() == 0


def test_backoff_after_failure(db, make_user, make_trigger, add_event, now):
    user = _inactive_user(make_user, add_event, now)
    make_trigger()
    gateway = FakeGateway(failures={user.push_token: "MessageRateExceeded"})
    runner = TriggerRunner(gateway, gate=_gate(), backoff=BackoffPolicy(timedelta(minutes=30), timedelta(hours=24)))

    runner.run_triggers(db, now)
    soon = runner.run_triggers(db, now + timedelta(minutes=10))
    assert soon.skipped == 1
    assert len(gateway.calls) == 1

    gateway.failures.clear()
    later = runner.run_triggers(db, now + timedelta(minutes=31))
    assert later.sent == 1


def test_backoff_policy_delay():
    policy = BackoffPolicy(timedelta(minutes=30), timedelta(hours=2))
    assert policy.delay(0) == timedelta(0)
    assert policy.delay(1) == timedelta(minutes=30)
    assert policy.delay(3) == timedelta(hours=2)
    assert policy.delay(10) == timedelta(hours=2)


def test_periodic_prefers_due_notifications(db, make_user, make_trigger, add_event, gateway, now):
    _inactive_user(make_user, add_event, now)
    make_trigger()
    db.add(ScheduledNotification(
        title="Announcement", body="x", scheduled_for=now - timedelta(minutes=1), status="pending",
        target_audience={"type": "all"},
    ))
    db.add(ScheduledNotification(
        title="Later", body="x", scheduled_for=now + timedelta(hours=1), status="pending",
        target_audience={"type": "all"},
    ))
    db.commit()
    runner = TriggerRunner(gateway, gate=_gate())

    first = runner.run_periodic(db, now)
    assert first.mode == "notifications"
    assert first.processed == 1 and first.sent == 1
    assert [c["title"] for c in gateway.calls] == ["Announcement"]

    second = runner.run_periodic(db, now + timedelta(minutes=1))
    assert second.mode == "triggers"


def test_periodic_with_nothing_to_do(db, gateway, now):
    summary = TriggerRunner(gateway, gate=_gate()).run_periodic(db, now)
    assert summary.mode == "triggers"
    assert summary.to_dict()["message"] == "No active triggers found"


def test_process_notification_by_id(db, make_user, gateway, now):
    make_user()
    notification = ScheduledNotification(
        title="Future", body="x", scheduled_for=now + timedelta(days=1), status="pending",
        target_audience={"type": "all"},
    )
    db.add(notification)
    db.commit()
    runner = TriggerRunner(gateway, gate=_gate())

    summary = runner.process_notification_by_id(db, notification.id, now)
    assert summary.mode == "notification"
    assert summary.sent == 1

    repeat = runner.process_notification_by_id(db, notification.id, now)
    assert repeat.processed == 0
    assert "already sent" in repeat.message

    with pytest.raises(NotFoundError):
        runner.process_notification_by_id(db, "missing", now)


def test_transport_failure_marks_notification_failed(db, make_user, now):
    make_user()
    notification = ScheduledNotification(
        title="Down", body="x", scheduled_for=now, status="pending", target_audience={"type": "all"},
    )
    db.add(notification)
    db.commit()
    summary = TriggerRunner(FakeGateway(transport_error="HTTP error! status: 503"), gate=_gate()).run_periodic(db, now)

    assert summary.failed == 1
    db.refresh(notification)
    assert notification.status == "failed"
    assert notification.error_message == "HTTP error! status: 503"
