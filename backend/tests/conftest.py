import os

os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENGINE_TIMEZONE"] = "UTC"
os.environ["PUSH_PROVIDER"] = "expo"

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import portal.models  # noqa: E402,F401
from portal.db.base import Base  # noqa: E402
from portal.models.activity_event import ActivityEvent  # noqa: E402
from portal.models.app_user import AppUser  # noqa: E402
from portal.models.notification_trigger import NotificationTrigger  # noqa: E402
from portal.models.user_notification_history import UserNotificationHistory  # noqa: E402
from portal.services.push.types import GatewayResult, RecipientResult  # noqa: E402

# Tuesday afternoon UTC; far enough from midnight that hour offsets stay on the same day
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Records every send; addresses in `failures` come back with that error."""

    gateway_id = "fake"

    def __init__(self, failures=None, transport_error=None, raises=None):
        self.failures = dict(failures or {})
        self.transport_error = transport_error
        self.raises = raises
        self.calls = []

    def send(self, addresses, title, body, data=None):
        self.calls.append({"addresses": list(addresses), "title": title, "body": body, "data": data})
        if self.raises is not None:
            raise self.raises
        if self.transport_error:
            return GatewayResult.transport_failure(self.transport_error)
        return GatewayResult(
            recipients=[
                RecipientResult(address=a, ok=a not in self.failures, error=self.failures.get(a))
                for a in addresses
            ]
        )

    @property
    def sent_addresses(self):
        return [a for call in self.calls for a in call["addresses"]]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        n = counter["n"]
        values = {
            "id": f"user-{n:03d}",
            "first_name": f"User{n}",
            "last_name": "Test",
            "push_token": f"ExponentPushToken[{n:03d}]",
            "notifications_enabled": True,
            "role": "user",
            "created_at": NOW - timedelta(days=60),
            "updated_at": NOW - timedelta(days=60),
        }
        values.update(kw)
        user = AppUser(**values)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_trigger(db):
    def _make(trigger_type="user_inactive", condition_config=None, **kw):
        values = {
            "name": f"{trigger_type} trigger",
            "trigger_type": trigger_type,
            "condition_config": condition_config if condition_config is not None else {"days_inactive": 3},
            "title": "Hi {{firstName}}",
            "body": "We miss you, {{name}}!",
            "target_audience": {"type": "all"},
            "is_active": True,
            "priority": 5,
            "created_at": NOW - timedelta(days=30),
            "updated_at": NOW - timedelta(days=30),
        }
        values.update(kw)
        trigger = NotificationTrigger(**values)
        db.add(trigger)
        db.commit()
        return trigger

    return _make


@pytest.fixture
def add_event(db):
    def _add(user_id, event_name, at, **props):
        ev = ActivityEvent(user_id=user_id, event_name=event_name, event_data=props or None, timestamp=at)
        db.add(ev)
        db.commit()
        return ev

    return _add


@pytest.fixture
def add_history(db):
    def _add(user_id, sent_at, category="user_inactive", trigger_id=None):
        row = UserNotificationHistory(
            user_id=user_id,
            notification_id="n-" + sent_at.isoformat(),
            trigger_id=trigger_id,
            category=category,
            sent_at=sent_at,
            throttle_key=f"{category}_{sent_at.date().isoformat()}",
        )
        db.add(row)
        db.commit()
        return row

    return _add
