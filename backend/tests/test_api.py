from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from portal.api.deps import get_delivery_gateway
from portal.db.session import get_db
from portal.main import app


@pytest.fixture
def client(db, gateway):
    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_delivery_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


TRIGGER = {
    "name": "Come back",
    "trigger_type": "user_inactive",
    "condition_config": {"days_inactive": 3},
    "title": "Hi {{firstName}}",
    "body": "We miss you",
    "priority": 6,
}


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_trigger_crud(client):
    r = client.post("/triggers", json=TRIGGER)
    assert r.status_code == 201, r.text
    trigger = r.json()
    assert trigger["condition_config"]["type"] == "user_inactive"
    assert trigger["condition_config"]["exclude_new_users"] is True

    r = client.patch(f"/triggers/{trigger['id']}", json={"priority": 9})
    assert r.status_code == 200
    assert r.json()["priority"] == 9

    r = client.post(f"/triggers/{trigger['id']}/toggle", json={"is_active": False})
    assert r.json()["is_active"] is False

    assert len(client.get("/triggers").json()["triggers"]) == 1
    assert client.delete(f"/triggers/{trigger['id']}").json() == {"ok": True}
    assert client.get(f"/triggers/{trigger['id']}").status_code == 404


def test_trigger_validation(client):
    bad_config = {**TRIGGER, "condition_config": {"days_inactive": 500}}
    assert client.post("/triggers", json=bad_config).status_code == 422
    unknown = {**TRIGGER, "trigger_type": "birthday"}
    assert client.post("/triggers", json=unknown).status_code == 422
    mismatch = {**TRIGGER, "condition_config": {"type": "signup_incomplete", "hours_since_signup": 4}}
    assert client.post("/triggers", json=mismatch).status_code == 422
    bad_audience = {**TRIGGER, "target_audience": {"type": "nobody"}}
    assert client.post("/triggers", json=bad_audience).status_code == 422


def test_run_triggers_endpoint(client, make_user, add_event, gateway, now):
    user = make_user()
    add_event(user.id, "App_Open", now - timedelta(days=10))
    client.post("/triggers", json=TRIGGER)

    r = client.post("/triggers/run")
    assert r.status_code == 200
    body = r.json()
    assert body["mode"] == "triggers"
    assert body["sent"] == 1
    assert gateway.sent_addresses == [user.push_token]

    trigger_id = client.get("/triggers").json()["triggers"][0]["id"]
    executions = client.get(f"/triggers/{trigger_id}/executions").json()["executions"]
    assert len(executions) == 1 and executions[0]["success"] is True
    perf = client.get(f"/triggers/{trigger_id}/performance").json()
    assert perf["successful_executions"] == 1
    history = client.get(f"/users/{user.id}/notification-history").json()["history"]
    assert history[0]["trigger_id"] == trigger_id


def test_notification_lifecycle(client, make_user, gateway):
    make_user()
    r = client.post("/notifications", json={"title": "Hello", "body": "World"})
    assert r.status_code == 201
    first = r.json()
    assert first["status"] == "pending"

    r = client.post("/notifications/process", json={"notification_id": first["id"]})
    assert r.json()["mode"] == "notification"
    assert r.json()["sent"] == 1
    assert client.get(f"/notifications/{first['id']}").json()["status"] == "sent"

    second = client.post("/notifications", json={"title": "Later", "body": "x"}).json()
    assert client.post(f"/notifications/{second['id']}/cancel").json()["status"] == "cancelled"
    assert client.post(f"/notifications/{second['id']}/cancel").status_code == 409

    statuses = {n["status"] for n in client.get("/notifications").json()["notifications"]}
    assert statuses == {"sent", "cancelled"}
    assert client.post("/notifications/process", json={"notification_id": "nope"}).status_code == 404


def test_notification_rejects_bad_audience(client):
    r = client.post("/notifications", json={"title": "x", "body": "y", "target_audience": {"type": "friends"}})
    assert r.status_code == 422


def test_throttle_settings_and_check(client, make_user, add_history, now):
    assert client.get("/throttle/settings").json()["max_notifications_per_day"] == 3
    r = client.put("/throttle/settings", json={"cooldown_hours_between_campaigns": 12})
    assert r.status_code == 200
    assert r.json()["cooldown_hours_between_campaigns"] == 12
    assert client.put("/throttle/settings", json={"max_notifications_per_day": 50}).status_code == 422

    user = make_user()
    assert client.get(f"/throttle/check/{user.id}").json()["can_send"] is True
    assert client.get("/throttle/check/missing").status_code == 404


def test_push_register(client, make_user, db):
    user = make_user(push_token=None)
    body = {"user_id": user.id, "push_token": "ExponentPushToken[new]"}
    assert client.post("/push/register", json=body).json()["message"] == "Token registered"
    assert client.post("/push/register", json=body).json()["message"] == "Token already registered"
    db.refresh(user)
    assert user.push_token == "ExponentPushToken[new]"

    r = client.post("/push/register", json={"user_id": user.id, "push_token": None, "notifications_enabled": False})
    assert r.json()["message"] == "Token cleared"
    db.refresh(user)
    assert user.push_token is None
    assert user.notifications_enabled is False
    assert client.post("/push/register", json={"user_id": "ghost", "push_token": "x"}).status_code == 404
