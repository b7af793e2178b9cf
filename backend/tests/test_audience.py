from datetime import timedelta

from portal.services.audience import parse_audience, reachable, resolve_audience


def test_parse_audience():
    assert parse_audience({"type": "all"}).type == "all"
    assert parse_audience({"type": "users", "userIds": ["a"]}).userIds == ["a"]
    assert parse_audience({"type": "everyone"}) is None
    assert parse_audience(None) is None
    assert parse_audience("all") is None


def test_resolve_variants(db, make_user, now):
    admin = make_user(role="admin")
    root = make_user(role="super_admin")
    regular = make_user()
    recent = make_user(created_at=now - timedelta(days=1))
    opted_out = make_user(notifications_enabled=False)

    def ids(users):
        return [u.id for u in users]

    assert len(resolve_audience(db, {"type": "all"})) == 5
    assert ids(resolve_audience(db, {"type": "admins"})) == [admin.id, root.id]
    assert ids(resolve_audience(db, {"type": "users", "userIds": [regular.id]})) == [regular.id]
    assert resolve_audience(db, {"type": "users", "userIds": []}) == []
    segment = {"type": "segment", "filter": {"role": "user", "created_after": (now - timedelta(days=7)).isoformat()}}
    assert ids(resolve_audience(db, segment)) == [recent.id]
    # Malformed descriptor falls back to everyone who has notifications on
    assert opted_out.id not in ids(resolve_audience(db, {"type": "bogus"}))


def test_reachable(make_user):
    on = make_user()
    off = make_user(notifications_enabled=False)
    blank = make_user(push_token="  ")
    assert reachable([on, off, blank], respect_preferences=True) == [on]
    assert reachable([on, off, blank], respect_preferences=False) == [on, off]
