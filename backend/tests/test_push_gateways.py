import json

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from portal.services.push.apns import ApnsGateway
from portal.services.push.expo import ExpoPushGateway
from portal.services.push.registry import get_gateway, list_gateways


def _expo(handler, **kw):
    return ExpoPushGateway(url="https://expo.test/push", transport=httpx.MockTransport(handler), **kw)


def test_expo_per_recipient_tickets():
    seen = []

    def handler(request):
        messages = json.loads(request.content)
        seen.append(messages)
        tickets = []
        for m in messages:
            if m["to"].endswith("bad]"):
                tickets.append({"status": "error", "message": "not a valid token", "details": {"error": "DeviceNotRegistered"}})
            else:
                tickets.append({"status": "ok", "id": "ticket-" + m["to"]})
        return httpx.Response(200, json={"data": tickets})

    result = _expo(handler).send(["ExponentPushToken[a]", "ExponentPushToken[bad]"], "T", "B", {"k": 1})

    assert seen[0][0]["title"] == "T"
    assert seen[0][0]["data"] == {"k": 1}
    assert result.delivered == 1
    assert result.failed == 1
    assert result.error == "DeviceNotRegistered: not a valid token"
    assert result.transport_error is None


def test_expo_chunks_batches():
    sizes = []

    def handler(request):
        messages = json.loads(request.content)
        sizes.append(len(messages))
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "x"}] * len(messages)})

    result = _expo(handler, batch_size=2).send([f"t{i}" for i in range(5)], "T", "B")
    assert sizes == [2, 2, 1]
    assert result.delivered == 5


def test_expo_http_error_is_transport_failure():
    result = _expo(lambda request: httpx.Response(503)).send(["t1"], "T", "B")
    assert result.transport_error == "HTTP error! status: 503"
    assert result.recipients == []


def test_expo_request_errors_body():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"code": "PUSH_TOO_MANY_EXPERIENCE_IDS", "message": "mixed projects"}]})

    assert _expo(handler).send(["t1"], "T", "B").transport_error == "mixed projects"


def test_expo_sends_access_token():
    headers = {}

    def handler(request):
        headers["authorization"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"data": [{"status": "ok"}]})

    _expo(handler, access_token="secret").send(["t1"], "T", "B")
    assert headers["authorization"] == "Bearer secret"


def _p8_key() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def test_apns_per_token_results():
    def handler(request):
        assert request.headers["apns-topic"] == "com.example.app"
        assert request.headers["authorization"].startswith("bearer ")
        if request.url.path.endswith("/dead"):
            return httpx.Response(410, json={"reason": "Unregistered"})
        return httpx.Response(200, headers={"apns-id": "abc"})

    gateway = ApnsGateway(
        key_id="KEY123", team_id="TEAM123", bundle_id="com.example.app", p8_key=_p8_key(),
        use_sandbox=True, transport=httpx.MockTransport(handler),
    )
    result = gateway.send(["live", "dead"], "T", "B", {"n": 1})
    assert [r.ok for r in result.recipients] == [True, False]
    assert result.recipients[0].receipt == "abc"
    assert result.recipients[1].error == "Unregistered"


def test_apns_missing_config_is_transport_failure():
    result = ApnsGateway(key_id="k", team_id="t", bundle_id="").send(["tok"], "T", "B")
    assert result.transport_error == "APNS_BUNDLE_ID not set"


def test_registry():
    assert set(list_gateways()) >= {"expo", "apns"}
    assert get_gateway("expo").gateway_id == "expo"
    assert get_gateway("APNS").gateway_id == "apns"
