"""
Send push notifications directly via Apple Push Notification service (APNs).
Requires APNS_KEY_ID, APNS_TEAM_ID, APNS_BUNDLE_ID, and APNS_KEY_P8_PATH or APNS_KEY_P8_BASE64 in env.
If not configured, send() reports a transport failure so the notification is marked failed.
"""
import base64
import logging
import time
from pathlib import Path
from typing import Any

import httpx
import jwt

from portal.config import settings
from portal.services.push.types import GatewayResult, RecipientResult

logger = logging.getLogger(__name__)

# APNs host: sandbox for dev builds, production for release
APNS_SANDBOX = "https://api.sandbox.push.apple.com"
APNS_PRODUCTION = "https://api.push.apple.com"

# APNs accepts tokens with iat within the last hour
_JWT_EXPIRY_SECONDS = 55 * 60  # refresh a bit before 1 hour


def _load_p8_key() -> str | None:
    """Load .p8 key from APNS_KEY_P8_BASE64 or APNS_KEY_P8_PATH. Return None if not set."""
    if settings.apns_key_p8_base64:
        try:
            return base64.b64decode(settings.apns_key_p8_base64).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("APNS_KEY_P8_BASE64 decode failed: %s", e)
            return None
    path = settings.apns_key_p8_path
    if path and Path(path).exists():
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("APNS_KEY_P8_PATH read failed: %s", e)
            return None
    return None


class ApnsGateway:
    """One HTTP/2 request per device token, sharing a client for the batch."""

    def __init__(
        self,
        *,
        key_id: str | None = None,
        team_id: str | None = None,
        bundle_id: str | None = None,
        p8_key: str | None = None,
        use_sandbox: bool | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id or settings.apns_key_id
        self.team_id = team_id or settings.apns_team_id
        self.bundle_id = bundle_id or settings.apns_bundle_id
        self._p8_key = p8_key
        self.use_sandbox = settings.apns_use_sandbox if use_sandbox is None else use_sandbox
        self._transport = transport
        # (token_string, expiry_epoch)
        self._jwt_cache: tuple[str, float] | None = None

    @property
    def gateway_id(self) -> str:
        return "apns"

    def _get_jwt(self) -> str | None:
        """Build and cache the provider JWT. Returns None if config missing."""
        if not self.key_id or not self.team_id:
            return None
        p8 = self._p8_key or _load_p8_key()
        if not p8:
            return None
        now = time.time()
        if self._jwt_cache and self._jwt_cache[1] > now:
            return self._jwt_cache[0]
        try:
            token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                p8,
                algorithm="ES256",
                headers={"alg": "ES256", "kid": self.key_id},
            )
        except (jwt.PyJWTError, ValueError) as e:
            logger.warning("APNs JWT build failed: %s", e, exc_info=True)
            return None
        self._jwt_cache = (token, now + _JWT_EXPIRY_SECONDS)
        return token

    def send(
        self,
        addresses: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> GatewayResult:
        if not addresses:
            return GatewayResult()
        if not self.bundle_id:
            return GatewayResult.transport_failure("APNS_BUNDLE_ID not set")
        jwt_token = self._get_jwt()
        if not jwt_token:
            return GatewayResult.transport_failure("APNs not configured (key/team)")
        base_url = APNS_SANDBOX if self.use_sandbox else APNS_PRODUCTION
        headers = {
            "authorization": f"bearer {jwt_token}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        payload: dict[str, Any] = {
            "aps": {
                "alert": {"title": title, "body": body},
                "sound": "default",
            }
        }
        if data:
            payload["data"] = data
        recipients: list[RecipientResult] = []
        try:
            with httpx.Client(
                http2=self._transport is None,
                timeout=settings.push_timeout_seconds,
                transport=self._transport,
            ) as client:
                for token in addresses:
                    resp = client.post(f"{base_url}/3/device/{token}", json=payload, headers=headers)
                    if resp.status_code == 200:
                        recipients.append(
                            RecipientResult(address=token, ok=True, receipt=resp.headers.get("apns-id"))
                        )
                        continue
                    reason = _reason(resp)
                    logger.warning("APNs returned %s for token %s...: %s", resp.status_code, token[:20], reason)
                    recipients.append(RecipientResult(address=token, ok=False, error=reason))
        except httpx.TransportError as e:
            if not recipients:
                logger.warning("APNs request failed: %s", e, exc_info=True)
                return GatewayResult.transport_failure(str(e) or e.__class__.__name__)
            done = {r.address for r in recipients}
            recipients.extend(
                RecipientResult(address=t, ok=False, error=str(e)) for t in addresses if t not in done
            )
        return GatewayResult(recipients=recipients)


def _reason(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("reason"):
        return str(body["reason"])
    return f"HTTP {resp.status_code}"
