"""
Send push notifications through the Expo push service (https://docs.expo.dev/push-notifications/sending-notifications/).
Expo accepts up to 100 messages per request and answers with one ticket per message, in order:
  {"data": [{"status": "ok", "id": "..."}, {"status": "error", "message": "...", "details": {"error": "DeviceNotRegistered"}}]}
Request-level problems come back as {"errors": [...]} or a non-2xx status.
"""
import logging
from typing import Any

import httpx

from portal.config import settings
from portal.services.push.types import GatewayResult, RecipientResult

logger = logging.getLogger(__name__)


def _message(address: str, title: str, body: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "to": address,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data,
        "priority": "high",
        "channelId": "default",
    }


def _ticket_error(ticket: dict[str, Any]) -> str:
    message = ticket.get("message") or "Unknown error"
    details = ticket.get("details") or {}
    code = details.get("error") if isinstance(details, dict) else None
    return f"{code}: {message}" if code else message


class ExpoPushGateway:
    """Batched sends to the Expo push API over httpx."""

    def __init__(
        self,
        *,
        url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        batch_size: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url or settings.expo_push_url
        self.access_token = access_token if access_token is not None else settings.expo_access_token
        self.timeout = timeout or settings.push_timeout_seconds
        self.batch_size = max(1, min(batch_size or settings.push_batch_size, 100))
        self._transport = transport

    @property
    def gateway_id(self) -> str:
        return "expo"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send(
        self,
        addresses: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> GatewayResult:
        if not addresses:
            return GatewayResult()
        payload_data = data or {}
        recipients: list[RecipientResult] = []
        logger.info("Sending %s push notifications via Expo", len(addresses))
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                for start in range(0, len(addresses), self.batch_size):
                    chunk = addresses[start:start + self.batch_size]
                    messages = [_message(a, title, body, payload_data) for a in chunk]
                    resp = client.post(self.url, json=messages, headers=self._headers())
                    if resp.status_code >= 400:
                        raise _ExpoRequestError(f"HTTP error! status: {resp.status_code}")
                    recipients.extend(self._parse_tickets(chunk, resp.json()))
        except _ExpoRequestError as e:
            if recipients:
                # Earlier chunks landed; report the rest as failed instead of losing what was sent
                return GatewayResult(recipients=recipients + _all_failed(addresses[len(recipients):], str(e)))
            logger.warning("Expo push request failed: %s", e)
            return GatewayResult.transport_failure(str(e))
        except (httpx.HTTPError, ValueError) as e:
            if recipients:
                return GatewayResult(recipients=recipients + _all_failed(addresses[len(recipients):], str(e)))
            logger.warning("Expo push request failed: %s", e, exc_info=True)
            return GatewayResult.transport_failure(str(e) or e.__class__.__name__)
        return GatewayResult(recipients=recipients)

    def _parse_tickets(self, chunk: list[str], body: Any) -> list[RecipientResult]:
        if not isinstance(body, dict):
            raise _ExpoRequestError("Unexpected response body from Expo")
        if body.get("errors"):
            errors = [e.get("message", "Unknown error") for e in body["errors"] if isinstance(e, dict)]
            raise _ExpoRequestError(", ".join(errors) or "Expo rejected the request")
        tickets = body.get("data") or []
        out: list[RecipientResult] = []
        for i, address in enumerate(chunk):
            ticket = tickets[i] if i < len(tickets) and isinstance(tickets[i], dict) else None
            if ticket is None:
                out.append(RecipientResult(address=address, ok=False, error="No ticket returned"))
            elif ticket.get("status") == "ok":
                out.append(RecipientResult(address=address, ok=True, receipt=ticket.get("id")))
            else:
                out.append(RecipientResult(address=address, ok=False, error=_ticket_error(ticket)))
        return out


class _ExpoRequestError(Exception):
    pass


def _all_failed(addresses: list[str], error: str) -> list[RecipientResult]:
    return [RecipientResult(address=a, ok=False, error=error) for a in addresses]
