"""Protocol for delivery gateways. All gateways return the same normalized shape."""
from typing import Any, Protocol

from portal.services.push.types import GatewayResult


class DeliveryGateway(Protocol):
    """Interface for Expo, APNs, etc. Same contract; only transport differs."""

    @property
    def gateway_id(self) -> str:
        """Unique id (e.g. 'expo', 'apns') used in PUSH_PROVIDER."""
        ...

    def send(
        self,
        addresses: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> GatewayResult:
        """
        Send one message to every address as a batch.
        Per-recipient failures go in GatewayResult.recipients; transport failures in transport_error.
        Must not raise for provider or network errors.
        """
        ...
