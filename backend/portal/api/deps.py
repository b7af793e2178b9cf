"""Shared route dependencies. Tests override these via app.dependency_overrides."""
from portal.core.errors import GatewayTransportError, engine_error_to_http
from portal.services.push.base import DeliveryGateway
from portal.services.push.registry import get_gateway


def get_delivery_gateway() -> DeliveryGateway:
    try:
        return get_gateway()
    except KeyError as e:
        raise engine_error_to_http(GatewayTransportError(e.args[0] if e.args else str(e))) from e
