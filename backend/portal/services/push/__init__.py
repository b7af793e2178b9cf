"""
Delivery gateways: Expo, APNs, etc.
Each gateway talks to its provider in its own way but returns the same GatewayResult
so the dispatcher stays provider-agnostic.
"""
from portal.services.push.base import DeliveryGateway
from portal.services.push.registry import get_gateway, list_gateways
from portal.services.push.types import GatewayResult, RecipientResult

__all__ = [
    "DeliveryGateway",
    "GatewayResult",
    "RecipientResult",
    "get_gateway",
    "list_gateways",
]
