"""Registry of delivery gateways. Add new providers here; PUSH_PROVIDER picks one."""
import logging
from typing import Any, Callable

from portal.config import settings

logger = logging.getLogger(__name__)

_factories: dict[str, Callable[[], Any]] = {}


def register(name: str, factory: Callable[[], Any]) -> None:
    """Register a gateway factory (e.g. 'expo', 'apns')."""
    _factories[name] = factory
    logger.debug("Registered delivery gateway: %s", name)


def get_gateway(name: str | None = None) -> Any:
    """Build the gateway by name (default: settings.push_provider). Raises KeyError if unknown."""
    key = (name or settings.push_provider).strip().lower()
    if key not in _factories:
        raise KeyError(f"Unknown push provider: {key}. Available: {list(_factories.keys())}")
    return _factories[key]()


def list_gateways() -> list[str]:
    return list(_factories.keys())


def _init_registry() -> None:
    from portal.services.push.apns import ApnsGateway
    from portal.services.push.expo import ExpoPushGateway

    register("expo", ExpoPushGateway)
    register("apns", ApnsGateway)


# Register built-in gateways on first import
_init_registry()
