"""
Centralized error taxonomy for the trigger engine and its admin API.
Engine code raises these; the runner isolates them per trigger / per user, and
routes map them to HTTP responses with engine_error_to_http.
"""
from __future__ import annotations

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class EngineError(Exception):
    """Base class for trigger engine failures."""


class TriggerConfigError(EngineError):
    """Malformed condition_config, unknown trigger type, or type mismatch."""


class EligibilityQueryError(EngineError):
    """The user/activity store failed while evaluating a trigger."""


class DispatchError(EngineError):
    """Creating or delivering a notification for a user failed."""


class GatewayTransportError(EngineError):
    """No usable push provider (unknown PUSH_PROVIDER, provider unreachable)."""


class NotificationStateError(EngineError):
    """Attempted to move a scheduled notification out of a terminal status."""


class NotFoundError(EngineError):
    """Unknown id at the admin surface."""


# ---------------------------------------------------------------------------
# HTTP mapping: (exception type, status code). First match wins.
# ---------------------------------------------------------------------------

STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_UNPROCESSABLE = 422
STATUS_SERVICE_UNAVAILABLE = 503  # store or push provider down
STATUS_INTERNAL_ERROR = 500

ENGINE_ERROR_RULES: list[tuple[type[Exception], int]] = [
    (NotFoundError, STATUS_NOT_FOUND),
    (NotificationStateError, STATUS_CONFLICT),
    (TriggerConfigError, STATUS_UNPROCESSABLE),
    (EligibilityQueryError, STATUS_SERVICE_UNAVAILABLE),
    (GatewayTransportError, STATUS_SERVICE_UNAVAILABLE),
]


def engine_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an engine exception into an HTTPException.
    Uses ENGINE_ERROR_RULES for known error types; otherwise returns 500 with the exception message.
    """
    for exc_type, status_code in ENGINE_ERROR_RULES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))


def error_message(exc: BaseException) -> str:
    """Human-readable message for errors lists and error_message columns."""
    return str(exc) or exc.__class__.__name__
