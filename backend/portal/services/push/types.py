"""Normalized delivery results. Same shape regardless of Expo/APNs/etc."""
from dataclasses import dataclass, field


@dataclass
class RecipientResult:
    """Outcome for one push address inside a batch."""
    address: str
    ok: bool
    error: str | None = None
    receipt: str | None = None  # provider ticket/apns-id when accepted


@dataclass
class GatewayResult:
    """
    Outcome of one send() call.

    transport_error is set when the provider could not be reached or rejected the
    request as a whole; then recipients is empty and nothing was delivered.
    Otherwise recipients holds one entry per address, failures included.
    """
    recipients: list[RecipientResult] = field(default_factory=list)
    transport_error: str | None = None

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.recipients if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.recipients if not r.ok)

    @property
    def success(self) -> bool:
        return self.transport_error is None and self.failed == 0

    @property
    def error(self) -> str | None:
        if self.transport_error:
            return self.transport_error
        errors = [r.error or "Unknown error" for r in self.recipients if not r.ok]
        return ", ".join(errors) if errors else None

    @classmethod
    def transport_failure(cls, message: str) -> "GatewayResult":
        return cls(recipients=[], transport_error=message)
