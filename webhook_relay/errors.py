"""Exception taxonomy for the relay.

Only the first two ever reach an HTTP caller. Persistence and delivery
failures are logged where they happen and swallowed there: the in-memory
registry stays authoritative, and the original webhook sender has already
been acknowledged by the time a delivery can fail.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for relay errors."""


class EndpointValidationError(RelayError):
    """Raised when a registration request carries a bad URL or an empty name."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(f"{message}: {details}" if details else message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class EndpointNotFoundError(RelayError):
    """Raised when no endpoint has the requested id."""

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Endpoint not found: {endpoint_id}")


class PersistenceError(RelayError):
    """Raised by the storage layer when the endpoints file cannot be read or written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class DeliveryError(RelayError):
    """A single outbound delivery failed (transport error or non-2xx status)."""

    def __init__(self, target: str, detail: str, status_code: int | None = None):
        self.target = target
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Delivery to {target} failed: {detail}")
