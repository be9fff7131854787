"""Error taxonomy shared by the provider gateway."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .types import Availability


class GatewayError(RuntimeError):
    """Base error raised for provider gateway failures."""


class TransportError(GatewayError):
    """Raised for a non-success HTTP status or a failed connection."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class AuthError(TransportError):
    """Raised when a credential is missing or rejected by the provider."""


class ProtocolParseError(GatewayError):
    """Raised for a malformed unit inside an otherwise healthy stream."""


class AvailabilityError(GatewayError):
    """Raised when the on-device engine is missing or its model is not ready."""

    def __init__(self, message: str, availability: "Availability") -> None:
        super().__init__(message)
        self.availability = availability


class UnknownProviderError(GatewayError, KeyError):
    """Raised when a provider id has no registered gateway."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Unknown provider"
