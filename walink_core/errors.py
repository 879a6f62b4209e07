"""Error types for the walink session core and its bridge transport."""

from __future__ import annotations


class WalinkError(Exception):
    """Base error for walink failures."""


class SessionError(WalinkError):
    """Base error for session controller operations."""


class CredentialLoadFailed(SessionError):
    """Stored credentials could not be read or parsed."""


class HandleConstructionFailed(SessionError):
    """The protocol client handle could not be created."""


class NotConnected(SessionError):
    """Operation requires an open session."""


class DeliveryFailed(SessionError):
    """The protocol client rejected or failed a send."""


class BridgeClientError(WalinkError):
    """Base error for bridge client failures."""


class BridgeTimeout(BridgeClientError):
    """Timeout while communicating with the bridge."""


class BridgeConnectionError(BridgeClientError):
    """Network connection to the bridge failed."""


class BridgeHandshakeError(BridgeClientError):
    """WebSocket handshake failed."""


class BridgeResponseError(BridgeClientError):
    """Error frame returned by the bridge."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
