"""Transport layer for the WhatsApp bridge.

This package contains all IO, wire protocol, and network handling.

Components:
- ws: WebSocket connection management
- ws_client: WebSocket message iteration
- protocol: Envelope builders and lifecycle frame parsing
- bridge: Protocol client handle and handle factory
"""

from .bridge import BridgeClientFactory, BridgeSession
from .protocol import (
    build_envelope,
    build_logout,
    build_send_message,
    build_session_start,
    parse_lifecycle_event,
)
from .ws import connect_websocket
from .ws_client import BridgeWsClient, BridgeWsMessage, BridgeWsMessageType

__all__ = [
    "BridgeClientFactory",
    "BridgeSession",
    "BridgeWsClient",
    "BridgeWsMessage",
    "BridgeWsMessageType",
    "build_envelope",
    "build_logout",
    "build_send_message",
    "build_session_start",
    "connect_websocket",
    "parse_lifecycle_event",
]
