"""WebSocket connection helper for the WhatsApp bridge.

The client offers the ``walink.bridge.v1`` subprotocol. Bridges that predate
subprotocol negotiation answer without one and are still accepted; a bridge
that selects anything else fails the handshake inside ``websockets``.
"""

from __future__ import annotations

import logging

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)
from websockets.typing import Subprotocol

from .. import __version__
from ..errors import (
    BridgeConnectionError,
    BridgeHandshakeError,
    BridgeTimeout,
)

_LOGGER = logging.getLogger(__name__)

BRIDGE_SUBPROTOCOL = Subprotocol("walink.bridge.v1")
USER_AGENT = f"walink-core/{__version__}"

# Seconds to wait for the bridge to acknowledge a close frame.
CLOSE_TIMEOUT = 2.0


def bridge_url(host: str, port: int, path: str = "/ws") -> str:
    """Build the bridge endpoint URL, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"ws://{host}:{port}{path}"


async def connect_websocket(
    host: str,
    port: int,
    *,
    path: str = "/ws",
    token: str | None = None,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open the bridge WebSocket.

    Args:
        host: Bridge host (IPv6 literals allowed)
        port: Bridge port
        path: WebSocket path (default: /ws)
        token: Optional bearer token sent with the handshake
        ping_interval: Keepalive ping interval, None to disable
        timeout: Limit for TCP connect plus opening handshake
    """
    url = bridge_url(host, port, path)
    headers = {"Authorization": f"Bearer {token}"} if token else None
    try:
        ws = await websockets.connect(
            url,
            additional_headers=headers,
            subprotocols=[BRIDGE_SUBPROTOCOL],
            user_agent_header=USER_AGENT,
            open_timeout=timeout,
            ping_interval=ping_interval,
            close_timeout=CLOSE_TIMEOUT,
            max_size=None,
        )
    except TimeoutError as err:
        raise BridgeTimeout(f"Bridge at {url} did not answer within {timeout}s") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise BridgeHandshakeError(f"Bridge handshake with {url} failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise BridgeConnectionError(f"Cannot connect to bridge at {url}: {err}") from err

    _LOGGER.debug("Connected to %s (subprotocol %s)", url, ws.subprotocol or "none")
    return ws
