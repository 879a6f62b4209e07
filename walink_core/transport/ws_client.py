"""WebSocket client wrapper for the WhatsApp bridge."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import BridgeClientError, BridgeConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class BridgeWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class BridgeWsMessage:
    """Normalized WebSocket message payload."""

    type: BridgeWsMessageType
    data: str | None = None


class BridgeWsClient:
    """Wrapper around the websockets library for bridge traffic."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        host: str,
        port: int,
        *,
        path: str = "/ws",
        token: str | None = None,
        ping_interval: int = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the bridge websocket."""
        self._ws = await connect_websocket(
            host,
            port,
            path=path,
            token=token,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise BridgeConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise BridgeConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[BridgeWsMessage]:
        if self._ws is None:
            raise BridgeConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[BridgeWsMessage]:
        if self._ws is None:
            raise BridgeConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    continue
                yield BridgeWsMessage(BridgeWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield BridgeWsMessage(type=BridgeWsMessageType.CLOSED)
        except Exception:
            yield BridgeWsMessage(type=BridgeWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield BridgeWsMessage(type=BridgeWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: BridgeWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into JSON."""
        if message.type is not BridgeWsMessageType.TEXT:
            raise BridgeClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise BridgeClientError("Message data is not a string")
        try:
            result = json.loads(message.data)
        except json.JSONDecodeError as err:
            raise BridgeClientError("Message data is not valid JSON") from err
        if not isinstance(result, dict):
            raise BridgeClientError("Message data is not a JSON object")
        return result
