"""Tests for the bridge WebSocket connection helper and client wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosed, InvalidURI

from walink_core.errors import (
    BridgeClientError,
    BridgeConnectionError,
    BridgeHandshakeError,
    BridgeTimeout,
)
from walink_core.transport.ws import (
    BRIDGE_SUBPROTOCOL,
    USER_AGENT,
    bridge_url,
    connect_websocket,
)
from walink_core.transport.ws_client import (
    BridgeWsClient,
    BridgeWsMessage,
    BridgeWsMessageType,
)


class AsyncIteratorMock:
    """Async iterator standing in for a websockets connection."""

    def __init__(self, items: list, *, raise_on_iter: Exception | None = None):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._raise_on_iter is not None:
            raise self._raise_on_iter
        if self._index >= len(self._items):
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


class TestConnectWebsocket:
    """Tests for connect_websocket()."""

    @pytest.mark.asyncio
    async def test_connect_with_token(self):
        """The bearer token travels in the handshake headers."""
        mock_ws = MagicMock()
        with patch(
            "walink_core.transport.ws.websockets.connect",
            new=AsyncMock(return_value=mock_ws),
        ) as mock_connect:
            result = await connect_websocket("127.0.0.1", 8765, token="tok")

        assert result is mock_ws
        args, kwargs = mock_connect.call_args
        assert args == ("ws://127.0.0.1:8765/ws",)
        assert kwargs["additional_headers"] == {"Authorization": "Bearer tok"}
        assert kwargs["ping_interval"] == 20
        assert kwargs["subprotocols"] == [BRIDGE_SUBPROTOCOL]
        assert kwargs["user_agent_header"] == USER_AGENT
        assert kwargs["open_timeout"] == 15.0

    @pytest.mark.asyncio
    async def test_connect_without_token(self):
        """No Authorization header is sent without a token."""
        with patch(
            "walink_core.transport.ws.websockets.connect",
            new=AsyncMock(return_value=MagicMock()),
        ) as mock_connect:
            await connect_websocket("bridge", 9000, path="/socket")

        assert mock_connect.call_args.args == ("ws://bridge:9000/socket",)
        assert mock_connect.call_args.kwargs["additional_headers"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TimeoutError(), BridgeTimeout),
            (InvalidURI("ws://bad", "invalid"), BridgeHandshakeError),
            (ConnectionRefusedError(), BridgeConnectionError),
        ],
    )
    async def test_connect_error_mapping(self, error, expected):
        """Library errors are translated into bridge errors."""
        with patch(
            "walink_core.transport.ws.websockets.connect",
            new=AsyncMock(side_effect=error),
        ):
            with pytest.raises(expected):
                await connect_websocket("127.0.0.1", 8765)

    def test_bridge_url(self):
        """IPv6 hosts are bracketed and the path gets a leading slash."""
        assert bridge_url("bridge", 9000) == "ws://bridge:9000/ws"
        assert bridge_url("::1", 8765, "socket") == "ws://[::1]:8765/socket"
        assert bridge_url("[::1]", 8765) == "ws://[::1]:8765/ws"

    @pytest.mark.asyncio
    async def test_error_names_endpoint(self):
        """Connection errors say which bridge endpoint failed."""
        with patch(
            "walink_core.transport.ws.websockets.connect",
            new=AsyncMock(side_effect=ConnectionRefusedError("refused")),
        ):
            with pytest.raises(BridgeConnectionError, match="ws://bridge:9000/ws"):
                await connect_websocket("bridge", 9000)


class TestBridgeWsMessage:
    """Tests for BridgeWsMessage dataclass."""

    def test_enum_values(self):
        """Test enum has expected values."""
        assert BridgeWsMessageType.TEXT.value == "text"
        assert BridgeWsMessageType.CLOSED.value == "closed"
        assert BridgeWsMessageType.ERROR.value == "error"

    def test_message_is_frozen(self):
        """Messages are immutable."""
        msg = BridgeWsMessage(type=BridgeWsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestBridgeWsClientConnect:
    """Tests for BridgeWsClient.connect() and close()."""

    @pytest.mark.asyncio
    async def test_connect_passes_parameters(self):
        """Connection parameters reach connect_websocket."""
        mock_ws = AsyncMock()

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = BridgeWsClient()
            await client.connect("10.0.0.1", 8765, path="/bridge", token="tok", timeout=5.0)

            mock_connect.assert_called_once_with(
                "10.0.0.1",
                8765,
                path="/bridge",
                token="tok",
                ping_interval=20,
                timeout=5.0,
            )
            assert client.connected

    @pytest.mark.asyncio
    async def test_connect_propagates_errors(self):
        """Connection errors are propagated."""
        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            side_effect=BridgeConnectionError("Connection failed"),
        ):
            client = BridgeWsClient()
            with pytest.raises(BridgeConnectionError, match="Connection failed"):
                await client.connect("127.0.0.1", 8765)
            assert not client.connected

    @pytest.mark.asyncio
    async def test_close_connected(self):
        """Closing a connected client closes the socket."""
        mock_ws = AsyncMock()

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            await client.close()

            mock_ws.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_not_connected(self):
        """Closing an unconnected client is a no-op."""
        await BridgeWsClient().close()


class TestBridgeWsClientSendJson:
    """Tests for BridgeWsClient.send_json()."""

    @pytest.mark.asyncio
    async def test_send_json_success(self):
        """Payloads are serialized to JSON text."""
        mock_ws = AsyncMock()

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            await client.send_json({"type": "session.logout", "body": {}})

            mock_ws.send.assert_called_once_with('{"type": "session.logout", "body": {}}')

    @pytest.mark.asyncio
    async def test_send_json_not_connected(self):
        """send_json raises when not connected."""
        client = BridgeWsClient()
        with pytest.raises(BridgeConnectionError, match="not connected"):
            await client.send_json({"type": "test"})

    @pytest.mark.asyncio
    async def test_send_json_connection_closed(self):
        """A closed socket surfaces as BridgeConnectionError."""
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            with pytest.raises(BridgeConnectionError, match="closed"):
                await client.send_json({"type": "test"})


class TestBridgeWsClientIteration:
    """Tests for BridgeWsClient async iteration."""

    def test_iter_not_connected(self):
        """Iteration raises when not connected."""
        with pytest.raises(BridgeConnectionError, match="not connected"):
            BridgeWsClient().__aiter__()

    @pytest.mark.asyncio
    async def test_iter_graceful_close(self):
        """Text frames are followed by CLOSED when the peer finishes."""
        mock_ws = AsyncIteratorMock(["hello"])

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert len(messages) == 2
        assert messages[0] == BridgeWsMessage(BridgeWsMessageType.TEXT, "hello")
        assert messages[1].type is BridgeWsMessageType.CLOSED

    @pytest.mark.asyncio
    async def test_iter_connection_closed(self):
        """ConnectionClosed becomes a CLOSED message."""
        mock_ws = AsyncIteratorMock([], raise_on_iter=ConnectionClosed(None, None))

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert [m.type for m in messages] == [BridgeWsMessageType.CLOSED]

    @pytest.mark.asyncio
    async def test_iter_unexpected_error(self):
        """Unexpected errors become an ERROR message."""
        mock_ws = AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        assert [m.type for m in messages] == [BridgeWsMessageType.ERROR]

    @pytest.mark.asyncio
    async def test_iter_skips_binary_messages(self):
        """Binary frames are skipped."""
        mock_ws = AsyncIteratorMock(["text1", b"\x00\x01\x02", "text2"])

        with patch(
            "walink_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ):
            client = BridgeWsClient()
            await client.connect("127.0.0.1", 8765)
            messages = [msg async for msg in client]

        text = [m.data for m in messages if m.type is BridgeWsMessageType.TEXT]
        assert text == ["text1", "text2"]


class TestDecodeJson:
    """Tests for BridgeWsClient.decode_json()."""

    def test_decode_object(self):
        """JSON objects decode to dicts."""
        msg = BridgeWsMessage(BridgeWsMessageType.TEXT, '{"type": "response"}')
        assert BridgeWsClient.decode_json(msg) == {"type": "response"}

    @pytest.mark.parametrize(
        ("message", "match"),
        [
            (BridgeWsMessage(BridgeWsMessageType.CLOSED), "Only TEXT"),
            (BridgeWsMessage(BridgeWsMessageType.TEXT), "not a string"),
            (BridgeWsMessage(BridgeWsMessageType.TEXT, "{oops"), "not valid JSON"),
            (BridgeWsMessage(BridgeWsMessageType.TEXT, "[1]"), "not a JSON object"),
        ],
    )
    def test_decode_errors(self, message, match):
        """Undecodable messages raise BridgeClientError."""
        with pytest.raises(BridgeClientError, match=match):
            BridgeWsClient.decode_json(message)
