"""Protocol client handle backed by an external WhatsApp bridge process.

The bridge owns the WhatsApp Web socket and its handshake. This module speaks
the bridge's JSON frame protocol over one WebSocket per handle: it forwards
connection and credential frames to the session listener as lifecycle events
and correlates send/logout requests with their responses by ``msg_id``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..client import DeliveryReceipt, EventListener, OutgoingMessage
from ..errors import (
    BridgeClientError,
    BridgeConnectionError,
    BridgeResponseError,
    BridgeTimeout,
    DeliveryFailed,
    HandleConstructionFailed,
)
from ..events import Closed, LifecycleEvent
from .protocol import (
    MSG_RESPONSE,
    build_logout,
    build_send_message,
    build_session_start,
    parse_lifecycle_event,
)
from .ws_client import BridgeWsClient, BridgeWsMessageType

_LOGGER = logging.getLogger(__name__)

BRIDGE_LOST_REASON = "bridge connection lost"


class BridgeSession:
    """One bridge-backed WhatsApp session (a protocol client handle)."""

    def __init__(
        self,
        ws: BridgeWsClient,
        listener: EventListener,
        *,
        request_timeout: float = 30.0,
    ) -> None:
        self._ws = ws
        self._listener = listener
        self._request_timeout = request_timeout
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._listen_task: asyncio.Task[None] | None = None
        self._closed = False
        self._close_emitted = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, credentials: dict[str, Any] | None) -> None:
        """Start listening and ask the bridge to open the session."""
        if self._listen_task is None:
            self._listen_task = asyncio.create_task(self._listen())
        await self._request(build_session_start(credentials))

    async def send_message(
        self, recipient: str, message: OutgoingMessage
    ) -> DeliveryReceipt:
        try:
            frame = build_send_message(recipient, message)
        except ValueError as err:
            raise DeliveryFailed(str(err)) from err

        result = await self._request(frame)
        message_id = result.get("message_id")
        if not message_id:
            raise DeliveryFailed("Bridge response did not include a message id")
        return DeliveryReceipt(message_id=str(message_id), recipient=frame["body"]["to"])

    async def logout(self) -> None:
        await self._request(build_logout())

    async def close(self) -> None:
        """Stop listening and close the WebSocket. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        self._fail_pending(BridgeConnectionError("Bridge session closed"))
        await self._ws.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _request(self, frame: dict[str, Any]) -> dict[str, Any]:
        if self._closed:
            raise BridgeConnectionError("Bridge session is closed")

        msg_id = frame["msg_id"]
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._ws.send_json(frame)
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except TimeoutError as err:
            raise BridgeTimeout(f"{frame['type']} request timed out") from err
        finally:
            self._pending.pop(msg_id, None)

    async def _listen(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type is BridgeWsMessageType.TEXT:
                    try:
                        frame = self._ws.decode_json(msg)
                    except BridgeClientError as err:
                        _LOGGER.warning("Invalid bridge frame: %s", err)
                        continue
                    self._handle_frame(frame)
                elif msg.type is BridgeWsMessageType.CLOSED:
                    _LOGGER.info("Bridge closed the WebSocket")
                    break
                else:
                    _LOGGER.error("Bridge WebSocket error")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.exception("Unexpected bridge listener error: %s", err)
        finally:
            if not self._closed:
                self._fail_pending(BridgeConnectionError(BRIDGE_LOST_REASON))
                self._emit(Closed(reason=BRIDGE_LOST_REASON))

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        if frame.get("type") == MSG_RESPONSE:
            body = frame.get("body")
            if not isinstance(body, dict):
                _LOGGER.warning("Malformed response frame: body is not an object")
                return
            self._resolve(body)
            return

        try:
            event = parse_lifecycle_event(frame)
        except ValueError as err:
            _LOGGER.warning("Malformed %s frame: %s", frame.get("type"), err)
            return

        if event is None:
            _LOGGER.debug("Ignoring bridge frame type: %s", frame.get("type"))
            return
        self._emit(event)

    def _resolve(self, body: dict[str, Any]) -> None:
        future = self._pending.get(body.get("reply_to", ""))
        if future is None or future.done():
            _LOGGER.debug("Response for unknown request %s", body.get("reply_to"))
            return
        if body.get("ok", False):
            result = body.get("result")
            future.set_result(result if isinstance(result, dict) else {})
        else:
            future.set_exception(
                BridgeResponseError(
                    str(body.get("code", "error")),
                    str(body.get("message", "Bridge request failed")),
                )
            )

    def _emit(self, event: LifecycleEvent) -> None:
        if isinstance(event, Closed):
            if self._close_emitted:
                return
            self._close_emitted = True
        self._listener(event)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()


class BridgeClientFactory:
    """Handle factory connecting one ``BridgeSession`` per call."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        path: str = "/ws",
        token: str | None = None,
        connect_timeout: float = 15.0,
        request_timeout: float = 30.0,
        ws_client_factory: Callable[[], BridgeWsClient] = BridgeWsClient,
    ) -> None:
        self._host = host
        self._port = port
        self._path = path
        self._token = token
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._ws_client_factory = ws_client_factory

    async def __call__(
        self, credentials: dict[str, Any] | None, listener: EventListener
    ) -> BridgeSession:
        ws = self._ws_client_factory()
        try:
            await ws.connect(
                self._host,
                self._port,
                path=self._path,
                token=self._token,
                timeout=self._connect_timeout,
            )
        except BridgeClientError as err:
            raise HandleConstructionFailed(
                f"Cannot reach bridge at {self._host}:{self._port}: {err}"
            ) from err

        session = BridgeSession(ws, listener, request_timeout=self._request_timeout)
        try:
            await session.start(credentials)
        except BridgeClientError as err:
            await session.close()
            raise HandleConstructionFailed(f"Bridge refused session start: {err}") from err
        except BaseException:
            await session.close()
            raise

        _LOGGER.debug("Bridge session started on %s:%s", self._host, self._port)
        return session
