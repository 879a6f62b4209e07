"""Frame helpers for the WhatsApp bridge protocol.

Every frame is a JSON envelope::

    {"v": 1, "type": "...", "msg_id": "...", "ts": 1700000000000, "body": {...}}

Frames sent to the bridge:
- ``session.start``: body ``{"credentials": {...} | null}``
- ``message.send``: body ``{"to": "<jid>", "content": {...}}``
- ``session.logout``: empty body

Frames received from the bridge:
- ``connection.qr``: body ``{"code": "..."}``
- ``connection.open``: body ``{"user_id": "..."}``
- ``connection.close``: body ``{"status_code": 401, "reason": "..."}``
- ``creds.update``: body ``{"credentials": {...}}``
- ``response``: body ``{"reply_to": "<msg_id>", "ok": true, "result": {...}}``
  or ``{"reply_to": "<msg_id>", "ok": false, "code": "...", "message": "..."}``

Unknown optional fields MUST be ignored by the recipient.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from ..client import OutgoingMessage, normalize_recipient
from ..events import (
    Closed,
    CredentialsChanged,
    LifecycleEvent,
    Opened,
    PairingCodeAvailable,
)

PROTOCOL_VERSION = 1

MSG_SESSION_START = "session.start"
MSG_SESSION_LOGOUT = "session.logout"
MSG_MESSAGE_SEND = "message.send"
MSG_CONNECTION_QR = "connection.qr"
MSG_CONNECTION_OPEN = "connection.open"
MSG_CONNECTION_CLOSE = "connection.close"
MSG_CREDS_UPDATE = "creds.update"
MSG_RESPONSE = "response"


def build_envelope(
    *,
    msg_type: str,
    body: dict[str, Any],
    msg_id: str | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build a canonical envelope for bridge frames.

    Args:
        msg_type: Frame type (e.g., "message.send").
        body: JSON-serializable body.
        msg_id: Optional caller-supplied identifier. Generated when omitted.
        timestamp_ms: Optional epoch milliseconds override.
    """
    return {
        "v": PROTOCOL_VERSION,
        "type": msg_type,
        "msg_id": msg_id or str(uuid.uuid4()),
        "ts": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        "body": body,
    }


def build_session_start(credentials: dict[str, Any] | None) -> dict[str, Any]:
    return build_envelope(msg_type=MSG_SESSION_START, body={"credentials": credentials})


def build_logout() -> dict[str, Any]:
    return build_envelope(msg_type=MSG_SESSION_LOGOUT, body={})


def build_send_message(recipient: str, message: OutgoingMessage) -> dict[str, Any]:
    return build_envelope(
        msg_type=MSG_MESSAGE_SEND,
        body={"to": normalize_recipient(recipient), "content": message.as_content()},
    )


def parse_lifecycle_event(frame: dict[str, Any]) -> LifecycleEvent | None:
    """Translate a bridge frame into a lifecycle event.

    Returns None for frames that are not lifecycle events.

    Raises:
        ValueError: If a lifecycle frame is missing required fields.
    """
    msg_type = frame.get("type")
    body = frame.get("body") or {}
    if not isinstance(body, dict):
        raise ValueError("Frame body must be an object")

    if msg_type == MSG_CONNECTION_QR:
        code = body.get("code")
        if not isinstance(code, str) or not code:
            raise ValueError("connection.qr frame without code")
        return PairingCodeAvailable(code=code)

    if msg_type == MSG_CONNECTION_OPEN:
        user_id = body.get("user_id")
        return Opened(user_id=str(user_id) if user_id is not None else None)

    if msg_type == MSG_CONNECTION_CLOSE:
        status_code = body.get("status_code")
        if status_code is not None and not isinstance(status_code, int):
            try:
                status_code = int(status_code)
            except (TypeError, ValueError):
                status_code = None
        reason = body.get("reason")
        return Closed(status_code=status_code, reason=str(reason) if reason else None)

    if msg_type == MSG_CREDS_UPDATE:
        credentials = body.get("credentials")
        if not isinstance(credentials, dict):
            raise ValueError("creds.update frame without credentials object")
        return CredentialsChanged(credentials=credentials)

    return None
