"""Protocol client interface consumed by the session controller.

The controller never talks to the network itself. It asks a handle factory for
a handle bound to the stored credentials and a listener, then drives the handle
through this narrow surface.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .events import LifecycleEvent

EventListener = Callable[[LifecycleEvent], None]

_NON_DIGITS = re.compile(r"\D")

MEDIA_KINDS: frozenset[str] = frozenset({"image", "video", "audio", "document"})


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    """Text or media content to dispatch.

    Exactly one of ``text`` or ``media_url`` must be set. ``caption`` only
    applies to media.
    """

    text: str | None = None
    media_url: str | None = None
    media_kind: str = "image"
    mimetype: str | None = None
    caption: str | None = None

    def __post_init__(self) -> None:
        if (self.text is None) == (self.media_url is None):
            raise ValueError("Exactly one of text or media_url is required")
        if self.text is not None and not self.text.strip():
            raise ValueError("text must not be empty")
        if self.media_url is not None and self.media_kind not in MEDIA_KINDS:
            raise ValueError(f"Unsupported media kind: {self.media_kind}")

    @property
    def is_media(self) -> bool:
        return self.media_url is not None

    def as_content(self) -> dict[str, Any]:
        """Return the content dict understood by the bridge."""
        if self.text is not None:
            return {"text": self.text}
        content: dict[str, Any] = {self.media_kind: {"url": self.media_url}}
        if self.mimetype:
            content["mimetype"] = self.mimetype
        if self.caption:
            content["caption"] = self.caption
        return content


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    """Result of a successful send."""

    message_id: str
    recipient: str


class ProtocolHandle(Protocol):
    """A live connection to the messaging protocol."""

    async def send_message(
        self, recipient: str, message: OutgoingMessage
    ) -> DeliveryReceipt:
        """Send a message and return the protocol-assigned receipt."""

    async def logout(self) -> None:
        """Unlink this device from the account."""

    async def close(self) -> None:
        """Release the underlying connection. Must be idempotent."""


class HandleFactory(Protocol):
    """Creates handles bound to credentials and an event listener.

    The factory must route every event through ``listener`` from the moment
    the connection exists, including events emitted before it returns.
    """

    async def __call__(
        self, credentials: dict[str, Any] | None, listener: EventListener
    ) -> ProtocolHandle:
        """Construct and start a handle."""


USER_JID_SUFFIX = "@s.whatsapp.net"


def normalize_recipient(recipient: str) -> str:
    """Turn a phone number into a user JID; JIDs pass through unchanged.

    Raises:
        ValueError: If no digits remain after stripping formatting.
    """
    recipient = recipient.strip()
    if "@" in recipient:
        return recipient
    digits = _NON_DIGITS.sub("", recipient)
    if not digits:
        raise ValueError(f"Invalid recipient: {recipient!r}")
    return f"{digits}{USER_JID_SUFFIX}"
