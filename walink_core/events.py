"""Lifecycle events emitted by protocol client handles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class PairingCodeAvailable:
    """A new device-linking code is ready to be shown to the user."""

    code: str


@dataclass(frozen=True, slots=True)
class Opened:
    """The session finished its handshake and is usable."""

    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class Closed:
    """The connection ended.

    Attributes:
        status_code: Raw disconnect code reported by the protocol, if any.
        reason: Free-form reason text, used when no code is available.
    """

    status_code: int | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class CredentialsChanged:
    """The handle rotated its auth material and it must be persisted."""

    credentials: dict[str, Any] = field(default_factory=dict)


LifecycleEvent = PairingCodeAvailable | Opened | Closed | CredentialsChanged
