"""Session state: the single source of truth for the linked device.

Every mutation goes through ``SessionState.transition`` (or the small helpers
next to it) so that status, pairing payload and retry counter change together.
None of these methods await, which makes each call atomic on the event loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import ProtocolHandle


class SessionStatus(Enum):
    """Externally visible session status."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def is_active(self) -> bool:
        """True while a handle exists or is being established."""
        return self in _ACTIVE_STATUSES


_ACTIVE_STATUSES = frozenset(
    {SessionStatus.CONNECTING, SessionStatus.AWAITING_PAIRING, SessionStatus.OPEN}
)


@dataclass(frozen=True, slots=True)
class PairingPayload:
    """Pairing code as received plus its rendered QR image (data URL)."""

    code: str
    image: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "qr": self.image}


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Read-only copy of the session state handed to callers."""

    status: SessionStatus
    has_pairing_payload: bool
    retry_count: int
    auto_reconnect_enabled: bool
    retry_scheduled: bool = False
    last_error: str | None = None
    user_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "has_pairing_payload": self.has_pairing_payload,
            "retry_count": self.retry_count,
            "auto_reconnect_enabled": self.auto_reconnect_enabled,
            "retry_scheduled": self.retry_scheduled,
            "last_error": self.last_error,
            "user_id": self.user_id,
        }


class SessionState:
    """Mutable session state owned by the session controller."""

    def __init__(self, *, auto_reconnect_enabled: bool = True) -> None:
        self.status = SessionStatus.UNINITIALIZED
        self.pairing: PairingPayload | None = None
        self.retry_count = 0
        self.auto_reconnect_enabled = auto_reconnect_enabled
        self.handle: ProtocolHandle | None = None
        self.generation = 0
        self.last_error: str | None = None
        self.user_id: str | None = None
        self.recovery_attempted = False
        self.pairing_codes_issued = 0

    def transition(
        self,
        status: SessionStatus,
        *,
        pairing: PairingPayload | None = None,
        retry_count: int | None = None,
        error: str | None = None,
    ) -> None:
        """Apply a status change together with its payload and counters.

        Raises:
            ValueError: If the requested combination breaks a state invariant.
        """
        if status is SessionStatus.AWAITING_PAIRING and pairing is None:
            raise ValueError("AWAITING_PAIRING requires a pairing payload")
        if status is not SessionStatus.AWAITING_PAIRING and pairing is not None:
            raise ValueError(f"Pairing payload not allowed in {status.value}")
        if status is SessionStatus.OPEN and self.handle is None:
            raise ValueError("OPEN requires a live handle")
        if retry_count is not None and retry_count < 0:
            raise ValueError("retry_count must be non-negative")

        self.status = status
        self.pairing = pairing
        if status is SessionStatus.OPEN:
            self.retry_count = 0
            self.last_error = None
        elif retry_count is not None:
            self.retry_count = retry_count
        if error is not None:
            self.last_error = error

    def next_generation(self) -> int:
        """Allocate the generation number for a new handle."""
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        """True when events from ``generation`` may still mutate state."""
        return generation == self.generation and self.handle is not None

    def release_handle(self) -> ProtocolHandle | None:
        """Detach and return the current handle, if any."""
        handle, self.handle = self.handle, None
        return handle

    def reset_counters(self) -> None:
        self.retry_count = 0
        self.recovery_attempted = False
        self.pairing_codes_issued = 0

    def snapshot(self, *, retry_scheduled: bool = False) -> StatusSnapshot:
        return StatusSnapshot(
            status=self.status,
            has_pairing_payload=self.pairing is not None,
            retry_count=self.retry_count,
            auto_reconnect_enabled=self.auto_reconnect_enabled,
            retry_scheduled=retry_scheduled,
            last_error=self.last_error,
            user_id=self.user_id,
        )
