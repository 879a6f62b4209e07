"""Reconnection policy.

This module classifies why a connection closed and decides what to do next.
It is pure: it never touches the session state, the credential store or the
event loop. The lifecycle handler applies the returned verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .state import SessionStatus


class DisconnectCode(IntEnum):
    """Disconnect status codes reported by WhatsApp Web clients."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class ReasonClass(Enum):
    """Normalized category of a close reason."""

    LOGGED_OUT = "logged_out"
    CONFLICT = "conflict"
    CORRUPT_SESSION = "corrupt_session"
    TRANSIENT = "transient"


class VerdictKind(Enum):
    """What the lifecycle handler must do after a close."""

    WIPE_AND_RESTART = "wipe_and_restart"
    BACKOFF = "backoff"
    STOP = "stop"


class BackoffMode(Enum):
    """Delay growth between transient retries."""

    LINEAR = "linear"
    EXPONENTIAL = "exponential"


_CODE_CLASSES: dict[int, ReasonClass] = {
    DisconnectCode.LOGGED_OUT: ReasonClass.LOGGED_OUT,
    DisconnectCode.CONNECTION_REPLACED: ReasonClass.CONFLICT,
    DisconnectCode.BAD_SESSION: ReasonClass.CORRUPT_SESSION,
    DisconnectCode.MULTIDEVICE_MISMATCH: ReasonClass.CORRUPT_SESSION,
}

_TEXT_CLASSES: dict[str, ReasonClass] = {
    "logged_out": ReasonClass.LOGGED_OUT,
    "loggedout": ReasonClass.LOGGED_OUT,
    "conflict": ReasonClass.CONFLICT,
    "connection_replaced": ReasonClass.CONFLICT,
    "connectionreplaced": ReasonClass.CONFLICT,
    "bad_session": ReasonClass.CORRUPT_SESSION,
    "badsession": ReasonClass.CORRUPT_SESSION,
    "corrupt_session": ReasonClass.CORRUPT_SESSION,
}


def classify_close_reason(
    status_code: int | None, reason: str | None = None
) -> ReasonClass:
    """Map a raw disconnect cause into a reason class.

    The status code wins when both are present. Anything unrecognized
    (timeouts, lost connections, restarts, unknown codes) is transient.
    """
    if status_code is not None and status_code in _CODE_CLASSES:
        return _CODE_CLASSES[status_code]
    if reason:
        key = reason.strip().lower().replace(" ", "_").replace("-", "_")
        if key in _TEXT_CLASSES:
            return _TEXT_CLASSES[key]
    return ReasonClass.TRANSIENT


@dataclass(frozen=True)
class Verdict:
    """Decision returned by the policy.

    Attributes:
        kind: Action to take.
        retry_count: Value the session retry counter must take.
        delay: Seconds before reconnecting (WIPE_AND_RESTART and BACKOFF).
        status: Status to surface when the verdict is STOP.
        wipe_credentials: Purge stored credentials now.
        disable_auto_reconnect: Force the auto-reconnect flag off.
        cooldown: For STOP, seconds until one wipe-and-restart recovery cycle.
    """

    kind: VerdictKind
    retry_count: int = 0
    delay: float | None = None
    status: SessionStatus = SessionStatus.CONNECTING
    wipe_credentials: bool = False
    disable_auto_reconnect: bool = False
    cooldown: float | None = None


@dataclass(frozen=True)
class ReconnectionPolicy:
    """Retry limit and delay schedule.

    Attributes:
        max_retries: Transient closes tolerated before giving up.
        base_delay: Delay unit in seconds.
        multiplier_cap: Largest multiplier applied to base_delay (linear mode).
        max_delay: Absolute ceiling for any backoff delay.
        mode: Linear or exponential growth.
        restart_delay: Short fixed delay before a wipe-and-restart.
        exhaustion_cooldown: Delay before the single recovery cycle after the
            retry limit is reached. None disables recovery.
    """

    max_retries: int = 3
    base_delay: float = 5.0
    multiplier_cap: int = 3
    max_delay: float = 60.0
    mode: BackoffMode = BackoffMode.LINEAR
    restart_delay: float = 2.0
    exhaustion_cooldown: float | None = 300.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        attempt = max(attempt, 1)
        if self.mode is BackoffMode.EXPONENTIAL:
            # 2**n overflows float for huge attempts; the cap is hit long before.
            raw = self.base_delay * (2 ** min(attempt - 1, 32))
        else:
            raw = self.base_delay * min(attempt, self.multiplier_cap)
        return min(raw, self.max_delay)

    def decide(
        self,
        reason_class: ReasonClass,
        retry_count: int,
        auto_reconnect_enabled: bool,
        *,
        recovery_attempted: bool = False,
    ) -> Verdict:
        """Decide how to react to a close of class ``reason_class``."""
        if reason_class is ReasonClass.LOGGED_OUT:
            return self._wipe_and_restart()

        if reason_class is ReasonClass.CONFLICT:
            return Verdict(
                kind=VerdictKind.STOP,
                retry_count=retry_count,
                status=SessionStatus.CLOSED,
                disable_auto_reconnect=True,
            )

        if reason_class is ReasonClass.CORRUPT_SESSION:
            if auto_reconnect_enabled:
                return self._wipe_and_restart()
            return Verdict(
                kind=VerdictKind.STOP,
                status=SessionStatus.CLOSED,
                wipe_credentials=True,
            )

        attempt = retry_count + 1
        if not auto_reconnect_enabled:
            if attempt >= self.max_retries:
                return Verdict(
                    kind=VerdictKind.STOP,
                    retry_count=attempt,
                    status=SessionStatus.ERRORED,
                )
            return Verdict(
                kind=VerdictKind.STOP,
                retry_count=retry_count,
                status=SessionStatus.CLOSED,
            )

        if attempt < self.max_retries:
            return Verdict(
                kind=VerdictKind.BACKOFF,
                retry_count=attempt,
                delay=self.backoff_delay(attempt),
            )

        cooldown = None if recovery_attempted else self.exhaustion_cooldown
        return Verdict(
            kind=VerdictKind.STOP,
            retry_count=attempt,
            status=SessionStatus.ERRORED,
            cooldown=cooldown,
        )

    def _wipe_and_restart(self) -> Verdict:
        return Verdict(
            kind=VerdictKind.WIPE_AND_RESTART,
            retry_count=0,
            delay=self.restart_delay,
            wipe_credentials=True,
        )
