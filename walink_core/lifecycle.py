"""Lifecycle event handling for the session handle.

The handler turns protocol client events into session state transitions and
applies the reconnection policy when a connection closes. Every event is tagged
with the generation of the handle that emitted it; events from a handle that
is no longer current are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from .events import (
    Closed,
    CredentialsChanged,
    LifecycleEvent,
    Opened,
    PairingCodeAvailable,
)
from .pairing import PairingRenderer, render_qr_data_url
from .policy import (
    ReasonClass,
    ReconnectionPolicy,
    Verdict,
    VerdictKind,
    classify_close_reason,
)
from .state import PairingPayload, SessionState, SessionStatus

if TYPE_CHECKING:
    from .client import ProtocolHandle
    from .credentials import CredentialStore

_LOGGER = logging.getLogger(__name__)

HANDLE_CLOSE_TIMEOUT = 5.0

_PAIRABLE = frozenset({SessionStatus.CONNECTING, SessionStatus.AWAITING_PAIRING})


class RetryScheduler(Protocol):
    """Owner of the single pending retry timer."""

    def schedule_retry(self, delay: float, *, wipe: bool = False) -> None:
        """Replace any pending retry with one firing after ``delay`` seconds."""

    def cancel_retry(self) -> None:
        """Cancel the pending retry, if any."""


async def close_handle(handle: ProtocolHandle, generation: int) -> None:
    """Close a handle, logging instead of raising on failure."""
    try:
        await asyncio.wait_for(handle.close(), timeout=HANDLE_CLOSE_TIMEOUT)
    except TimeoutError:
        _LOGGER.warning("[gen %d] Handle close timed out", generation)
    except Exception as err:
        _LOGGER.warning("[gen %d] Handle close failed: %s", generation, err)


class LifecycleEventHandler:
    """Applies handle events to the session state."""

    def __init__(
        self,
        state: SessionState,
        lock: asyncio.Lock,
        store: CredentialStore,
        policy: ReconnectionPolicy,
        scheduler: RetryScheduler,
        *,
        renderer: PairingRenderer | None = render_qr_data_url,
        max_pairing_codes: int | None = None,
    ) -> None:
        self._state = state
        self._lock = lock
        self._store = store
        self._policy = policy
        self._scheduler = scheduler
        self._renderer = renderer
        self._max_pairing_codes = max_pairing_codes

    async def handle(self, generation: int, event: LifecycleEvent) -> None:
        """Dispatch one event emitted by the handle of ``generation``."""
        if not self._state.is_current(generation):
            _LOGGER.debug(
                "[gen %d] Dropping stale %s (current gen %d)",
                generation,
                type(event).__name__,
                self._state.generation,
            )
            return

        if isinstance(event, PairingCodeAvailable):
            await self._on_pairing_code(generation, event)
        elif isinstance(event, Opened):
            await self._on_opened(generation, event)
        elif isinstance(event, Closed):
            await self._on_closed(generation, event)
        elif isinstance(event, CredentialsChanged):
            await self._on_credentials_changed(generation, event)
        else:
            _LOGGER.debug("[gen %d] Unknown event: %r", generation, event)

    async def apply_failure(
        self, generation: int, reason_class: ReasonClass, error: str
    ) -> None:
        """Feed a connect-procedure failure into the policy like a close."""
        async with self._lock:
            handle = self._state.release_handle()
            self._state.transition(SessionStatus.ERRORED, error=error)
            verdict = self._apply_close(reason_class, error, failed=True)
        await self._finish_close(generation, verdict, handle)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _on_pairing_code(
        self, generation: int, event: PairingCodeAvailable
    ) -> None:
        if self._state.status not in _PAIRABLE:
            _LOGGER.debug(
                "[gen %d] Pairing code ignored in %s",
                generation,
                self._state.status.value,
            )
            return

        image = await self._render(generation, event.code)
        abandoned: ProtocolHandle | None = None

        async with self._lock:
            if not self._state.is_current(generation) or self._state.status not in _PAIRABLE:
                return

            self._state.pairing_codes_issued += 1
            issued = self._state.pairing_codes_issued
            if self._max_pairing_codes is not None and issued > self._max_pairing_codes:
                abandoned = self._state.release_handle()
                self._scheduler.cancel_retry()
                self._state.transition(
                    SessionStatus.ERRORED,
                    retry_count=0,
                    error=f"No pairing after {self._max_pairing_codes} codes",
                )
            else:
                retry_count = (
                    0 if self._state.status is SessionStatus.CONNECTING else None
                )
                self._state.transition(
                    SessionStatus.AWAITING_PAIRING,
                    pairing=PairingPayload(code=event.code, image=image),
                    retry_count=retry_count,
                )

        if abandoned is not None:
            _LOGGER.warning(
                "[gen %d] Pairing code limit reached (%d issued), giving up",
                generation,
                issued,
            )
            await close_handle(abandoned, generation)
        else:
            _LOGGER.info("[gen %d] Pairing code #%d available", generation, issued)

    async def _on_opened(self, generation: int, event: Opened) -> None:
        async with self._lock:
            if not self._state.is_current(generation):
                return
            if self._state.status not in _PAIRABLE:
                _LOGGER.debug(
                    "[gen %d] Open ignored in %s",
                    generation,
                    self._state.status.value,
                )
                return
            self._scheduler.cancel_retry()
            self._state.transition(SessionStatus.OPEN)
            self._state.reset_counters()
            self._state.user_id = event.user_id

        _LOGGER.info("[gen %d] Session open (user %s)", generation, event.user_id)

    async def _on_closed(self, generation: int, event: Closed) -> None:
        reason_class = classify_close_reason(event.status_code, event.reason)
        error = _describe_close(reason_class, event)

        async with self._lock:
            if not self._state.is_current(generation):
                return
            previous = self._state.status
            handle = self._state.release_handle()
            verdict = self._apply_close(reason_class, error, failed=False)

        _LOGGER.warning(
            "[gen %d] Connection closed in %s: %s -> %s",
            generation,
            previous.value,
            error,
            verdict.kind.value,
        )
        await self._finish_close(generation, verdict, handle)

    async def _on_credentials_changed(
        self, generation: int, event: CredentialsChanged
    ) -> None:
        try:
            await self._store.save(event.credentials)
        except Exception as err:
            _LOGGER.error("[gen %d] Failed to persist credentials: %s", generation, err)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _apply_close(
        self, reason_class: ReasonClass, error: str, *, failed: bool
    ) -> Verdict:
        """Transition state per the policy verdict. Caller holds the lock."""
        state = self._state
        verdict = self._policy.decide(
            reason_class,
            state.retry_count,
            state.auto_reconnect_enabled,
            recovery_attempted=state.recovery_attempted,
        )
        state.user_id = None

        if verdict.kind is VerdictKind.STOP:
            status = SessionStatus.ERRORED if failed else verdict.status
            state.transition(status, retry_count=verdict.retry_count, error=error)
            if verdict.disable_auto_reconnect:
                state.auto_reconnect_enabled = False
            if verdict.cooldown is not None and state.auto_reconnect_enabled:
                state.recovery_attempted = True
                self._scheduler.schedule_retry(verdict.cooldown, wipe=True)
            else:
                self._scheduler.cancel_retry()
            return verdict

        state.transition(
            SessionStatus.CONNECTING, retry_count=verdict.retry_count, error=error
        )
        if verdict.kind is VerdictKind.WIPE_AND_RESTART:
            state.pairing_codes_issued = 0
        self._scheduler.schedule_retry(verdict.delay or 0.0)
        return verdict

    async def _finish_close(
        self, generation: int, verdict: Verdict, handle: ProtocolHandle | None
    ) -> None:
        if handle is not None:
            await close_handle(handle, generation)
        if verdict.wipe_credentials:
            try:
                await self._store.clear()
            except Exception as err:
                _LOGGER.error("[gen %d] Failed to purge credentials: %s", generation, err)
        if verdict.kind is VerdictKind.BACKOFF:
            _LOGGER.info(
                "[gen %d] Reconnecting in %.1fs (attempt %d)",
                generation,
                verdict.delay,
                verdict.retry_count,
            )
        elif verdict.kind is VerdictKind.WIPE_AND_RESTART:
            _LOGGER.info(
                "[gen %d] Credentials purged, re-pairing in %.1fs",
                generation,
                verdict.delay,
            )
        elif verdict.cooldown is not None:
            _LOGGER.warning(
                "[gen %d] Retries exhausted, recovery cycle in %.0fs",
                generation,
                verdict.cooldown,
            )

    async def _render(self, generation: int, code: str) -> str | None:
        if self._renderer is None:
            return None
        try:
            return await asyncio.to_thread(self._renderer, code)
        except Exception as err:
            _LOGGER.warning("[gen %d] Pairing code render failed: %s", generation, err)
            return None


def _describe_close(reason_class: ReasonClass, event: Closed) -> str:
    parts = [f"closed ({reason_class.value}"]
    if event.status_code is not None:
        parts.append(f", code {event.status_code}")
    parts.append(")")
    if event.reason:
        parts.append(f": {event.reason}")
    return "".join(parts)
