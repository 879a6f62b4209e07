"""Session controller: the public surface of the session core.

Usage:
    controller = SessionController(store, factory, config=SessionConfig())
    await controller.start()
    await controller.init()
    controller.status()
    await controller.send("5491122334455", OutgoingMessage(text="hola"))
    await controller.shutdown()

Two locks guard the session:
- the state lock covers every state mutation and is never held across a
  network call;
- the lifecycle lock serializes handle construction, teardown and event
  handling, so at most one handle exists and events for a handle are applied
  only after it has been installed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .client import DeliveryReceipt, EventListener, HandleFactory, OutgoingMessage
from .config import SessionConfig
from .errors import CredentialLoadFailed, DeliveryFailed, NotConnected
from .lifecycle import LifecycleEventHandler, close_handle
from .pairing import PairingRenderer, render_qr_data_url
from .policy import ReasonClass
from .state import PairingPayload, SessionState, SessionStatus, StatusSnapshot

if TYPE_CHECKING:
    from .client import ProtocolHandle
    from .credentials import CredentialStore
    from .events import LifecycleEvent

_LOGGER = logging.getLogger(__name__)

_RETRYABLE = frozenset({SessionStatus.CONNECTING, SessionStatus.ERRORED})


@dataclass(frozen=True, slots=True)
class InitResult:
    """Outcome of init/reconnect. ``started`` is False when already in progress."""

    started: bool
    status: SessionStatus


class PairingResultKind(Enum):
    """Availability of the pairing payload."""

    READY = "ready"
    NOT_NEEDED = "not_needed"
    PENDING = "pending"
    NOT_INITIALIZED = "not_initialized"


@dataclass(frozen=True, slots=True)
class PairingResult:
    kind: PairingResultKind
    status: SessionStatus
    payload: PairingPayload | None = None


class SessionController:
    """Owns the session state and the single protocol client handle."""

    def __init__(
        self,
        store: CredentialStore,
        factory: HandleFactory,
        *,
        config: SessionConfig | None = None,
        renderer: PairingRenderer | None = render_qr_data_url,
    ) -> None:
        self._config = config or SessionConfig()
        self._store = store
        self._factory = factory

        self._state = SessionState(auto_reconnect_enabled=self._config.auto_reconnect)
        self._auto_reconnect_preference = self._config.auto_reconnect
        self._lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()

        self._events: asyncio.Queue[tuple[int, LifecycleEvent]] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._connect_requested = False
        self._retry_task: asyncio.Task[None] | None = None
        self._retry_delay: float | None = None

        self._handler = LifecycleEventHandler(
            self._state,
            self._lock,
            store,
            self._config.to_policy(),
            self,
            renderer=renderer,
            max_pairing_codes=self._config.max_pairing_codes,
        )

    # -------------------------------------------------------------------------
    # Public API: Session Management
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming handle events."""
        self._ensure_pump()

    async def init(self) -> InitResult:
        """Begin connecting unless a session is already active or in progress."""
        self._ensure_pump()
        async with self._lock:
            if self._state.status.is_active:
                _LOGGER.debug(
                    "Init ignored: session already %s", self._state.status.value
                )
                return InitResult(started=False, status=self._state.status)
            self._begin_connect_locked()

        _LOGGER.info("Session initialization started")
        return InitResult(started=True, status=SessionStatus.CONNECTING)

    async def disconnect(self) -> bool:
        """Log out and tear down the session.

        Returns:
            True if there was an active, pending or failed session to tear
            down, False if it was already disconnected.
        """
        async with self._lifecycle_lock:
            return await self._teardown(logout=True)

    async def reconnect(self) -> InitResult:
        """Tear down the current session and start a fresh one."""
        self._ensure_pump()
        async with self._lifecycle_lock:
            _LOGGER.info("Manual reconnect requested")
            await self._teardown(logout=True)
            async with self._lock:
                self._begin_connect_locked()
        return InitResult(started=True, status=SessionStatus.CONNECTING)

    async def set_auto_reconnect(self, enabled: bool) -> StatusSnapshot:
        """Enable or disable automatic reconnection from the next close on."""
        async with self._lock:
            self._auto_reconnect_preference = enabled
            self._state.auto_reconnect_enabled = enabled
        _LOGGER.info("Auto-reconnect %s", "enabled" if enabled else "disabled")
        return self.status()

    async def shutdown(self) -> None:
        """Release the handle without logging out and stop the event pump."""
        _LOGGER.info("Shutting down session controller")
        async with self._lifecycle_lock:
            await self._teardown(logout=False)

        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    async def wait_idle(self) -> None:
        """Wait until queued events and in-flight connects are processed."""
        while True:
            await self._events.join()
            task = self._connect_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            if self._events.empty():
                return

    # -------------------------------------------------------------------------
    # Public API: Queries
    # -------------------------------------------------------------------------

    def status(self) -> StatusSnapshot:
        return self._state.snapshot(retry_scheduled=self.retry_scheduled)

    def pairing_payload(self) -> PairingResult:
        status = self._state.status
        if status is SessionStatus.AWAITING_PAIRING:
            return PairingResult(PairingResultKind.READY, status, self._state.pairing)
        if status is SessionStatus.OPEN:
            return PairingResult(PairingResultKind.NOT_NEEDED, status)
        if status is SessionStatus.CONNECTING:
            return PairingResult(PairingResultKind.PENDING, status)
        return PairingResult(PairingResultKind.NOT_INITIALIZED, status)

    @property
    def generation(self) -> int:
        """Generation number of the most recently constructed handle."""
        return self._state.generation

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    @property
    def scheduled_retry_delay(self) -> float | None:
        """Delay of the pending retry timer, if one is scheduled."""
        return self._retry_delay if self.retry_scheduled else None

    # -------------------------------------------------------------------------
    # Public API: Messaging
    # -------------------------------------------------------------------------

    async def send(self, recipient: str, message: OutgoingMessage) -> DeliveryReceipt:
        """Send through the open session.

        Raises:
            NotConnected: If the session is not OPEN.
            DeliveryFailed: If the handle fails or times out.
        """
        async with self._lock:
            handle = self._state.handle
            if self._state.status is not SessionStatus.OPEN or handle is None:
                raise NotConnected(
                    f"Session is not connected ({self._state.status.value})"
                )
            generation = self._state.generation

        try:
            return await asyncio.wait_for(
                handle.send_message(recipient, message),
                timeout=self._config.send_timeout,
            )
        except TimeoutError as err:
            _LOGGER.warning("[gen %d] Send to %s timed out", generation, recipient)
            raise DeliveryFailed("Send timed out") from err
        except DeliveryFailed:
            raise
        except Exception as err:
            _LOGGER.warning("[gen %d] Send to %s failed: %s", generation, recipient, err)
            raise DeliveryFailed(str(err) or type(err).__name__) from err

    # -------------------------------------------------------------------------
    # Retry scheduling (used by the lifecycle handler)
    # -------------------------------------------------------------------------

    def schedule_retry(self, delay: float, *, wipe: bool = False) -> None:
        """Replace any pending retry with one firing after ``delay`` seconds."""
        self.cancel_retry()
        self._retry_delay = delay
        self._retry_task = asyncio.create_task(self._retry_after(delay, wipe=wipe))

    def cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        self._retry_delay = None
        if task is not None and not task.done():
            task.cancel()

    async def _retry_after(self, delay: float, *, wipe: bool) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("Scheduled retry cancelled")
            raise

        async with self._lifecycle_lock:
            async with self._lock:
                if self._retry_task is not asyncio.current_task():
                    return
                self._retry_task = None
                self._retry_delay = None
                if self._state.handle is not None or self._state.status not in _RETRYABLE:
                    return

            if wipe:
                _LOGGER.info("Purging credentials for a fresh pairing cycle")
                try:
                    await self._store.clear()
                except Exception as err:
                    _LOGGER.error("Failed to purge credentials: %s", err)

            async with self._lock:
                if self._state.handle is not None or self._state.status not in _RETRYABLE:
                    return
                if wipe:
                    self._state.retry_count = 0
                    self._state.pairing_codes_issued = 0
                self._state.transition(SessionStatus.CONNECTING)
                self._spawn_connect()

    # -------------------------------------------------------------------------
    # Internal: Connect Procedure
    # -------------------------------------------------------------------------

    def _begin_connect_locked(self) -> None:
        """Reset counters and start connecting. Caller holds the state lock."""
        self.cancel_retry()
        self._state.auto_reconnect_enabled = self._auto_reconnect_preference
        self._state.reset_counters()
        self._state.last_error = None
        self._state.transition(SessionStatus.CONNECTING, retry_count=0)
        self._spawn_connect()

    def _spawn_connect(self) -> None:
        self._connect_requested = True
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = asyncio.create_task(self._run_connect())

    async def _run_connect(self) -> None:
        # A request made while a connect is winding down is picked up here.
        while self._connect_requested:
            self._connect_requested = False
            try:
                await self._connect()
            except Exception as err:
                _LOGGER.exception("Connect procedure failed: %s", err)
                async with self._lock:
                    handle = self._state.release_handle()
                    self._state.transition(SessionStatus.ERRORED, error=str(err))
                if handle is not None:
                    await close_handle(handle, self._state.generation)

    async def _connect(self) -> None:
        async with self._lifecycle_lock:
            async with self._lock:
                if (
                    self._state.handle is not None
                    or self._state.status is not SessionStatus.CONNECTING
                ):
                    _LOGGER.debug(
                        "Connect skipped in %s", self._state.status.value
                    )
                    return
                generation = self._state.next_generation()
                attempt = self._state.retry_count + 1

            _LOGGER.info("[gen %d] Connecting (attempt #%d)", generation, attempt)
            timeout = self._config.connect_timeout

            try:
                credentials = await asyncio.wait_for(self._store.load(), timeout=timeout)
            except TimeoutError:
                await self._handler.apply_failure(
                    generation, ReasonClass.TRANSIENT, "Credential load timed out"
                )
                return
            except CredentialLoadFailed as err:
                _LOGGER.error("[gen %d] Credential load failed: %s", generation, err)
                await self._mark_errored(f"Credential load failed: {err}")
                return
            except Exception as err:
                _LOGGER.exception("[gen %d] Credential store error: %s", generation, err)
                await self._mark_errored(f"Credential load failed: {err}")
                return

            try:
                handle = await asyncio.wait_for(
                    self._factory(credentials, self._listener_for(generation)),
                    timeout=timeout,
                )
            except TimeoutError:
                _LOGGER.warning("[gen %d] Handle construction timed out", generation)
                await self._handler.apply_failure(
                    generation, ReasonClass.TRANSIENT, "Handle construction timed out"
                )
                return
            except Exception as err:
                _LOGGER.warning(
                    "[gen %d] Handle construction failed: %s", generation, err
                )
                await self._handler.apply_failure(
                    generation,
                    ReasonClass.TRANSIENT,
                    f"Handle construction failed: {err}",
                )
                return

            async with self._lock:
                self._state.handle = handle
            _LOGGER.debug("[gen %d] Handle installed", generation)

    def _listener_for(self, generation: int) -> EventListener:
        def _listener(event: LifecycleEvent) -> None:
            self._events.put_nowait((generation, event))

        return _listener

    async def _mark_errored(self, error: str) -> None:
        async with self._lock:
            self._state.transition(SessionStatus.ERRORED, error=error)

    # -------------------------------------------------------------------------
    # Internal: Teardown
    # -------------------------------------------------------------------------

    async def _teardown(self, *, logout: bool) -> bool:
        """Release the handle and mark the session CLOSED.

        Caller holds the lifecycle lock.
        """
        async with self._lock:
            self.cancel_retry()
            status = self._state.status
            handle = self._state.release_handle()
            generation = self._state.generation
            was_active = handle is not None or status not in (
                SessionStatus.CLOSED,
                SessionStatus.UNINITIALIZED,
            )
            self._state.auto_reconnect_enabled = False
            self._state.user_id = None
            self._state.transition(SessionStatus.CLOSED, retry_count=0)
            self._state.reset_counters()

        if handle is not None:
            if logout:
                await self._logout_quietly(handle, generation)
            await close_handle(handle, generation)

        if was_active:
            _LOGGER.info("Session disconnected (was %s)", status.value)
        return was_active

    async def _logout_quietly(self, handle: ProtocolHandle, generation: int) -> None:
        try:
            await asyncio.wait_for(handle.logout(), timeout=self._config.logout_timeout)
        except TimeoutError:
            _LOGGER.warning("[gen %d] Logout timed out", generation)
        except Exception as err:
            _LOGGER.warning("[gen %d] Logout failed: %s", generation, err)

    # -------------------------------------------------------------------------
    # Internal: Event Pump
    # -------------------------------------------------------------------------

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump_events())

    async def _pump_events(self) -> None:
        while True:
            generation, event = await self._events.get()
            try:
                async with self._lifecycle_lock:
                    await self._handler.handle(generation, event)
            except Exception as err:
                _LOGGER.exception(
                    "[gen %d] Failed to handle %s: %s",
                    generation,
                    type(event).__name__,
                    err,
                )
            finally:
                self._events.task_done()
