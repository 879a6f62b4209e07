"""Pytest configuration and fixtures for walink_core tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio

from walink_core.client import (
    DeliveryReceipt,
    EventListener,
    OutgoingMessage,
    normalize_recipient,
)
from walink_core.config import SessionConfig
from walink_core.controller import SessionController
from walink_core.credentials import MemoryCredentialStore
from walink_core.events import LifecycleEvent
from walink_core.state import SessionStatus


class FakeHandle:
    """In-memory protocol handle driven by the test."""

    def __init__(
        self, listener: EventListener, credentials: dict[str, Any] | None
    ) -> None:
        self.listener = listener
        self.credentials = credentials
        self.sent: list[tuple[str, OutgoingMessage]] = []
        self.send_error: Exception | None = None
        self.send_delay = 0.0
        self.logout_error: Exception | None = None
        self.logout_calls = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def emit(self, event: LifecycleEvent) -> None:
        self.listener(event)

    async def send_message(
        self, recipient: str, message: OutgoingMessage
    ) -> DeliveryReceipt:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((recipient, message))
        return DeliveryReceipt(
            message_id=f"msg-{len(self.sent)}",
            recipient=normalize_recipient(recipient),
        )

    async def logout(self) -> None:
        self.logout_calls += 1
        if self.logout_error is not None:
            raise self.logout_error

    async def close(self) -> None:
        self.close_calls += 1


class FakeFactory:
    """Handle factory recording every construction.

    Attributes:
        failures: Exceptions raised by the next constructions, in order.
        delay: Seconds each construction takes.
        on_create: Called with each new handle before it is returned.
        max_live_at_create: Highest number of unclosed handles seen when a
            new handle was constructed.
    """

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.calls = 0
        self.credentials_seen: list[dict[str, Any] | None] = []
        self.failures: list[BaseException] = []
        self.delay = 0.0
        self.on_create: Callable[[FakeHandle], None] | None = None
        self.max_live_at_create = 0

    @property
    def latest(self) -> FakeHandle:
        return self.handles[-1]

    @property
    def live_handles(self) -> list[FakeHandle]:
        return [handle for handle in self.handles if not handle.closed]

    async def __call__(
        self, credentials: dict[str, Any] | None, listener: EventListener
    ) -> FakeHandle:
        self.calls += 1
        self.credentials_seen.append(credentials)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

        self.max_live_at_create = max(self.max_live_at_create, len(self.live_handles))
        handle = FakeHandle(listener, credentials)
        self.handles.append(handle)
        if self.on_create is not None:
            self.on_create(handle)
        return handle


def fake_renderer(code: str) -> str:
    return f"data:image/png;base64,{code}"


async def wait_for_status(
    controller: SessionController, status: SessionStatus, timeout: float = 2.0
) -> None:
    """Poll until the controller reports ``status`` and is idle."""
    async with asyncio.timeout(timeout):
        while True:
            await controller.wait_idle()
            if controller.status().status is status:
                return
            await asyncio.sleep(0.005)


async def wait_for_calls(factory: FakeFactory, calls: int, timeout: float = 2.0) -> None:
    """Poll until the factory has been called ``calls`` times."""
    async with asyncio.timeout(timeout):
        while factory.calls < calls:
            await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> SessionConfig:
    """Session config with millisecond timers and no exhaustion recovery."""
    return SessionConfig(
        max_retries=3,
        retry_base_delay=0.01,
        retry_multiplier_cap=3,
        retry_max_delay=0.05,
        restart_delay=0.01,
        exhaustion_cooldown=None,
        connect_timeout=1.0,
        logout_timeout=0.5,
        send_timeout=0.5,
    )


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest_asyncio.fixture
async def controller(
    store: MemoryCredentialStore, factory: FakeFactory, fast_config: SessionConfig
) -> AsyncIterator[SessionController]:
    """Started controller wired to the fake factory; shut down after the test."""
    ctrl = SessionController(store, factory, config=fast_config, renderer=fake_renderer)
    await ctrl.start()
    yield ctrl
    await ctrl.shutdown()
