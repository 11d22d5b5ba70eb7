"""
Shared pytest fixtures for relay tests.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import pytest

from shared.config import get_config
from shared.errors import TransportError, UpstreamAuthenticationError
from service_relay.app.delivery.targets import CallbackDeliveryTarget
from service_relay.app.models import Credential, InboundEvent


_CLOSE = object()


class _QueueStream:
    """Async iterator fed by FakeUpstream.emit / close_stream / break_stream."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def __aiter__(self):
        return self

    async def __anext__(self) -> InboundEvent:
        item = await self.queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeUpstream:
    """Scripted upstream transport.

    Each ``connect`` consumes the next entry of ``steps``: ``"fail"`` raises a
    transport error, ``"auth"`` an authentication rejection, ``"open"`` (or an
    exhausted script) opens a stream that stays up until closed.
    """

    def __init__(self, steps: Optional[List[str]] = None):
        self.steps = list(steps or [])
        self.connect_calls = 0
        self.credentials: List[Credential] = []
        self.released = 0
        self._queues: List[asyncio.Queue] = []

    @property
    def open_streams(self) -> int:
        return len(self._queues)

    @asynccontextmanager
    async def connect(self, credential: Credential):
        self.connect_calls += 1
        self.credentials.append(credential)
        step = self.steps.pop(0) if self.steps else "open"

        if step == "fail":
            raise TransportError("Connection refused")
        if step == "auth":
            raise UpstreamAuthenticationError(details={"status_code": 401})

        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            yield _QueueStream(queue)
        finally:
            self._queues.remove(queue)
            self.released += 1

    async def emit(self, event: InboundEvent):
        for queue in list(self._queues):
            await queue.put(event)

    async def close_stream(self):
        """Upstream ends the stream cleanly."""
        for queue in list(self._queues):
            await queue.put(_CLOSE)

    async def break_stream(self, error: Optional[BaseException] = None):
        """Upstream connection drops mid-stream."""
        for queue in list(self._queues):
            await queue.put(error or TransportError("Connection reset"))


class RecordingTarget(CallbackDeliveryTarget):
    """Consumer that records messages and answers with a canned response."""

    def __init__(
        self,
        target_id: str,
        origin: str = "https://animemusicquiz.com/",
        response: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0
    ):
        self.received: List[Dict[str, Any]] = []
        self.response = response if response is not None else {"success": True}
        self.error = error
        self.delay = delay
        super().__init__(target_id, origin, self._handle)

    async def _handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self.received.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01):
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def fake_upstream():
    """Scripted upstream transport that opens on every connect."""
    return FakeUpstream()


@pytest.fixture
def recording_target():
    """Factory for recording delivery targets."""
    return RecordingTarget


@pytest.fixture
def waiter():
    """Async polling helper."""
    return wait_until


@pytest.fixture
def credential():
    return Credential(token="session-token-123")


@pytest.fixture
def relay_config(tmp_path):
    """Service config with instant reconnects and an in-memory store."""
    return get_config(
        "relay",
        8040,
        reconnect_delay_seconds=0.0,
        max_reconnect_attempts=10,
        delivery_timeout_seconds=0.5,
        config_store_path=None
    )


def pause_event(reward_id: Optional[str] = "RWD-1", **extra) -> InboundEvent:
    payload: Dict[str, Any] = {
        "rewardTitle": "Pause the game",
        "viewerName": "viewer42",
        "cost": 500,
        "timestamp": "2026-10-19T12:00:00Z",
        **extra
    }
    if reward_id is not None:
        payload["rewardId"] = reward_id
    return InboundEvent(kind="pause", payload=payload)


@pytest.fixture
def make_pause_event():
    """Factory for upstream pause events."""
    return pause_event
