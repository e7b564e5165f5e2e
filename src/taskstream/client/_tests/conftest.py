"""In-memory transport harness for exercising :class:`TaskChannel`.

``FakeTransport`` mimics the slice of a ``websockets`` client connection the
channel uses (``send``/``close``/async iteration) and lets tests push server
frames or drop the connection. ``FakeConnector`` hands out transports and can
be told to refuse a number of opens.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, List, Mapping, Optional

import pytest

from taskstream.client.config import ChannelConfig
from taskstream.protocol import HEARTBEAT_RESPONSE_TYPE, HEARTBEAT_TYPE

_CLOSED = object()


class FakeTransport:
    def __init__(self, *, auto_ack: bool = True) -> None:
        self.auto_ack = auto_ack
        self.sent: List[str] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.fail_sends = False
        # half-open socket: send() never completes
        self.block_sends = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    # --- client-facing surface ---
    async def send(self, message: str) -> None:
        if self.closed or self.fail_sends:
            raise ConnectionError("fake transport is closed")
        if self.block_sends:
            await asyncio.get_running_loop().create_future()
        self.sent.append(message)
        if self.auto_ack and json.loads(message).get("type") == HEARTBEAT_TYPE:
            self.push({"type": HEARTBEAT_RESPONSE_TYPE})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    # --- server-facing helpers ---
    def push(self, frame: Mapping[str, Any] | str | bytes) -> None:
        if isinstance(frame, Mapping):
            frame = json.dumps(dict(frame))
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Server-side close without a user request."""

        if self.closed:
            return
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    def frames(self, *, include_heartbeats: bool = False) -> List[dict]:
        decoded = [json.loads(text) for text in self.sent]
        if include_heartbeats:
            return decoded
        return [frame for frame in decoded if frame.get("type") != HEARTBEAT_TYPE]


class FakeConnector:
    def __init__(self) -> None:
        self.urls: List[str] = []
        self.transports: List[FakeTransport] = []
        self.fail_times = 0
        self.always_fail = False
        self.auto_ack = True

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        await asyncio.sleep(0)
        if self.always_fail:
            raise ConnectionRefusedError("connection refused")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionRefusedError("connection refused")
        transport = FakeTransport(auto_ack=self.auto_ack)
        self.transports.append(transport)
        return transport


async def _eventually(predicate: Callable[[], bool], timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"condition not met within {timeout:.2f}s")
        await asyncio.sleep(interval)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    return _eventually


@pytest.fixture
def fast_config() -> ChannelConfig:
    """Tight timings so reconnect and heartbeat paths run in milliseconds."""

    return ChannelConfig(
        base_url="ws://tasks.test/ws",
        heartbeat_interval=0.05,
        heartbeat_timeout=0.02,
        reconnect_base_delay=0.01,
        reconnect_backoff_multiplier=2.0,
        reconnect_max_delay=0.04,
        reconnect_max_attempts=3,
    )


@pytest.fixture
def quiet_config(fast_config: ChannelConfig) -> ChannelConfig:
    """Same as ``fast_config`` but heartbeats effectively never fire."""

    return ChannelConfig(
        base_url=fast_config.base_url,
        heartbeat_interval=60.0,
        heartbeat_timeout=5.0,
        reconnect_base_delay=fast_config.reconnect_base_delay,
        reconnect_backoff_multiplier=fast_config.reconnect_backoff_multiplier,
        reconnect_max_delay=fast_config.reconnect_max_delay,
        reconnect_max_attempts=fast_config.reconnect_max_attempts,
    )
