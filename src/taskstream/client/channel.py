from __future__ import annotations

import asyncio
import enum
import functools
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from websockets.exceptions import ConnectionClosed, InvalidHandshake

from taskstream.client.config import ChannelConfig
from taskstream.client.dispatcher import MessageDispatcher
from taskstream.client.errors import (
    CallbackError,
    ChannelError,
    ConnectionLost,
    HeartbeatTimeout,
    ReconnectExhausted,
    TransportOpenFailure,
)
from taskstream.client.heartbeat import HeartbeatMonitor
from taskstream.client.outbound_queue import OutboundQueue
from taskstream.client.reconnect import ReconnectPolicy
from taskstream.client.subscriptions import SubscriptionRegistry, TaskCallback
from taskstream.client.transport import Connector, Transport, websocket_connector
from taskstream.protocol import build_subscribe, build_unsubscribe, encode_frame

logger = logging.getLogger(__name__)


def _maybe_enable_debug_logger(force: bool = False) -> bool:
    flag = (os.getenv("TASKSTREAM_CHANNEL_DEBUG") or "").lower()
    if not force and flag not in ("1", "true", "yes", "on", "dbg", "debug"):
        return False
    has_local = any(getattr(h, "_taskstream_local", False) for h in logger.handlers)
    if not has_local:
        handler = logging.StreamHandler()
        fmt = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
        handler.setLevel(logging.DEBUG)
        setattr(handler, "_taskstream_local", True)
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return True


_CHANNEL_DEBUG = _maybe_enable_debug_logger()

_USER_CLOSE = (1000, "Client disconnect")
_ABNORMAL_CLOSE_CODE = 1011


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class ChannelStatus:
    state: ConnectionState
    connected: bool
    reconnecting: bool
    attempt_count: int
    last_error: Optional[ChannelError]


@dataclass(frozen=True)
class _OutboxItem:
    text: str
    # consumer frames go back to the offline queue if the socket dies first
    requeue: bool


@dataclass
class ChannelSession:
    """Resources that live exactly as long as one open transport."""

    generation: int
    transport: Transport
    outbox: asyncio.Queue[_OutboxItem]
    abort: asyncio.Future[ChannelError]
    inflight: Optional[_OutboxItem] = None


@dataclass
class ChannelLoop:
    generation: int = 0
    task: Optional[asyncio.Task[None]] = None
    session: Optional[ChannelSession] = None
    reconnect_handle: Optional[asyncio.TimerHandle] = None
    listeners: List[Callable[[ChannelStatus], None]] = field(default_factory=list)


class TaskChannel:
    """One resilient WebSocket connection multiplexing task update streams.

    Construction has no side effects; call :meth:`connect` from a running
    asyncio loop. Inbound ``task_*`` frames are routed to callbacks registered
    with :meth:`subscribe`; frames passed to :meth:`send` while offline are
    queued and flushed on the next open. Lost connections are retried with
    exponential backoff until ``reconnect_max_attempts`` is exceeded.

    Transport trouble never raises through this API. It shows up in
    :attr:`connected`, :attr:`reconnecting` and :attr:`last_error`, and in the
    :class:`ChannelStatus` snapshots handed to :meth:`add_listener` callbacks.
    """

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        *,
        connector: Optional[Connector] = None,
        on_callback_error: Optional[Callable[[CallbackError], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ChannelConfig()
        self._connector = connector or websocket_connector(open_timeout=self.config.open_timeout)
        self._debug = _CHANNEL_DEBUG or (self.config.debug and _maybe_enable_debug_logger(force=True))
        self._state = ConnectionState.IDLE
        self._last_error: Optional[ChannelError] = None
        self._loop_state = ChannelLoop()
        self._registry = SubscriptionRegistry()
        self._queue = OutboundQueue()
        self._policy = ReconnectPolicy.from_config(self.config)
        self._heartbeat = HeartbeatMonitor(
            self.config.heartbeat_interval,
            self.config.heartbeat_timeout,
            send_probe=self._send_probe,
            on_timeout=self._on_heartbeat_timeout,
            clock=clock,
        )
        self._dispatcher = MessageDispatcher(
            self._registry,
            self._heartbeat.acknowledge,
            on_callback_error=on_callback_error,
        )

    # --- Observable state ---------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnecting(self) -> bool:
        if self._state is ConnectionState.RECONNECTING:
            return True
        return self._state is ConnectionState.CONNECTING and self._policy.attempt_count > 0

    @property
    def attempt_count(self) -> int:
        return self._policy.attempt_count

    @property
    def last_error(self) -> Optional[ChannelError]:
        return self._last_error

    @property
    def pending_frames(self) -> int:
        return len(self._queue)

    @property
    def subscriptions(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def dispatcher(self) -> MessageDispatcher:
        return self._dispatcher

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    def status(self) -> ChannelStatus:
        return ChannelStatus(
            state=self._state,
            connected=self.connected,
            reconnecting=self.reconnecting,
            attempt_count=self._policy.attempt_count,
            last_error=self._last_error,
        )

    def add_listener(self, listener: Callable[[ChannelStatus], None]) -> Callable[[], None]:
        """Call *listener* with a fresh status after every state change."""

        listeners = self._loop_state.listeners
        listeners.append(listener)

        def _remove() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return _remove

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the channel is open; False on timeout or when it closes."""

        if self.connected:
            return True
        loop = asyncio.get_running_loop()
        result: asyncio.Future[bool] = loop.create_future()

        def _listener(status: ChannelStatus) -> None:
            if result.done():
                return
            if status.connected:
                result.set_result(True)
            elif status.state is ConnectionState.CLOSED:
                result.set_result(False)

        remove = self.add_listener(_listener)
        try:
            return await asyncio.wait_for(result, timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            remove()

    # --- Lifecycle ----------------------------------------------------------------
    def connect(self) -> None:
        """Open the channel; no-op while connecting or already open."""

        state = self._state
        if state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug("connect() ignored; channel is %s", state.value)
            return
        asyncio.get_running_loop()  # RuntimeError outside a running loop
        if state is ConnectionState.RECONNECTING:
            self._cancel_reconnect_timer()
        else:
            self._policy.reset()
        self._start_attempt()

    def disconnect(self) -> None:
        """Close the channel for good; no reconnect is scheduled afterwards."""

        ls = self._loop_state
        ls.generation += 1
        self._cancel_reconnect_timer()
        self._heartbeat.stop()
        self._registry.clear()
        session = ls.session
        if session is not None:
            # later send() calls queue behind whatever this session never wrote
            self._salvage(session)
            ls.session = None
        task = ls.task
        ls.task = None
        if task is not None and not task.done():
            task.cancel()
        if self._state is not ConnectionState.CLOSED:
            logger.info("Task channel disconnected")
        self._set_state(ConnectionState.CLOSED)

    async def shutdown(self) -> None:
        """Disconnect and wait for the connection task to finish closing."""

        task = self._loop_state.task
        self.disconnect()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # --- Consumer API -------------------------------------------------------------
    def send(self, frame: Mapping[str, Any]) -> bool:
        """Transmit *frame* now if open (True) or queue it for the next open (False)."""

        text = encode_frame(frame)
        if self._post(text, requeue=True):
            return True
        self._queue.enqueue(text)
        if self._debug:
            logger.debug("queued frame while %s (%d pending)", self._state.value, len(self._queue))
        return False

    def subscribe(self, task_id: str, callback: TaskCallback) -> Callable[[], None]:
        """Deliver frames for *task_id* to *callback*; returns an unsubscribe handle.

        The ``subscribe`` frame is sent only while open; it is not queued
        offline. Every open re-sends ``subscribe`` for all registered task
        ids before flushing queued frames, so an offline subscription reaches
        the server exactly once.
        """

        if not isinstance(task_id, str) or not task_id:
            raise ValueError("task_id is required")
        if not callable(callback):
            raise TypeError("callback must be callable")
        if self._registry.add(task_id, callback):
            logger.debug("subscribed task=%s", task_id)
            # offline subscriptions are sent by _resubscribe on the next open
            self._post(encode_frame(build_subscribe(task_id)), requeue=False)
        return functools.partial(self.unsubscribe, task_id, callback)

    def unsubscribe(self, task_id: str, callback: TaskCallback) -> None:
        """Remove *callback*; the last one for *task_id* sends ``unsubscribe``.

        Offline, nothing is queued: the next connection simply never
        resubscribes the task.
        """

        if self._registry.remove(task_id, callback):
            logger.debug("unsubscribed task=%s", task_id)
            self._post(encode_frame(build_unsubscribe(task_id)), requeue=False)

    # --- Internals ----------------------------------------------------------------
    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify()

    def _notify(self) -> None:
        status = self.status()
        for listener in tuple(self._loop_state.listeners):
            try:
                listener(status)
            except Exception:
                logger.debug("channel listener failed", exc_info=True)

    def _post(self, text: str, *, requeue: bool) -> bool:
        session = self._loop_state.session
        if self._state is not ConnectionState.OPEN or session is None:
            return False
        # a session being torn down still takes frames; _salvage keeps their order
        session.outbox.put_nowait(_OutboxItem(text, requeue))
        return True

    def _send_probe(self, frame: Mapping[str, Any]) -> bool:
        return self._post(encode_frame(frame), requeue=False)

    def _on_heartbeat_timeout(self) -> None:
        session = self._loop_state.session
        if session is None or session.abort.done():
            return
        session.abort.set_result(
            HeartbeatTimeout(f"no heartbeat_response within {self.config.heartbeat_timeout:.1f}s")
        )

    def _cancel_reconnect_timer(self) -> None:
        handle = self._loop_state.reconnect_handle
        if handle is not None:
            handle.cancel()
            self._loop_state.reconnect_handle = None

    def _start_attempt(self) -> None:
        ls = self._loop_state
        ls.generation += 1
        generation = ls.generation
        self._set_state(ConnectionState.CONNECTING)
        loop = asyncio.get_running_loop()
        ls.task = loop.create_task(self._run_connection(generation), name="taskstream-channel")

    def _reconnect_due(self) -> None:
        self._loop_state.reconnect_handle = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        logger.info(
            "Reconnecting to task channel (attempt %d/%d)...",
            self._policy.attempt_count,
            self._policy.max_attempts,
        )
        self._start_attempt()

    async def _run_connection(self, generation: int) -> None:
        logger.info("Connecting to task channel at %s", self.config.redacted_url())
        try:
            transport = await self._connector(self.config.connection_url())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._loop_state.generation:
                return
            self._log_open_failure(exc)
            failure = TransportOpenFailure(str(exc) or exc.__class__.__name__)
            failure.__cause__ = exc
            self._handle_loss(failure)
            return

        if generation != self._loop_state.generation:
            await self._close_transport(transport, *_USER_CLOSE)
            return

        try:
            loss = await self._serve(generation, transport)
        except asyncio.CancelledError:
            await self._close_transport(transport, *_USER_CLOSE)
            raise

        if generation == self._loop_state.generation:
            self._handle_loss(loss)
        reason = "heartbeat timeout" if isinstance(loss, HeartbeatTimeout) else "connection lost"
        await self._close_transport(transport, _ABNORMAL_CLOSE_CODE, reason)

    async def _serve(self, generation: int, transport: Transport) -> ChannelError:
        """Run one open session; return why it ended."""

        ls = self._loop_state
        loop = asyncio.get_running_loop()
        session = ChannelSession(
            generation=generation,
            transport=transport,
            outbox=asyncio.Queue(),
            abort=loop.create_future(),
        )
        resubscribe = self._registry.task_ids()
        ls.session = session
        self._policy.reset()
        self._last_error = None
        self._set_state(ConnectionState.OPEN)
        logger.info("Connected to task channel")
        self._heartbeat.start()

        sender: Optional[asyncio.Task[None]] = None
        reader: Optional[asyncio.Task[None]] = None
        try:
            try:
                await self._resubscribe(transport, resubscribe)
            except Exception as exc:
                return self._describe_loss(exc)
            flushed = await self._queue.flush(transport.send)
            if flushed or self._queue:
                logger.info("Flushed %d queued frame(s); %d still pending", flushed, len(self._queue))
            if self._queue:
                return ConnectionLost("transport failed while flushing queued frames")

            sender = loop.create_task(self._sender(session))
            reader = loop.create_task(self._reader(transport))
            done, _ = await asyncio.wait(
                {sender, reader, session.abort},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if session.abort in done:
                return session.abort.result()
            finished = reader if reader in done else sender
            return self._describe_loss(finished.exception())
        finally:
            pending = [task for task in (sender, reader) if task is not None and not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._salvage(session)
            if not session.abort.done():
                session.abort.cancel()
            if ls.session is session:
                ls.session = None
                self._heartbeat.stop()

    async def _resubscribe(self, transport: Transport, task_ids: tuple[str, ...]) -> None:
        # the server keeps no subscriptions across connections
        for task_id in task_ids:
            if task_id in self._registry:
                await transport.send(encode_frame(build_subscribe(task_id)))
        if task_ids:
            logger.info("Resubscribed %d task(s)", len(task_ids))

    async def _sender(self, session: ChannelSession) -> None:
        while True:
            item = await session.outbox.get()
            session.inflight = item
            if self._debug:
                logger.debug("TaskChannel sender -> %s", item.text)
            await session.transport.send(item.text)
            session.inflight = None

    async def _reader(self, transport: Transport) -> None:
        async for raw in transport:
            if self._debug:
                logger.debug("TaskChannel reader <- %s", raw)
            self._dispatcher.dispatch(raw)

    def _salvage(self, session: ChannelSession) -> None:
        items: List[_OutboxItem] = []
        if session.inflight is not None:
            items.append(session.inflight)
            session.inflight = None
        while not session.outbox.empty():
            items.append(session.outbox.get_nowait())
        kept = 0
        for item in items:
            if item.requeue:
                self._queue.enqueue(item.text)
                kept += 1
        if kept:
            logger.debug("re-queued %d unsent frame(s)", kept)

    def _handle_loss(self, reason: ChannelError) -> None:
        ls = self._loop_state
        ls.task = None
        self._heartbeat.stop()
        self._cancel_reconnect_timer()
        self._last_error = reason
        # silent transition: the attempt count must grow only while reconnecting
        self._state = ConnectionState.RECONNECTING
        delay = self._policy.record_failure()
        if delay is None:
            self._last_error = ReconnectExhausted(self._policy.max_attempts, reason)
            logger.warning(
                "Task channel gave up after %d reconnect attempt(s): %s",
                self._policy.max_attempts,
                reason,
            )
            self._set_state(ConnectionState.CLOSED)
            return
        if isinstance(reason, HeartbeatTimeout):
            logger.warning("Task channel heartbeat failed (%s); reconnecting in %.1fs", reason, delay)
        else:
            logger.info("Task channel lost (%s); reconnecting in %.1fs", reason, delay)
        loop = asyncio.get_running_loop()
        ls.reconnect_handle = loop.call_later(delay, self._reconnect_due)
        self._notify()

    def _describe_loss(self, exc: Optional[BaseException]) -> ChannelError:
        if exc is None:
            return ConnectionLost("server closed the connection")
        if isinstance(exc, ChannelError):
            return exc
        if isinstance(exc, ConnectionClosed):
            return ConnectionLost(str(exc))
        logger.debug("task channel transport failure", exc_info=exc)
        return ConnectionLost(str(exc) or exc.__class__.__name__)

    def _log_open_failure(self, exc: Exception) -> None:
        msg = str(exc) or exc.__class__.__name__
        if isinstance(exc, (EOFError, ConnectionRefusedError)):
            logger.info("Task channel unavailable (%s)", msg)
        elif isinstance(exc, InvalidHandshake):
            logger.info("Task channel handshake failed (%s)", msg)
        elif isinstance(exc, (OSError, asyncio.TimeoutError)):
            logger.info("Task channel socket error (%s)", msg)
        else:
            logger.exception("Task channel error")

    async def _close_transport(self, transport: Transport, code: int, reason: str) -> None:
        try:
            await transport.close(code=code, reason=reason)
        except Exception:
            logger.debug("TaskChannel: transport close failed", exc_info=True)


__all__ = ["ChannelLoop", "ChannelSession", "ChannelStatus", "ConnectionState", "TaskChannel"]
