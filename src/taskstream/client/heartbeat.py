from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Mapping, Optional

from taskstream.protocol import build_heartbeat

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Periodic liveness probe for an open transport.

    Every ``interval`` seconds a heartbeat frame is handed to ``send_probe``
    and a ``timeout`` timer is armed. :meth:`acknowledge` disarms it; if it
    fires first ``on_timeout`` is called once and the monitor stops.

    Catches half-open sockets that still accept writes but no longer deliver
    reads. Timers are ``loop.call_later`` handles on the running loop.
    """

    def __init__(
        self,
        interval: float,
        timeout: float,
        *,
        send_probe: Callable[[Mapping[str, Any]], bool],
        on_timeout: Callable[[], None],
        clock: Callable[[], float] = time.time,
    ) -> None:
        if timeout >= interval:
            raise ValueError("heartbeat timeout must be shorter than the interval")
        self.interval = float(interval)
        self.timeout = float(timeout)
        self._send_probe = send_probe
        self._on_timeout = on_timeout
        self._clock = clock
        self._interval_handle: Optional[asyncio.TimerHandle] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self.last_probe_sent_at: Optional[float] = None
        self.last_ack_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._interval_handle is not None

    @property
    def awaiting_ack(self) -> bool:
        return self._timeout_handle is not None

    def start(self) -> None:
        self.stop()
        loop = asyncio.get_running_loop()
        self._interval_handle = loop.call_later(self.interval, self._tick)

    def stop(self) -> None:
        if self._interval_handle is not None:
            self._interval_handle.cancel()
            self._interval_handle = None
        self._cancel_timeout()

    def acknowledge(self) -> None:
        self.last_ack_at = self._clock()
        if self._timeout_handle is not None:
            logger.debug("heartbeat acknowledged")
        self._cancel_timeout()

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._interval_handle = loop.call_later(self.interval, self._tick)
        try:
            sent = self._send_probe(build_heartbeat())
        except Exception:
            logger.debug("heartbeat probe send failed", exc_info=True)
            sent = False
        if not sent:
            # transport is going away; the close path will stop us
            return
        self.last_probe_sent_at = self._clock()
        if self._timeout_handle is None:
            self._timeout_handle = loop.call_later(self.timeout, self._expire)

    def _expire(self) -> None:
        self._timeout_handle = None
        logger.warning("Heartbeat timeout after %.2fs; forcing reconnect", self.timeout)
        self.stop()
        self._on_timeout()


__all__ = ["HeartbeatMonitor"]
