from __future__ import annotations

import logging
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class OutboundQueue:
    """FIFO of serialized frames waiting for an open transport.

    Entries leave the queue only after the transmit callable returned
    successfully, so a transport that dies mid-flush leaves the unsent tail
    in place for the next open.
    """

    def __init__(self) -> None:
        self._frames: Deque[str] = deque()

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)

    def pending(self) -> tuple[str, ...]:
        return tuple(self._frames)

    def enqueue(self, text: str) -> None:
        self._frames.append(text)

    def clear(self) -> None:
        self._frames.clear()

    async def flush(self, transmit: Callable[[str], Awaitable[None]]) -> int:
        """Transmit queued frames oldest first; return how many were sent."""

        sent = 0
        while self._frames:
            head = self._frames[0]
            try:
                await transmit(head)
            except Exception:
                logger.debug(
                    "OutboundQueue.flush: transmit failed; %d frame(s) kept",
                    len(self._frames),
                    exc_info=True,
                )
                break
            # transmit may have re-entered and cleared the queue
            if self._frames and self._frames[0] is head:
                self._frames.popleft()
            sent += 1
        return sent


__all__ = ["OutboundQueue"]
