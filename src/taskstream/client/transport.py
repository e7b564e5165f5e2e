"""Transport seam between the task channel and the socket library.

The channel only needs an object it can ``send`` text to, ``close`` with a
code, and iterate for inbound messages; a ``websockets`` client connection
already has that shape. Tests substitute an in-memory implementation through
the same :data:`Connector` signature.
"""

from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Protocol, Union

import websockets

Message = Union[str, bytes]


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> AsyncIterator[Message]: ...


Connector = Callable[[str], Awaitable[Transport]]


def websocket_connector(*, open_timeout: float = 10.0, max_size: int | None = 2**20) -> Connector:
    """Return a connector that opens a ``websockets`` client connection.

    Protocol-level pings are disabled; liveness is tracked with application
    heartbeat frames instead.
    """

    async def _connect(url: str) -> Transport:
        return await websockets.connect(
            url,
            open_timeout=open_timeout,
            ping_interval=None,
            max_size=max_size,
        )

    return _connect


__all__ = ["Connector", "Message", "Transport", "websocket_connector"]
