"""Error taxonomy for the task channel.

Only :class:`ReconnectExhausted` is terminal for a session; everything else is
recovered inside the channel and surfaces, at most, through
``TaskChannel.last_error``.
"""

from __future__ import annotations

from typing import Optional

from taskstream.protocol import FrameParseError


class ChannelError(RuntimeError):
    """Base class for channel-level failures."""


class TransportOpenFailure(ChannelError):
    """The transport could not be established."""


class ConnectionLost(ChannelError):
    """The transport closed without a user request."""


class HeartbeatTimeout(ChannelError):
    """No heartbeat acknowledgement arrived within the timeout window."""


class ReconnectExhausted(ChannelError):
    """Reconnect attempts exceeded the configured maximum."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"gave up after {attempts} reconnect attempt(s){detail}")
        self.attempts = attempts
        self.cause = cause


class CallbackError(ChannelError):
    """A subscriber callback raised while handling a frame."""

    def __init__(self, task_id: str, frame_type: str, original: BaseException) -> None:
        super().__init__(f"callback for task {task_id!r} failed on {frame_type}: {original!r}")
        self.task_id = task_id
        self.frame_type = frame_type
        self.original = original


__all__ = [
    "CallbackError",
    "ChannelError",
    "ConnectionLost",
    "FrameParseError",
    "HeartbeatTimeout",
    "ReconnectExhausted",
    "TransportOpenFailure",
]
