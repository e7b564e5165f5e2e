"""Client side of the taskstream push-update channel."""

from __future__ import annotations

from .channel import ChannelStatus, ConnectionState, TaskChannel
from .config import ChannelConfig, load_channel_config
from .errors import (
    CallbackError,
    ChannelError,
    ConnectionLost,
    FrameParseError,
    HeartbeatTimeout,
    ReconnectExhausted,
    TransportOpenFailure,
)
from .task_mirror import TaskMirror, TaskSnapshot
from .transport import Connector, Transport, websocket_connector

__all__ = [
    "CallbackError",
    "ChannelConfig",
    "ChannelError",
    "ChannelStatus",
    "ConnectionLost",
    "ConnectionState",
    "Connector",
    "FrameParseError",
    "HeartbeatTimeout",
    "ReconnectExhausted",
    "TaskChannel",
    "TaskMirror",
    "TaskSnapshot",
    "Transport",
    "TransportOpenFailure",
    "load_channel_config",
    "websocket_connector",
]
