"""Task channel frame shapes.

Frames are flat JSON objects keyed by ``type``. Outbound frames are plain
mappings produced by the ``build_*`` helpers; inbound frames are parsed into
immutable :class:`InboundFrame` instances.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

HEARTBEAT_TYPE = "heartbeat"
HEARTBEAT_RESPONSE_TYPE = "heartbeat_response"
SUBSCRIBE_TYPE = "subscribe"
UNSUBSCRIBE_TYPE = "unsubscribe"
TASK_UPDATE_TYPE = "task_update"
TASK_COMPLETE_TYPE = "task_complete"
TASK_ERROR_TYPE = "task_error"

TASK_EVENT_TYPES = frozenset({TASK_UPDATE_TYPE, TASK_COMPLETE_TYPE, TASK_ERROR_TYPE})
SUBSCRIPTION_TYPES = frozenset({SUBSCRIBE_TYPE, UNSUBSCRIBE_TYPE})

TASK_ID_KEY = "taskId"

_EMPTY: Mapping[str, Any] = MappingProxyType({})


class FrameParseError(ValueError):
    """Raised when an inbound payload is not a well-formed frame."""


def now_ms(timestamp: float | None = None) -> int:
    """Return *timestamp* (seconds) or the current time as epoch milliseconds."""

    seconds = float(timestamp) if timestamp is not None else time.time()
    return int(seconds * 1000)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class InboundFrame:
    """A parsed server-to-client frame."""

    type: str
    task_id: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    timestamp: Optional[float] = None

    @property
    def is_task_event(self) -> bool:
        return self.type in TASK_EVENT_TYPES

    @property
    def progress(self) -> Any:
        return self.data.get("progress")

    @property
    def result(self) -> Any:
        return self.data.get("result")

    @property
    def error(self) -> Any:
        return self.data.get("error")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.task_id is not None:
            payload[TASK_ID_KEY] = self.task_id
        if self.data:
            payload["data"] = _thaw(self.data)
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InboundFrame":
        frame_type = data.get("type")
        if not isinstance(frame_type, str) or not frame_type:
            raise FrameParseError("frame missing 'type'")

        task_id = _coerce_task_id(data.get(TASK_ID_KEY))

        body = data.get("data")
        if body is None:
            frozen_body: Mapping[str, Any] = _EMPTY
        elif isinstance(body, Mapping):
            frozen_body = _freeze(body)
        else:
            raise FrameParseError(f"frame 'data' must be an object, got {type(body).__name__}")

        raw_ts = data.get("timestamp")
        timestamp: Optional[float]
        if raw_ts is None or isinstance(raw_ts, bool):
            timestamp = None
        elif isinstance(raw_ts, (int, float)):
            timestamp = float(raw_ts)
        else:
            # ISO strings and other encodings are carried as "unknown"
            timestamp = None

        return cls(type=frame_type, task_id=task_id, data=frozen_body, timestamp=timestamp)


def _coerce_task_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise FrameParseError("frame 'taskId' must be a string")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value or None
    raise FrameParseError(f"frame 'taskId' must be a string, got {type(value).__name__}")


def build_heartbeat(*, timestamp: float | None = None) -> Dict[str, Any]:
    return {"type": HEARTBEAT_TYPE, "timestamp": now_ms(timestamp)}


def build_subscribe(task_id: str, *, timestamp: float | None = None) -> Dict[str, Any]:
    return {"type": SUBSCRIBE_TYPE, TASK_ID_KEY: str(task_id), "timestamp": now_ms(timestamp)}


def build_unsubscribe(task_id: str, *, timestamp: float | None = None) -> Dict[str, Any]:
    return {"type": UNSUBSCRIBE_TYPE, TASK_ID_KEY: str(task_id), "timestamp": now_ms(timestamp)}


def encode_frame(frame: Mapping[str, Any]) -> str:
    """Serialize an outbound frame to compact JSON."""

    return json.dumps(dict(frame), separators=(",", ":"))


__all__ = [
    "HEARTBEAT_TYPE",
    "HEARTBEAT_RESPONSE_TYPE",
    "SUBSCRIBE_TYPE",
    "UNSUBSCRIBE_TYPE",
    "TASK_UPDATE_TYPE",
    "TASK_COMPLETE_TYPE",
    "TASK_ERROR_TYPE",
    "TASK_EVENT_TYPES",
    "SUBSCRIPTION_TYPES",
    "TASK_ID_KEY",
    "FrameParseError",
    "InboundFrame",
    "build_heartbeat",
    "build_subscribe",
    "build_unsubscribe",
    "encode_frame",
    "now_ms",
]
