"""Parser helpers for inbound task channel frames."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .messages import FrameParseError, InboundFrame


class FrameParser:
    """Parse raw text/bytes payloads into :class:`InboundFrame` instances."""

    def parse(self, raw: str | bytes | bytearray | memoryview) -> InboundFrame:
        if isinstance(raw, (bytes, bytearray, memoryview)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise FrameParseError("frame payload was not UTF-8") from exc
        if not isinstance(raw, str):
            raise FrameParseError(f"unsupported frame payload type {type(raw).__name__}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise FrameParseError(f"frame payload was not valid JSON: {exc.msg}") from exc
        except RecursionError as exc:
            raise FrameParseError("frame payload nested too deeply") from exc
        return self.parse_mapping(data)

    def parse_mapping(self, data: Any) -> InboundFrame:
        if not isinstance(data, Mapping):
            raise FrameParseError(f"frame must be a JSON object, got {type(data).__name__}")
        try:
            return InboundFrame.from_dict(data)
        except RecursionError as exc:
            raise FrameParseError("frame data nested too deeply") from exc


__all__ = ["FrameParser"]
