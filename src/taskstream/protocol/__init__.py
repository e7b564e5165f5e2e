"""Wire protocol for the taskstream push-update channel."""

from __future__ import annotations

from .messages import *  # noqa: F401,F403
from .parser import FrameParser

__all__ = [name for name in globals().keys() if not name.startswith("_")]
