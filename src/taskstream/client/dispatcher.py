from __future__ import annotations

import logging
from typing import Callable, Optional

from taskstream.client.errors import CallbackError
from taskstream.client.subscriptions import SubscriptionRegistry
from taskstream.protocol import HEARTBEAT_RESPONSE_TYPE, FrameParseError, FrameParser, InboundFrame

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Route inbound payloads to the heartbeat monitor or task subscribers.

    Nothing raised while parsing or delivering a frame escapes :meth:`dispatch`:
    malformed payloads are dropped, failing callbacks are isolated from their
    siblings and from later frames.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        on_heartbeat_ack: Callable[[], None],
        *,
        parser: Optional[FrameParser] = None,
        on_callback_error: Optional[Callable[[CallbackError], None]] = None,
    ) -> None:
        self._registry = registry
        self._on_heartbeat_ack = on_heartbeat_ack
        self._parser = parser or FrameParser()
        self._on_callback_error = on_callback_error
        self.dropped_frames = 0
        self.callback_failures = 0
        self.ignored_frames = 0

    def dispatch(self, raw: str | bytes) -> int:
        """Parse and route one payload; return the number of callbacks invoked."""

        try:
            frame = self._parser.parse(raw)
        except FrameParseError as exc:
            self.dropped_frames += 1
            logger.warning("Dropping malformed frame: %s", exc)
            logger.debug("malformed payload: %r", raw)
            return 0
        return self.dispatch_frame(frame)

    def dispatch_frame(self, frame: InboundFrame) -> int:
        if frame.type == HEARTBEAT_RESPONSE_TYPE:
            try:
                self._on_heartbeat_ack()
            except Exception:
                logger.debug("heartbeat ack handler failed", exc_info=True)
            return 0

        if not frame.is_task_event:
            self.ignored_frames += 1
            logger.debug("Ignoring unhandled frame type=%s task=%s", frame.type, frame.task_id)
            return 0

        if frame.task_id is None:
            self.ignored_frames += 1
            logger.debug("Ignoring %s frame without taskId", frame.type)
            return 0

        callbacks = self._registry.callbacks(frame.task_id)
        if not callbacks:
            logger.debug("No subscribers for task=%s type=%s", frame.task_id, frame.type)
            return 0

        delivered = 0
        for callback in callbacks:
            try:
                callback(frame)
            except Exception as exc:
                self.callback_failures += 1
                logger.error(
                    "Subscriber callback failed for task=%s type=%s",
                    frame.task_id,
                    frame.type,
                    exc_info=True,
                )
                self._report(CallbackError(frame.task_id, frame.type, exc))
            delivered += 1
        return delivered

    def _report(self, error: CallbackError) -> None:
        if self._on_callback_error is None:
            return
        try:
            self._on_callback_error(error)
        except Exception:
            logger.debug("on_callback_error hook failed", exc_info=True)


__all__ = ["MessageDispatcher"]
