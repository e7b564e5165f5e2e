"""Client-side mirror of task progress fed by a :class:`TaskChannel`.

The mirror owns no connection: the channel is injected and its lifetime is
the caller's business. Each tracked task gets one :class:`TaskSnapshot` that
is replaced (never mutated) whenever a ``task_*`` frame arrives.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from taskstream.client.channel import TaskChannel
from taskstream.protocol import (
    TASK_COMPLETE_TYPE,
    TASK_ERROR_TYPE,
    TASK_UPDATE_TYPE,
    InboundFrame,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})


@dataclass(frozen=True)
class TaskSnapshot:
    task_id: str
    status: str = STATUS_PENDING
    progress: Optional[float] = None
    result: Any = None
    error: Any = None
    updated_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _coerce_progress(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        progress = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(100.0, progress))


def apply_frame(snapshot: TaskSnapshot, frame: InboundFrame, *, now: float) -> TaskSnapshot:
    """Fold one task frame into *snapshot* and return the new snapshot."""

    if frame.type == TASK_UPDATE_TYPE:
        if snapshot.finished:
            return snapshot
        status = frame.data.get("status")
        progress = _coerce_progress(frame.progress)
        return replace(
            snapshot,
            status=str(status) if isinstance(status, str) and status else STATUS_RUNNING,
            progress=progress if progress is not None else snapshot.progress,
            updated_at=now,
        )
    if frame.type == TASK_COMPLETE_TYPE:
        return replace(
            snapshot,
            status=STATUS_COMPLETED,
            progress=100.0,
            result=frame.result,
            error=None,
            updated_at=now,
        )
    if frame.type == TASK_ERROR_TYPE:
        return replace(
            snapshot,
            status=STATUS_FAILED,
            error=frame.error,
            updated_at=now,
        )
    return snapshot


class TaskMirror:
    def __init__(self, channel: TaskChannel, *, clock: Callable[[], float] = time.time) -> None:
        self._channel = channel
        self._clock = clock
        self._snapshots: Dict[str, TaskSnapshot] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}
        self._listeners: List[Callable[[TaskSnapshot], None]] = []

    def track(self, task_id: str) -> TaskSnapshot:
        """Start mirroring *task_id*; idempotent."""

        existing = self._snapshots.get(task_id)
        if existing is not None:
            return existing
        snapshot = TaskSnapshot(task_id=task_id)
        self._snapshots[task_id] = snapshot
        self._unsubscribers[task_id] = self._channel.subscribe(task_id, self._on_frame)
        return snapshot

    def untrack(self, task_id: str) -> None:
        unsubscribe = self._unsubscribers.pop(task_id, None)
        self._snapshots.pop(task_id, None)
        if unsubscribe is not None:
            unsubscribe()

    def close(self) -> None:
        for task_id in list(self._unsubscribers):
            self.untrack(task_id)
        self._listeners.clear()

    def snapshot(self, task_id: str) -> Optional[TaskSnapshot]:
        return self._snapshots.get(task_id)

    def snapshots(self) -> Dict[str, TaskSnapshot]:
        return dict(self._snapshots)

    def all_finished(self) -> bool:
        return bool(self._snapshots) and all(s.finished for s in self._snapshots.values())

    def add_listener(self, listener: Callable[[TaskSnapshot], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _on_frame(self, frame: InboundFrame) -> None:
        task_id = frame.task_id
        current = self._snapshots.get(task_id) if task_id is not None else None
        if current is None:
            return
        updated = apply_frame(current, frame, now=self._clock())
        if updated is current:
            return
        self._snapshots[task_id] = updated
        logger.debug("task %s -> %s progress=%s", task_id, updated.status, updated.progress)
        for listener in tuple(self._listeners):
            try:
                listener(updated)
            except Exception:
                logger.debug("task mirror listener failed", exc_info=True)


__all__ = [
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "STATUS_RUNNING",
    "TERMINAL_STATUSES",
    "TaskMirror",
    "TaskSnapshot",
    "apply_frame",
]
