from __future__ import annotations

from typing import Callable, Dict, Iterator, List

from taskstream.protocol import InboundFrame

TaskCallback = Callable[[InboundFrame], None]


class SubscriptionRegistry:
    """Task id to ordered, duplicate-free callback lists.

    An entry exists only while it has at least one callback.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[TaskCallback]] = {}

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._entries))

    def add(self, task_id: str, callback: TaskCallback) -> bool:
        """Register *callback*; return True when this created the entry."""

        callbacks = self._entries.get(task_id)
        if callbacks is None:
            self._entries[task_id] = [callback]
            return True
        # bound methods compare equal without being identical
        if callback not in callbacks:
            callbacks.append(callback)
        return False

    def remove(self, task_id: str, callback: TaskCallback) -> bool:
        """Drop *callback*; return True when this removed the entry."""

        callbacks = self._entries.get(task_id)
        if callbacks is None:
            return False
        try:
            callbacks.remove(callback)
        except ValueError:
            return False
        if callbacks:
            return False
        del self._entries[task_id]
        return True

    def callbacks(self, task_id: str) -> tuple[TaskCallback, ...]:
        return tuple(self._entries.get(task_id, ()))

    def task_ids(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["SubscriptionRegistry", "TaskCallback"]
