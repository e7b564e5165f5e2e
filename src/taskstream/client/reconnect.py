from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from taskstream.client.config import ChannelConfig


@dataclass
class ReconnectPolicy:
    """Exponential backoff with an attempt ceiling.

    ``attempt_count`` is the number of the retry currently scheduled or in
    flight; it starts at 1 for the first retry after a loss.
    """

    base_delay: float
    backoff_multiplier: float
    max_attempts: int
    max_delay: Optional[float] = None
    attempt_count: int = 0

    @classmethod
    def from_config(cls, config: ChannelConfig) -> "ReconnectPolicy":
        return cls(
            base_delay=config.reconnect_base_delay,
            backoff_multiplier=config.reconnect_backoff_multiplier,
            max_attempts=config.reconnect_max_attempts,
            max_delay=config.reconnect_max_delay,
        )

    @property
    def exhausted(self) -> bool:
        return self.attempt_count > self.max_attempts

    def next_delay(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return float(delay)

    def record_failure(self) -> Optional[float]:
        """Count one more failed open; return the retry delay or ``None`` when exhausted."""

        self.attempt_count += 1
        if self.exhausted:
            return None
        return self.next_delay(self.attempt_count)

    def reset(self) -> None:
        self.attempt_count = 0


__all__ = ["ReconnectPolicy"]
