"""Exponential backoff for caller-driven sync retries."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from learnxp.config import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """``base * factor ** (attempt - 1)`` seconds, capped at ``cap``."""

    base: float = 1.0
    factor: float = 2.0
    cap: float = 60.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.base < 0 or self.factor < 1 or self.cap < 0:
            msg = "backoff base and cap must be >= 0 and factor >= 1"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            base=settings.sync_backoff_base_seconds,
            cap=settings.sync_backoff_max_seconds,
            max_attempts=settings.sync_max_attempts,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.cap, self.base * self.factor ** max(0, attempt - 1))

    def delays(self) -> Iterator[float]:
        """The waits between attempts: one fewer than ``max_attempts``."""
        for attempt in range(1, self.max_attempts):
            yield self.delay(attempt)
