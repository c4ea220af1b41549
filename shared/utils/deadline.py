"""Soft wall-clock deadline shared by the pipeline stages of one run."""

import time
from typing import Callable, Optional


class Deadline:
    """
    A soft deadline measured on a monotonic clock.

    Stages poll ``expired()`` / ``remaining()`` between units of work and
    skip or shrink what is left instead of starting work they cannot finish.
    ``budget=None`` means unbounded.
    """

    def __init__(self, budget: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.budget = budget
        self.started = clock()

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def elapsed(self) -> float:
        return self._clock() - self.started

    def elapsed_ms(self) -> int:
        return int(self.elapsed() * 1000)

    def remaining(self) -> Optional[float]:
        if self.budget is None:
            return None
        return max(0.0, self.budget - self.elapsed())

    def expired(self) -> bool:
        return self.budget is not None and self.elapsed() >= self.budget

    def __repr__(self) -> str:
        return f"Deadline(budget={self.budget}, elapsed={self.elapsed():.2f})"
