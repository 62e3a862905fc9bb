"""Deadline tracking for a single job run.

A :class:`Deadline` is created once per ``run`` and handed to every blocking
operation underneath it. Subprocess-backed operations translate the
remaining time into a timeout so that nothing outlives the run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


class DeadlineExceeded(TimeoutError):
    """Raised when an operation starts after its deadline has elapsed."""


@dataclass(frozen=True)
class Deadline:
    expires_at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def after(cls, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        if seconds < 0:
            raise ValueError("seconds must not be negative")
        return cls(expires_at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        """Seconds left before expiry, clamped at zero."""

        return max(self.expires_at - self.clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.clock() >= self.expires_at

    def check(self, action: str = "operation") -> None:
        if self.expired:
            raise DeadlineExceeded(f"deadline exceeded before {action}")
