from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def to_ms(seconds: float) -> int:
    return int(round(float(seconds) * 1000.0))


class CountdownTimer:
    """Cancellable deadline polled against a Clock.

    A timer fires at most once: `fired()` returns True on the first poll at or
    after the deadline and False forever after, or after `cancel()`.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._due_at_s: float | None = None
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def due_at_s(self) -> float | None:
        return self._due_at_s

    def start(self, duration_ms: float) -> None:
        # Restarting implicitly cancels the previous deadline.
        self._due_at_s = self._clock.now() + max(0.0, float(duration_ms)) / 1000.0
        self._armed = True

    def cancel(self) -> None:
        self._armed = False
        self._due_at_s = None

    def remaining_s(self) -> float | None:
        if not self._armed or self._due_at_s is None:
            return None
        return max(0.0, self._due_at_s - self._clock.now())

    def fired(self) -> bool:
        if not self._armed or self._due_at_s is None:
            return False
        if self._clock.now() < self._due_at_s:
            return False
        self._armed = False
        return True
