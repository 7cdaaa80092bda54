import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """
    Counts dispatched alerts over a sliding time window

    ``allow`` only checks; ``record`` counts a dispatch. Callers check before
    claiming an alert and record once it has been delivered.
    """

    def __init__(
        self,
        max_per_window: int,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_per_window <= 0:
            raise ValueError("max_per_window must be positive")
        self.max_per_window = max_per_window
        self.window = window
        self._clock = clock
        self._timestamps: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def allow(self) -> bool:
        now = self._clock()
        self._prune(now)
        return len(self._timestamps) < self.max_per_window

    def record(self) -> None:
        now = self._clock()
        self._prune(now)
        self._timestamps.append(now)

    @property
    def count(self) -> int:
        self._prune(self._clock())
        return len(self._timestamps)
