from __future__ import annotations

import math
import time
from typing import Callable, Optional


class Stopwatch:
    """
    Restartable stopwatch to easily check elapsed time.
    Seconds precision, rounded down, consistent.
    """

    def __init__(self, auto_start: bool = False, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.auto_start = bool(auto_start)
        self._ts_start: Optional[float] = None
        if self.auto_start:
            self.restart()

    def reset(self) -> None:
        """Stop and clear, or restart right away when auto-starting."""
        if self.auto_start:
            self.restart()
        else:
            self._ts_start = None

    def restart(self) -> None:
        self._ts_start = self._clock()

    def is_over(self, secs: float) -> bool:
        """Always False if not started."""
        elapsed = self.elapsed
        if elapsed == math.inf:
            return False
        return elapsed >= secs

    @property
    def started(self) -> bool:
        return self._ts_start is not None

    @property
    def elapsed(self) -> float:
        """Whole seconds since (re)start, or math.inf if not started."""
        if self._ts_start is None:
            return math.inf
        return max(0, math.floor(self._clock() - self._ts_start))
