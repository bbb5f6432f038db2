"""Shared wall-clock budget for one build, polled cooperatively."""

import time


class Deadline:
    """
    Monotonic deadline ``seconds`` after construction.

    One instance is created per build and read by every worker; it is never
    restarted per subtree. Reads are lock-free: ``start`` and ``end`` are
    fixed once the object exists.
    """

    __slots__ = ("start", "end", "_clock")

    def __init__(self, seconds: float, clock=time.perf_counter,
                 _start: float = None, _end: float = None):
        self._clock = clock
        self.start = clock() if _start is None else _start
        self.end = self.start + seconds if _end is None else _end

    def expired(self) -> bool:
        return self._clock() >= self.end

    def remaining(self) -> float:
        return max(0.0, self.end - self._clock())

    def elapsed(self) -> float:
        return self._clock() - self.start

    def share(self, fraction: float) -> "Deadline":
        """Sub-deadline for one search: at most ``fraction`` of what is left."""
        now = self._clock()
        end = min(self.end, now + fraction * max(0.0, self.end - now))
        return Deadline(0.0, self._clock, _start=now, _end=end)

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.6f}s)"
