"""Per-origin sliding-window admission control (core domain).

State lives in process memory only and resets on restart. Each origin has its
own lock so checks for different origins never contend. Origins whose window
has emptied are swept out periodically, so idle callers do not accumulate.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Iterator

from sensus.core.config import RateLimitConfig

SWEEP_EVERY = 1000


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` admissions per origin per window."""

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = SWEEP_EVERY,
    ) -> None:
        self._window = config.window_seconds
        self._capacity = config.max_requests
        self._clock = clock
        self._sweep_every = max(1, sweep_every)
        self._windows: dict[str, deque[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._admissions = 0

    def __len__(self) -> int:
        return len(self._windows)

    def _lock_for(self, origin: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(origin)
            if lock is None:
                lock = self._locks[origin] = threading.Lock()
                self._windows[origin] = deque()
            return lock

    @contextmanager
    def _window_for(self, origin: str) -> Iterator[deque[float]]:
        while True:
            lock = self._lock_for(origin)
            with lock:
                # A sweep may have evicted the origin while we waited.
                if self._locks.get(origin) is not lock:
                    continue
                yield self._windows[origin]
                return

    def _prune(self, stamps: deque[float], now: float) -> None:
        cutoff = now - self._window
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

    def admit(self, origin: str) -> bool:
        """Record an admission for ``origin`` and return True, or return False."""

        with self._window_for(origin) as stamps:
            now = self._clock()
            self._prune(stamps, now)
            if len(stamps) >= self._capacity:
                admitted = False
            else:
                stamps.append(now)
                admitted = True

        with self._registry_lock:
            self._admissions += 1
            due = self._admissions % self._sweep_every == 0
        if due:
            self.sweep()
        return admitted

    def retry_after(self, origin: str) -> float:
        """Seconds until the oldest admission for ``origin`` leaves the window."""

        if origin not in self._windows:
            return 0.0
        with self._window_for(origin) as stamps:
            if not stamps:
                return 0.0
            return max(0.0, stamps[0] + self._window - self._clock())

    def sweep(self) -> int:
        """Forget origins with no admissions left in the window; return how many."""

        evicted = 0
        with self._registry_lock:
            now = self._clock()
            for origin, lock in list(self._locks.items()):
                # Origins busy in admit() are skipped until the next sweep.
                if not lock.acquire(blocking=False):
                    continue
                try:
                    stamps = self._windows[origin]
                    self._prune(stamps, now)
                    if not stamps:
                        del self._windows[origin]
                        del self._locks[origin]
                        evicted += 1
                finally:
                    lock.release()
        return evicted
