"""Process-local, per-week serialization of draft mutations.

"Check lock, then assign" and "check for picks, then simulate" must not
interleave for the same week. Each week gets its own RLock; callers take it
before opening the database transaction for the critical section.

These locks do not span processes. Run a single writer process per pool.
"""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, Iterator, Optional


class WeekLocks:
    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[int, RLock] = {}

    def _lock_for(self, week: int) -> RLock:
        with self._guard:
            lock = self._locks.get(week)
            if lock is None:
                lock = RLock()
                self._locks[week] = lock
            return lock

    @contextmanager
    def hold(self, week: int, *, timeout_s: Optional[float] = None) -> Iterator[None]:
        """Hold the week's lock for the duration of the block.

        Raises:
            TimeoutError: the lock was not acquired within ``timeout_s`` seconds.
        """

        lock = self._lock_for(week)
        if timeout_s is None:
            acquired = lock.acquire()
        else:
            acquired = lock.acquire(timeout=max(0.0, float(timeout_s)))
        if not acquired:
            raise TimeoutError(f"week {week} lock not acquired within {timeout_s}s")
        try:
            yield
        finally:
            lock.release()


__all__ = ["WeekLocks"]
