from __future__ import annotations

import threading


class ExecutionGuard:
    """Single-flight flag for encode jobs.

    Only ``try_acquire`` and ``release`` mutate the flag. A caller that got
    ``True`` from ``try_acquire`` owns the guard and must call ``release``
    exactly once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy = False

    def try_acquire(self) -> bool:
        # Non-blocking: the lock only protects the compare-and-set itself
        with self._lock:
            if self._busy:
                return False
            self._busy = True
            return True

    def release(self) -> None:
        with self._lock:
            self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

