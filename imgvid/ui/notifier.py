from __future__ import annotations

import time
from typing import Callable


class RateLimitedNotifier:
    """Forwards short transient messages, at most one per ``interval_ms``.

    Messages arriving inside the interval are dropped, not queued.
    """

    def __init__(
        self,
        sink: Callable[[str], None],
        interval_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._interval = interval_ms / 1000.0
        self._clock = clock
        self._last: float | None = None

    def notify(self, message: str) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self._interval:
            return False
        self._last = now
        self._sink(message)
        return True
