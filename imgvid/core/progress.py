from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .ffmpeg import ProgressEvent
from .models import JobKind


def format_progress(kind: JobKind, event: ProgressEvent) -> str:
    label = "Encoding" if kind is JobKind.ENCODE else "Decoding"
    return f"{label}: frame {event.frame}, fps={event.fps:.1f}, time={event.time_ms / 1000.0:.1f}s"


class ProgressReporter:
    """Bounded progress channels between workers and the UI thread.

    Every job gets its own channel, keyed by job id. ``offer`` never blocks;
    once ``capacity`` texts are waiting for a job its oldest one is dropped.
    The UI thread calls ``drain_all`` (from a timer) to take what is there.
    """

    def __init__(self, capacity: int = 16) -> None:
        self.capacity = max(1, capacity)
        self._channels: Dict[int, Deque[str]] = {}
        self._dropped: Dict[int, int] = {}
        self._lock = threading.Lock()

    def offer(self, job_id: int, kind: JobKind, event: ProgressEvent) -> None:
        text = format_progress(kind, event)
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None:
                channel = self._channels[job_id] = deque(maxlen=self.capacity)
            if len(channel) == channel.maxlen:
                self._dropped[job_id] = self._dropped.get(job_id, 0) + 1
            channel.append(text)

    def drain(self, job_id: int) -> List[str]:
        """Take the waiting texts of one job."""
        with self._lock:
            channel = self._channels.get(job_id)
            if not channel:
                return []
            items = list(channel)
            channel.clear()
        return items

    def drain_all(self) -> Dict[int, List[str]]:
        """Take the waiting texts of every job, ordered by job id."""
        with self._lock:
            items = {job_id: list(ch) for job_id, ch in sorted(self._channels.items()) if ch}
            for ch in self._channels.values():
                ch.clear()
        return items

    def latest(self) -> List[Tuple[int, str]]:
        """Drain everything and keep only the most recent text of each job."""
        return [(job_id, texts[-1]) for job_id, texts in self.drain_all().items()]

    def discard(self, job_id: int) -> None:
        """Forget a finished job's channel and anything still queued in it."""
        with self._lock:
            self._channels.pop(job_id, None)
            self._dropped.pop(job_id, None)

    def dropped(self, job_id: int) -> int:
        with self._lock:
            return self._dropped.get(job_id, 0)

    def pending(self, job_id: Optional[int] = None) -> int:
        with self._lock:
            if job_id is not None:
                return len(self._channels.get(job_id, ()))
            return sum(len(ch) for ch in self._channels.values())
