from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, List
from pathlib import Path
import time

from .errors import TranscodeError

if TYPE_CHECKING:
    from .ffmpeg import EngineCommand


class JobKind(enum.Enum):
    ENCODE = "Encode"
    DECODE = "Decode"


class JobState(enum.Enum):
    IDLE = "Idle"
    STAGING = "Staging"
    INVOKING = "Invoking"
    COMMITTING = "Committing"
    FAILED = "Failed"
    CLEANUP = "Cleanup"


class JobStatus(enum.Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class Job:
    """One transcode request, alive for exactly one orchestration run."""

    id: int
    kind: JobKind
    inputs: List[Path]
    output_name: str
    timestamp: str
    staging_dir: Optional[Path] = None
    state: JobState = JobState.IDLE
    status: JobStatus = JobStatus.PENDING
    message: str = ""
    error: Optional[TranscodeError] = None
    command: Optional["EngineCommand"] = None
    committed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    history: List[JobState] = field(default_factory=list)
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def enter(self, state: JobState) -> None:
        self.state = state
        self.history.append(state)

    def mark_running(self) -> None:
        self.status = JobStatus.RUNNING
        self.start_time = time.time()

    def mark_completed(self, message: str) -> None:
        self.status = JobStatus.COMPLETED
        self.message = message
        self.end_time = time.time()

    def mark_failed(self, error: TranscodeError, message: str) -> None:
        self.status = JobStatus.FAILED
        self.error = error
        self.message = message
        self.end_time = time.time()

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.COMPLETED
