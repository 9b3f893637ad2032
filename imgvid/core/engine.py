"""Runs ffmpeg for a single job and reports its terminal result."""
from __future__ import annotations

import enum
import logging
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from .ffmpeg import EngineCommand, ProgressEvent, parse_progress_line, which_ffmpeg

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

_DIAGNOSTIC_LINES = 20


class Outcome(enum.Enum):
    SUCCESS = "Success"
    ENGINE_FAILURE = "EngineFailure"
    PROCESS_FAULT = "ProcessFault"


@dataclass(frozen=True)
class ExecutionResult:
    outcome: Outcome
    diagnostic: str = ""
    return_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @classmethod
    def success(cls, return_code: int = 0) -> "ExecutionResult":
        return cls(Outcome.SUCCESS, "", return_code)

    @classmethod
    def engine_failure(cls, diagnostic: str, return_code: Optional[int] = None) -> "ExecutionResult":
        return cls(Outcome.ENGINE_FAILURE, diagnostic, return_code)

    @classmethod
    def process_fault(cls, diagnostic: str) -> "ExecutionResult":
        return cls(Outcome.PROCESS_FAULT, diagnostic, None)


class FFmpegEngine:
    """Blocking ffmpeg runner.

    ``execute`` does not return until the process has exited. The command is
    passed as its rendered command line and re-tokenized here, so argument
    quoting is what the process actually receives.

    ``timeout`` is in seconds; ``None`` or ``0`` waits forever.
    """

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.executable = executable
        self.timeout = timeout or None

    def execute(self, command: EngineCommand, on_progress: Optional[ProgressCallback] = None) -> ExecutionResult:
        try:
            argv = [which_ffmpeg(self.executable), "-hide_banner", "-nostdin", *command.tokens()]
        except (FileNotFoundError, ValueError) as e:
            return ExecutionResult.process_fault(str(e))

        logger.info("Running ffmpeg %s", command.render())
        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                bufsize=1,
                errors="replace",
            )
        except OSError as e:
            return ExecutionResult.process_fault(f"Failed to start ffmpeg: {e}")

        timed_out = threading.Event()
        timer: Optional[threading.Timer] = None
        if self.timeout:
            def _expire() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(self.timeout, _expire)
            timer.daemon = True
            timer.start()

        tail: Deque[str] = deque(maxlen=_DIAGNOSTIC_LINES)
        try:
            assert process.stderr is not None
            # universal newlines splits ffmpeg's \r-terminated stats lines too
            for line in process.stderr:
                line = line.strip()
                if not line:
                    continue
                logger.debug(line)
                event = parse_progress_line(line)
                if event is None:
                    tail.append(line)
                elif on_progress is not None:
                    try:
                        on_progress(event)
                    except Exception:
                        logger.exception("Progress callback failed")
            ret = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()

        if timed_out.is_set():
            return ExecutionResult.process_fault(f"ffmpeg timed out after {self.timeout:g}s")
        if ret == 0:
            return ExecutionResult.success(ret)
        diagnostic = "\n".join(tail) or f"ffmpeg exited with code {ret}"
        return ExecutionResult.engine_failure(diagnostic, ret)
