"""Encode/decode job state machine.

Each run goes Staging -> Invoking -> Committing -> Cleanup; any failure
switches to Failed and still ends in Cleanup, which removes the staging
directory and, for encodes, releases the execution guard.
"""
from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence, Union

from . import staging
from .engine import ExecutionResult, FFmpegEngine, Outcome, ProgressCallback
from .errors import (
    CommitError,
    EmptyInput,
    EngineFailure,
    GuardBusy,
    ProcessFault,
    ResourceReadError,
    TranscodeError,
)
from .ffmpeg import (
    DEFAULT_FRAME_RATE,
    DEFAULT_PIXEL_FORMAT,
    DEFAULT_QUALITY,
    DEFAULT_VIDEO_CODEC,
    EngineCommand,
    build_decode_command,
    build_encode_command,
    decode_pattern,
    encode_pattern,
)
from .gallery import (
    FRAMES_PATH_HINT,
    IMAGE_MIME,
    VIDEO_MIME,
    VIDEO_PATH_HINT,
    GalleryStore,
    PendingHandle,
)
from .guard import ExecutionGuard
from .models import Job, JobKind, JobState
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ENCODE_STAGING_PREFIX = "ffmpeg_in"
DECODE_STAGING_PREFIX = "ffmpeg_frames"


class Engine(Protocol):
    def execute(self, command: EngineCommand, on_progress: Optional[ProgressCallback] = None) -> ExecutionResult:
        ...


def _noop_status(text: str) -> None:
    pass


class TranscodeOrchestrator:
    """Runs encode (images -> video) and decode (video -> frames) jobs.

    ``begin_*`` is called on the foreground thread and either returns a job
    or rejects it without side effects; ``run_*`` does the work and is meant
    for a worker thread. ``run_*`` never raises: the outcome is recorded on
    the returned job.
    """

    def __init__(
        self,
        store: GalleryStore,
        engine: Optional[Engine] = None,
        *,
        guard: Optional[ExecutionGuard] = None,
        progress: Optional[ProgressReporter] = None,
        staging_base: Optional[Union[str, Path]] = None,
        frame_rate: int = DEFAULT_FRAME_RATE,
        video_codec: str = DEFAULT_VIDEO_CODEC,
        pixel_format: str = DEFAULT_PIXEL_FORMAT,
        quality: int = DEFAULT_QUALITY,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.engine: Engine = engine or FFmpegEngine()
        self.guard = guard or ExecutionGuard()
        self.progress = progress or ProgressReporter()
        self.staging_base = staging_base
        self.frame_rate = frame_rate
        self.video_codec = video_codec
        self.pixel_format = pixel_format
        self.quality = quality
        self._clock = clock
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    # Job creation

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def _timestamp(self) -> str:
        return self._clock().strftime(TIMESTAMP_FORMAT)

    def begin_encode(self, inputs: Sequence[Union[str, Path]]) -> Job:
        """Claim the guard for a new encode job.

        Raises ``GuardBusy`` (checked first) or ``EmptyInput``; in both cases
        nothing is staged and the guard is left as it was.
        """
        if self.guard.busy:
            raise GuardBusy()
        if not inputs:
            raise EmptyInput()
        if not self.guard.try_acquire():
            raise GuardBusy()
        ts = self._timestamp()
        job = Job(
            id=self._next_id(),
            kind=JobKind.ENCODE,
            inputs=[Path(p) for p in inputs],
            output_name=f"VIDEO_{ts}.mp4",
            timestamp=ts,
        )
        job.enter(JobState.IDLE)
        return job

    def begin_decode(self, video: Union[str, Path]) -> Job:
        ts = self._timestamp()
        job = Job(
            id=self._next_id(),
            kind=JobKind.DECODE,
            inputs=[Path(video)],
            output_name=f"FRAME_{ts}_",
            timestamp=ts,
        )
        job.enter(JobState.IDLE)
        return job

    def encode(self, inputs: Sequence[Union[str, Path]], on_status: Optional[StatusCallback] = None) -> Job:
        job = self.begin_encode(inputs)
        return self.run_encode(job, on_status)

    def decode(self, video: Union[str, Path], on_status: Optional[StatusCallback] = None) -> Job:
        job = self.begin_decode(video)
        return self.run_decode(job, on_status)

    # Shared steps

    def _invoke(self, job: Job, command: EngineCommand) -> None:
        job.enter(JobState.INVOKING)
        job.command = command
        result = self.engine.execute(command, lambda event: self.progress.offer(job.id, job.kind, event))
        if result.outcome is Outcome.ENGINE_FAILURE:
            raise EngineFailure(result.diagnostic or "ffmpeg reported failure")
        if result.outcome is Outcome.PROCESS_FAULT:
            raise ProcessFault(result.diagnostic or "ffmpeg could not run")

    def _fail(self, job: Job, error: TranscodeError, status: StatusCallback, prefix: str) -> None:
        job.enter(JobState.FAILED)
        message = f"{prefix}: {error}"
        job.mark_failed(error, message)
        status(message)

    def _finish(self, job: Job) -> None:
        job.enter(JobState.CLEANUP)
        try:
            staging.cleanup(job.staging_dir)
        finally:
            if job.kind is JobKind.ENCODE:
                self.guard.release()
            job.enter(JobState.IDLE)
        logger.info("Job %d (%s) finished: %s", job.id, job.kind.value, job.status.value)

    # Encode

    def run_encode(self, job: Job, on_status: Optional[StatusCallback] = None) -> Job:
        """Encode ``job.inputs`` into one video. Releases the guard claimed by ``begin_encode``."""
        status = on_status or _noop_status
        handle: Optional[PendingHandle] = None
        try:
            job.mark_running()
            status("Encoding…")
            logger.info("Job %d: encoding %d image(s)", job.id, len(job.inputs))

            job.enter(JobState.STAGING)
            job.staging_dir = staging.create_staging_dir(ENCODE_STAGING_PREFIX, self.staging_base)
            ext = staging.staged_extension(job.inputs)
            staging.materialize(job.staging_dir, job.inputs, ext)
            handle = self.store.reserve(job.output_name, VIDEO_MIME, VIDEO_PATH_HINT)

            engine_output = job.staging_dir / job.output_name
            command = build_encode_command(
                encode_pattern(job.staging_dir, ext),
                self.frame_rate,
                engine_output,
                video_codec=self.video_codec,
                pixel_format=self.pixel_format,
                quality=self.quality,
            )
            self._invoke(job, command)

            job.enter(JobState.COMMITTING)
            with open(engine_output, "rb") as src:
                self.store.write(handle, src)
            uri = self.store.finalize(handle)
            job.committed.append(uri)
            job.mark_completed(f"Saved:\n{uri}")
            status(job.message)
        except (ResourceReadError, EngineFailure, CommitError, ProcessFault) as e:
            logger.warning("Job %d failed: %s", job.id, e)
            self._fail(job, e, status, "Error")
        except Exception as e:
            logger.exception("Job %d: unexpected fault", job.id)
            self._fail(job, ProcessFault(str(e) or type(e).__name__), status, "Error")
        finally:
            if handle is not None:
                self.store.discard(handle)
            self._finish(job)
        return job

    # Decode

    def run_decode(self, job: Job, on_status: Optional[StatusCallback] = None) -> Job:
        """Extract every frame of ``job.inputs[0]`` into the gallery, one commit per frame."""
        status = on_status or _noop_status
        try:
            job.mark_running()
            status("Decoding…")
            source = job.inputs[0]
            logger.info("Job %d: decoding %s", job.id, source)

            job.enter(JobState.STAGING)
            with staging.staging_area(DECODE_STAGING_PREFIX, self.staging_base) as work:
                job.staging_dir = work
                frames_dir = work / "frames"
                frames_dir.mkdir()
                staged_video = staging.stage_single(work, source, "source" + source.suffix.lower())

                self._invoke(job, build_decode_command(staged_video, decode_pattern(frames_dir)))

                job.enter(JobState.COMMITTING)
                for frame in sorted(frames_dir.glob("frame*.jpg")):
                    self._commit_frame(job, frame)
            message = f"Frames saved: {len(job.committed)} file(s)"
            if job.skipped:
                message += f", {len(job.skipped)} skipped"
            job.mark_completed(message)
            status(message)
        except (ResourceReadError, EngineFailure, ProcessFault) as e:
            logger.warning("Job %d failed: %s", job.id, e)
            self._fail(job, e, status, "Decode error")
        except Exception as e:
            logger.exception("Job %d: unexpected fault", job.id)
            self._fail(job, ProcessFault(str(e) or type(e).__name__), status, "Decode error")
        finally:
            self._finish(job)
        return job

    def _commit_frame(self, job: Job, frame: Path) -> None:
        name = f"FRAME_{job.timestamp}_{frame.name}"
        handle: Optional[PendingHandle] = None
        try:
            handle = self.store.reserve(name, IMAGE_MIME, FRAMES_PATH_HINT)
            with open(frame, "rb") as src:
                self.store.write(handle, src)
            job.committed.append(self.store.finalize(handle))
        except (CommitError, OSError) as e:
            logger.warning("Job %d: skipped frame %s: %s", job.id, frame.name, e)
            job.skipped.append(frame.name)
        finally:
            if handle is not None:
                self.store.discard(handle)
