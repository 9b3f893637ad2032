from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

from PySide6 import QtCore

from .models import Job, JobKind
from .orchestrator import TranscodeOrchestrator

logger = logging.getLogger(__name__)


class TranscodeSignals(QtCore.QObject):
    status = QtCore.Signal(int, str)  # job_id, status text
    finished = QtCore.Signal(int, bool, str)  # job_id, success, message


class TranscodeWorker(QtCore.QRunnable):
    """Runs one encode or decode job on a pool thread.

    The job must come from ``begin_encode``/``begin_decode``. Status text is
    emitted through Qt signals, which queue it to the receiver's thread.
    """

    def __init__(self, orchestrator: TranscodeOrchestrator, job: Job) -> None:
        super().__init__()
        self.orchestrator = orchestrator
        self.job = job
        self.signals = TranscodeSignals()

    @QtCore.Slot()
    def run(self) -> None:  # type: ignore[override]
        job = self.job

        def emit_status(text: str) -> None:
            self.signals.status.emit(job.id, text)

        if job.kind is JobKind.ENCODE:
            self.orchestrator.run_encode(job, emit_status)
        else:
            self.orchestrator.run_decode(job, emit_status)
        self.signals.finished.emit(job.id, job.succeeded, job.message)


class TranscodeManager(QtCore.QObject):
    """Starts jobs from the UI thread and relays their signals back to it.

    ``start_encode`` raises ``EmptyInput``/``GuardBusy`` on the calling
    thread, before anything is scheduled.
    """

    job_status = QtCore.Signal(int, str)
    job_finished = QtCore.Signal(int, bool, str)

    def __init__(self, orchestrator: TranscodeOrchestrator, pool: Optional[QtCore.QThreadPool] = None) -> None:
        super().__init__()
        self.orchestrator = orchestrator
        self.pool = pool or QtCore.QThreadPool.globalInstance()
        self.active: Dict[int, TranscodeWorker] = {}

    @property
    def encoding(self) -> bool:
        return self.orchestrator.guard.busy

    def start_encode(self, images: Sequence[Union[str, Path]]) -> Job:
        job = self.orchestrator.begin_encode(images)
        try:
            self._dispatch(job)
        except Exception:
            # The worker never ran, so nothing else will release the guard
            self.active.pop(job.id, None)
            self.orchestrator.guard.release()
            raise
        return job

    def start_decode(self, video: Union[str, Path]) -> Job:
        job = self.orchestrator.begin_decode(video)
        self._dispatch(job)
        return job

    def _dispatch(self, job: Job) -> None:
        worker = TranscodeWorker(self.orchestrator, job)
        worker.signals.status.connect(self._on_status)
        worker.signals.finished.connect(self._on_finished)
        self.active[job.id] = worker
        logger.info("Dispatching job %d (%s)", job.id, job.kind.value)
        self.pool.start(worker)

    def wait_for_done(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)

    @QtCore.Slot(int, str)
    def _on_status(self, job_id: int, text: str) -> None:
        self.job_status.emit(job_id, text)

    @QtCore.Slot(int, bool, str)
    def _on_finished(self, job_id: int, ok: bool, message: str) -> None:
        self.active.pop(job_id, None)
        self.job_finished.emit(job_id, ok, message)
