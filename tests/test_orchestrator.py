import threading
from datetime import datetime
from pathlib import Path

import pytest

from imgvid.core.engine import ExecutionResult
from imgvid.core.errors import (
    CommitError,
    EmptyInput,
    EngineFailure,
    GuardBusy,
    ProcessFault,
    ResourceReadError,
)
from imgvid.core.ffmpeg import ProgressEvent
from imgvid.core.gallery import GalleryStore
from imgvid.core.models import JobKind, JobState, JobStatus
from imgvid.core.orchestrator import TranscodeOrchestrator

from conftest import FakeEngine

FIXED_NOW = datetime(2026, 3, 14, 15, 9, 26)


def make(gallery, engine, staging_base, **kwargs) -> TranscodeOrchestrator:
    return TranscodeOrchestrator(gallery, engine, staging_base=staging_base, clock=lambda: FIXED_NOW, **kwargs)


def test_encode_commits_video_and_releases_guard(gallery, engine, staging_base, images) -> None:
    orch = make(gallery, engine, staging_base)
    statuses = []

    job = orch.encode(images, statuses.append)

    assert job.status is JobStatus.COMPLETED
    assert job.output_name == "VIDEO_20260314_150926.mp4"
    assert gallery.list_visible("Movies") == ["VIDEO_20260314_150926.mp4"]
    assert (gallery.root / "Movies" / "VIDEO_20260314_150926.mp4").read_bytes() == engine.output_bytes
    assert job.committed and job.committed[0].endswith("VIDEO_20260314_150926.mp4")
    assert statuses[0] == "Encoding…"
    assert statuses[-1].startswith("Saved:\n")
    assert job.history == [
        JobState.IDLE, JobState.STAGING, JobState.INVOKING,
        JobState.COMMITTING, JobState.CLEANUP, JobState.IDLE,
    ]
    assert not job.staging_dir.exists()
    assert orch.guard.busy is False
    # A second encode can take the guard straight away
    assert orch.encode(images).succeeded


def test_encode_stages_in_selection_order(gallery, engine, staging_base, images) -> None:
    orch = make(gallery, engine, staging_base)
    seen = {}

    def capture(command) -> None:
        pattern = Path(command.tokens()[command.tokens().index("-i") + 1])
        seen.update({p.name: p.read_bytes() for p in pattern.parent.glob("img*.jpg")})

    engine.on_execute = capture
    orch.encode(images)

    assert seen == {"img00001.jpg": b"C", "img00002.jpg": b"A", "img00003.jpg": b"B"}


def test_encode_command_survives_spaces_in_paths(gallery, engine, staging_base, images) -> None:
    orch = make(gallery, engine, staging_base)
    job = orch.encode(images)

    tokens = engine.commands[0].tokens()
    assert tokens == list(engine.commands[0].args)
    pattern = tokens[tokens.index("-i") + 1]
    assert " " in pattern
    assert pattern.endswith("img%05d.jpg")
    assert tokens[tokens.index("-framerate") + 1] == "10"
    assert job.command is engine.commands[0]


def test_empty_input_is_rejected_without_side_effects(gallery, engine, staging_base) -> None:
    orch = make(gallery, engine, staging_base)
    with pytest.raises(EmptyInput):
        orch.encode([])
    assert list(staging_base.iterdir()) == []
    assert engine.commands == []
    assert orch.guard.busy is False


def test_busy_guard_is_reported_before_empty_input(gallery, engine, staging_base) -> None:
    orch = make(gallery, engine, staging_base)
    assert orch.guard.try_acquire()

    with pytest.raises(GuardBusy):
        orch.encode([])
    assert orch.guard.busy is True
    assert list(staging_base.iterdir()) == []


def test_second_encode_is_rejected_while_first_runs(gallery, staging_base, images) -> None:
    gate = threading.Event()
    engine = FakeEngine(gate=gate)
    orch = make(gallery, engine, staging_base)
    results = []

    first = threading.Thread(target=lambda: results.append(orch.encode(images)))
    first.start()
    assert engine.started.wait(timeout=5)

    with pytest.raises(GuardBusy):
        orch.encode(images)
    assert len(engine.commands) == 1

    gate.set()
    first.join(timeout=5)
    assert results[0].status is JobStatus.COMPLETED
    assert orch.guard.busy is False


def test_engine_failure_cleans_up_and_reports_diagnostic(gallery, staging_base, images) -> None:
    engine = FakeEngine(ExecutionResult.engine_failure("codec not found", 1))
    orch = make(gallery, engine, staging_base)
    statuses = []

    job = orch.encode(images, statuses.append)

    assert job.status is JobStatus.FAILED
    assert isinstance(job.error, EngineFailure)
    assert "codec not found" in statuses[-1]
    assert "codec not found" in job.message
    assert JobState.FAILED in job.history
    assert job.history[-2:] == [JobState.CLEANUP, JobState.IDLE]
    assert not job.staging_dir.exists()
    assert orch.guard.busy is False
    # The reservation taken before invoking ffmpeg must not linger
    assert list((gallery.root / "Movies").iterdir()) == []


def test_process_fault_from_engine(gallery, staging_base, images) -> None:
    engine = FakeEngine(ExecutionResult.process_fault("Failed to start ffmpeg"))
    job = make(gallery, engine, staging_base).encode(images)
    assert isinstance(job.error, ProcessFault)


def test_unexpected_exception_becomes_process_fault(gallery, engine, staging_base, images) -> None:
    def explode(command) -> None:
        raise OSError("disk full")

    engine.on_execute = explode
    orch = make(gallery, engine, staging_base)
    job = orch.encode(images)

    assert isinstance(job.error, ProcessFault)
    assert "disk full" in job.message
    assert not job.staging_dir.exists()
    assert orch.guard.busy is False


def test_unreadable_input_fails_before_invoking(gallery, engine, staging_base, images, tmp_path) -> None:
    orch = make(gallery, engine, staging_base)
    job = orch.encode([images[0], tmp_path / "missing.jpg"])

    assert isinstance(job.error, ResourceReadError)
    assert JobState.INVOKING not in job.history
    assert engine.commands == []
    assert not job.staging_dir.exists()
    assert orch.guard.busy is False


def test_reserve_failure_is_commit_error(engine, staging_base, images, tmp_path) -> None:
    blocker = tmp_path / "gallery-file"
    blocker.write_text("x")
    orch = make(GalleryStore(blocker), engine, staging_base)

    job = orch.encode(images)

    assert isinstance(job.error, CommitError)
    assert engine.commands == []
    assert orch.guard.busy is False


def test_progress_is_forwarded_without_changing_state(gallery, staging_base, images) -> None:
    events = [ProgressEvent(frame=i, fps=10.0, time_ms=i * 100) for i in range(1, 4)]
    engine = FakeEngine(progress=events)
    orch = make(gallery, engine, staging_base)

    job = orch.encode(images)

    assert job.succeeded
    assert orch.progress.drain(job.id) == [
        "Encoding: frame 1, fps=10.0, time=0.1s",
        "Encoding: frame 2, fps=10.0, time=0.2s",
        "Encoding: frame 3, fps=10.0, time=0.3s",
    ]


def test_decode_commits_every_frame(gallery, staging_base, video) -> None:
    engine = FakeEngine(frames=3)
    orch = make(gallery, engine, staging_base)
    statuses = []

    job = orch.decode(video, statuses.append)

    assert job.kind is JobKind.DECODE
    assert job.succeeded
    assert gallery.list_visible("Pictures/DecodedFrames") == [
        "FRAME_20260314_150926_frame00001.jpg",
        "FRAME_20260314_150926_frame00002.jpg",
        "FRAME_20260314_150926_frame00003.jpg",
    ]
    assert statuses[-1] == "Frames saved: 3 file(s)"
    assert engine.staged_snapshots[0] == ["frames", "source.mp4"]
    assert not job.staging_dir.exists()
    assert orch.guard.busy is False


class FlakyGallery(GalleryStore):
    """Fails the write of one chosen frame."""

    def __init__(self, root: Path, fail_on: str) -> None:
        super().__init__(root)
        self.fail_on = fail_on
        self.attempts = []

    def write(self, handle, stream) -> None:
        self.attempts.append(handle.record.logical_name)
        if handle.record.logical_name.endswith(self.fail_on):
            raise CommitError("store unavailable")
        super().write(handle, stream)


def test_decode_skips_failed_frame_and_keeps_others(staging_base, video, tmp_path) -> None:
    store = FlakyGallery(tmp_path / "gallery", fail_on="frame00003.jpg")
    engine = FakeEngine(frames=5)
    orch = make(store, engine, staging_base)
    statuses = []

    job = orch.decode(video, statuses.append)

    assert len(store.attempts) == 5
    assert job.succeeded
    assert len(job.committed) == 4
    assert job.skipped == ["frame00003.jpg"]
    assert statuses[-1] == "Frames saved: 4 file(s), 1 skipped"
    visible = store.list_visible("Pictures/DecodedFrames")
    assert len(visible) == 4
    assert "FRAME_20260314_150926_frame00003.jpg" not in visible
    # No pending leftovers from the failed frame
    assert sorted(p.name for p in (store.root / "Pictures" / "DecodedFrames").iterdir()) == visible


def test_decode_does_not_touch_guard(gallery, staging_base, video) -> None:
    orch = make(gallery, FakeEngine(frames=1), staging_base)
    assert orch.guard.try_acquire()
    job = orch.decode(video)
    assert job.succeeded
    assert orch.guard.busy is True


def test_concurrent_decodes_use_private_staging(gallery, staging_base, video) -> None:
    gate = threading.Event()
    engine = FakeEngine(frames=2, gate=gate)
    orch = make(gallery, engine, staging_base)
    jobs = []

    threads = [threading.Thread(target=lambda: jobs.append(orch.decode(video))) for _ in range(2)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert len(jobs) == 2
    assert jobs[0].staging_dir != jobs[1].staging_dir
    assert all(j.succeeded for j in jobs)
    # Same second, same frame names: the store numbers the duplicates
    assert len(gallery.list_visible("Pictures/DecodedFrames")) == 4
    assert list(staging_base.iterdir()) == []


def test_concurrent_jobs_keep_their_progress_apart(gallery, staging_base, images, video) -> None:
    gate = threading.Event()
    engine = FakeEngine(frames=1, progress=[ProgressEvent(frame=111, fps=5.0, time_ms=0)], gate=gate)
    orch = make(gallery, engine, staging_base)
    encode_job = orch.begin_encode(images)
    decode_jobs = [orch.begin_decode(video) for _ in range(2)]

    threads = [threading.Thread(target=orch.run_encode, args=(encode_job,))]
    threads += [threading.Thread(target=orch.run_decode, args=(job,)) for job in decode_jobs]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert encode_job.succeeded and all(j.succeeded for j in decode_jobs)
    assert orch.progress.drain(encode_job.id) == ["Encoding: frame 111, fps=5.0, time=0.0s"]
    for job in decode_jobs:
        assert orch.progress.drain(job.id) == ["Decoding: frame 111, fps=5.0, time=0.0s"]
    assert orch.progress.pending() == 0


def test_decode_engine_failure(gallery, staging_base, video) -> None:
    engine = FakeEngine(ExecutionResult.engine_failure("Invalid data found when processing input", 1))
    statuses = []
    job = make(gallery, engine, staging_base).decode(video, statuses.append)

    assert job.status is JobStatus.FAILED
    assert statuses[-1] == "Decode error: Invalid data found when processing input"
    assert not job.staging_dir.exists()


def test_job_ids_increase(gallery, engine, staging_base, images, video) -> None:
    orch = make(gallery, engine, staging_base)
    first = orch.encode(images)
    second = orch.begin_decode(video)
    assert second.id == first.id + 1
