"""Shared fixtures: a scriptable fake engine, a gallery in tmp_path and sample images."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from imgvid.core.engine import ExecutionResult
from imgvid.core.ffmpeg import EngineCommand, ProgressEvent
from imgvid.core.gallery import GalleryStore
from imgvid.core.orchestrator import TranscodeOrchestrator


class FakeEngine:
    """Stands in for ffmpeg.

    Encode commands get ``output_bytes`` written to their output path; decode
    commands get ``frames`` numbered jpg files in their output pattern.
    """

    def __init__(
        self,
        result: Optional[ExecutionResult] = None,
        *,
        frames: int = 0,
        output_bytes: bytes = b"\x00\x00\x00\x18ftypmp42",
        progress: Optional[List[ProgressEvent]] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.result = result or ExecutionResult.success()
        self.frames = frames
        self.output_bytes = output_bytes
        self.progress = progress or []
        self.gate = gate
        self.started = threading.Event()
        self.commands: List[EngineCommand] = []
        self.staged_snapshots: List[List[str]] = []
        self.on_execute: Optional[Callable[[EngineCommand], None]] = None

    def execute(self, command, on_progress=None):
        self.commands.append(command)
        tokens = command.tokens()
        input_arg = Path(tokens[tokens.index("-i") + 1])
        self.staged_snapshots.append(sorted(p.name for p in input_arg.parent.iterdir()))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.on_execute is not None:
            self.on_execute(command)
        for event in self.progress:
            if on_progress is not None:
                on_progress(event)
        if not self.result.ok:
            return self.result
        target = tokens[-1]
        if "frame%05d" in target:
            for i in range(1, self.frames + 1):
                Path(target.replace("%05d", f"{i:05d}")).write_bytes(b"\xff\xd8frame%d" % i)
        else:
            Path(target).write_bytes(self.output_bytes)
        return self.result


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def gallery(tmp_path: Path) -> GalleryStore:
    return GalleryStore(tmp_path / "gallery")


@pytest.fixture
def staging_base(tmp_path: Path) -> Path:
    path = tmp_path / "cache dir"
    path.mkdir()
    return path


@pytest.fixture
def orchestrator(gallery: GalleryStore, engine: FakeEngine, staging_base: Path) -> TranscodeOrchestrator:
    return TranscodeOrchestrator(gallery, engine, staging_base=staging_base)


@pytest.fixture
def images(tmp_path: Path) -> List[Path]:
    src = tmp_path / "picked images"
    src.mkdir()
    paths = []
    # Names deliberately sort differently from selection order
    for name, payload in (("c.jpg", b"C"), ("a.jpg", b"A"), ("b.jpg", b"B")):
        p = src / name
        p.write_bytes(payload)
        paths.append(p)
    return paths


@pytest.fixture
def video(tmp_path: Path) -> Path:
    p = tmp_path / "clip.MP4"
    p.write_bytes(b"fake video")
    return p
