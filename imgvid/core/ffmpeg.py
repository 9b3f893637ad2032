from __future__ import annotations

import os
import re
import shlex
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

DEFAULT_FRAME_RATE = 10
DEFAULT_VIDEO_CODEC = "mpeg4"
DEFAULT_PIXEL_FORMAT = "yuv420p"
DEFAULT_QUALITY = 5

ENCODE_PATTERN = "img%05d.{ext}"
DECODE_PATTERN = "frame%05d.jpg"

_NEEDS_QUOTES = re.compile(r"[\s\"'\\]")


@dataclass(frozen=True)
class ProgressEvent:
    """One ffmpeg statistics tick."""

    frame: int
    fps: float
    time_ms: int


def _normalize_exe(path: str | None, name: str) -> Optional[str]:
    if not path:
        return None
    p = Path(path)
    if p.is_dir():
        cand = p / name
        return str(cand) if cand.exists() else None
    return str(p) if p.exists() else None


def which_ffmpeg(explicit: str | None = None) -> str:
    exe_name = "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"
    # 1) Explicit setting, then environment override
    for candidate in (explicit, os.environ.get("FFMPEG_PATH")):
        cand = _normalize_exe(candidate, exe_name)
        if cand:
            return cand
    # 2) PATH
    exe = shutil.which("ffmpeg")
    if exe:
        return exe
    # 3) Common relative locations (next to executable or project)
    here = Path(sys.executable).parent
    for rel in [
        "ffmpeg", "ffmpeg/bin", "bin", "tools/ffmpeg", "vendor/ffmpeg/bin",
    ]:
        p = _normalize_exe(str(here / rel), exe_name)
        if p:
            return p
    raise FileNotFoundError("ffmpeg not found. Set FFMPEG_PATH env or install FFmpeg.")


def quote_arg(arg: str) -> str:
    """Quote ``arg`` for a shell-style command line when it needs it.

    Arguments with whitespace (or quotes/backslashes, or empty ones) are
    wrapped in double quotes; everything else is left untouched.
    """
    if arg and not _NEEDS_QUOTES.search(arg):
        return arg
    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class EngineCommand:
    """Immutable ffmpeg argument list for a single job."""

    args: Tuple[str, ...]

    @classmethod
    def of(cls, args: Iterable[Union[str, Path, int]]) -> "EngineCommand":
        return cls(tuple(str(a) for a in args))

    def render(self) -> str:
        return " ".join(quote_arg(a) for a in self.args)

    def tokens(self) -> List[str]:
        """Re-tokenize the rendered command line the way the engine parses it."""
        return shlex.split(self.render())

    def __str__(self) -> str:
        return self.render()


def encode_pattern(staging_dir: Path, ext: str) -> str:
    return str(Path(staging_dir) / ENCODE_PATTERN.format(ext=ext))


def decode_pattern(staging_dir: Path) -> str:
    return str(Path(staging_dir) / DECODE_PATTERN)


def build_encode_command(
    staging_pattern: Union[str, Path],
    frame_rate: int = DEFAULT_FRAME_RATE,
    output_path: Union[str, Path] = "",
    *,
    video_codec: str = DEFAULT_VIDEO_CODEC,
    pixel_format: str = DEFAULT_PIXEL_FORMAT,
    quality: int = DEFAULT_QUALITY,
) -> EngineCommand:
    """Build the ffmpeg command turning a staged ``img%05d`` sequence into a video."""
    if not output_path:
        raise ValueError("output_path is required")
    if frame_rate <= 0:
        raise ValueError(f"frame_rate must be positive, got {frame_rate}")

    return EngineCommand.of([
        "-y",
        "-framerate",
        int(frame_rate),
        "-start_number",
        1,
        "-i",
        staging_pattern,
        "-c:v",
        video_codec,
        "-pix_fmt",
        pixel_format,
        "-qscale:v",
        int(quality),
        output_path,
    ])


def build_decode_command(input_path: Union[str, Path], output_pattern: Union[str, Path]) -> EngineCommand:
    """Build the ffmpeg command extracting every frame of ``input_path``."""
    # -vsync 0 passes timestamps through: no frame is dropped or duplicated
    return EngineCommand.of(["-y", "-i", input_path, "-vsync", "0", output_pattern])


def parse_ffmpeg_time_to_seconds(value: str) -> Optional[float]:
    """Parse ffmpeg time string HH:MM:SS.ms to seconds float."""
    try:
        hh, mm, ss = value.split(":")
        sign = -1 if hh.startswith("-") else 1
        return sign * (abs(int(hh)) * 3600 + int(mm) * 60 + float(ss))
    except ValueError:
        return None


_FRAME_RE = re.compile(r"frame=\s*(\d+)")
_FPS_RE = re.compile(r"fps=\s*([\d.]+)")
_TIME_RE = re.compile(r"time=\s*(\S+)")


def parse_progress_line(line: str) -> Optional[ProgressEvent]:
    """Parse an ffmpeg stderr statistics line (``frame= 12 fps=30 ... time=00:00:01.20``)."""
    frame_m = _FRAME_RE.search(line)
    if not frame_m:
        return None
    fps_m = _FPS_RE.search(line)
    time_m = _TIME_RE.search(line)
    fps = 0.0
    if fps_m:
        try:
            fps = float(fps_m.group(1))
        except ValueError:
            fps = 0.0
    seconds = parse_ffmpeg_time_to_seconds(time_m.group(1)) if time_m else None
    return ProgressEvent(
        frame=int(frame_m.group(1)),
        fps=fps,
        time_ms=int(round(max(seconds or 0.0, 0.0) * 1000)),
    )
