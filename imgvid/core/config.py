from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional, Union
from PySide6 import QtCore

logger = logging.getLogger(__name__)


def default_gallery_dir() -> str:
    return str(Path.home() / "ImageVideoGallery")


@dataclass
class AppSettings:
    """Serializable application settings."""

    frame_rate: int = 10
    video_codec: str = "mpeg4"
    pixel_format: str = "yuv420p"
    quality: int = 5  # -qscale:v, 1 (best) .. 31 (worst)
    gallery_dir: str = ""  # empty means ~/ImageVideoGallery
    cache_dir: str = ""  # empty means the system temp dir
    ffmpeg_path: str = ""  # optional explicit path to ffmpeg executable
    engine_timeout: int = 0  # seconds, 0 means wait for ffmpeg indefinitely
    last_image_dir: str = ""
    last_video_dir: str = ""
    notify_interval_ms: int = 2000
    log_level: str = "INFO"

    def resolved_gallery_dir(self) -> str:
        return self.gallery_dir or default_gallery_dir()


def app_data_dir(app_name: str = "ImageVideo") -> Path:
    base = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppLocalDataLocation)
    return Path(base) / app_name


class SettingsStore:
    """Stores settings in the platform's app data location as JSON."""

    def __init__(self, app_name: str = "ImageVideo", base_dir: Optional[Union[str, Path]] = None) -> None:
        self._dir = Path(base_dir) if base_dir else app_data_dir(app_name)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._file = self._dir / "settings.json"

    @property
    def path(self) -> Path:
        return self._file

    def load(self) -> AppSettings:
        if self._file.exists():
            try:
                data = json.loads(self._file.read_text(encoding="utf-8"))
                known = {f.name for f in fields(AppSettings)}
                return AppSettings(**{k: v for k, v in data.items() if k in known})
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.warning("Ignoring unreadable settings file %s: %s", self._file, e)
        return AppSettings()

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        self._file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
