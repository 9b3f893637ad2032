import json
from pathlib import Path

from imgvid.core.config import AppSettings, SettingsStore


def test_settings_round_trip(tmp_path: Path) -> None:
    store = SettingsStore(base_dir=tmp_path)
    settings = AppSettings(frame_rate=24, quality=3, gallery_dir=str(tmp_path / "g"), engine_timeout=600)
    store.save(settings)

    assert SettingsStore(base_dir=tmp_path).load() == settings


def test_default_encode_parameters(tmp_path: Path) -> None:
    s = SettingsStore(base_dir=tmp_path).load()
    assert (s.frame_rate, s.video_codec, s.pixel_format, s.quality) == (10, "mpeg4", "yuv420p", 5)
    assert s.engine_timeout == 0
    assert s.notify_interval_ms == 2000
    assert s.resolved_gallery_dir().endswith("ImageVideoGallery")


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    store = SettingsStore(base_dir=tmp_path)
    store.path.write_text(json.dumps({"frame_rate": 5, "removed_option": True}), encoding="utf-8")
    assert store.load().frame_rate == 5


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    store = SettingsStore(base_dir=tmp_path)
    store.path.write_text("{not json", encoding="utf-8")
    assert store.load() == AppSettings()
