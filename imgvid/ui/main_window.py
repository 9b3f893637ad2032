from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List

from PySide6 import QtCore, QtGui, QtWidgets

from imgvid.core.config import AppSettings, SettingsStore
from imgvid.core.engine import FFmpegEngine
from imgvid.core.errors import EmptyInput, GuardBusy
from imgvid.core.gallery import GalleryStore
from imgvid.core.orchestrator import TranscodeOrchestrator
from imgvid.core.progress import ProgressReporter
from imgvid.core.workers import TranscodeManager
from imgvid.ui.notifier import RateLimitedNotifier

logger = logging.getLogger(__name__)

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".webp", ".tif", ".tiff"}
IMAGE_FILTER = "Images (" + " ".join(f"*{e}" for e in sorted(IMAGE_EXTS)) + ")"
VIDEO_FILTER = "Videos (*.mp4 *.mkv *.mov *.avi *.webm)"

PROGRESS_POLL_MS = 100


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, store: SettingsStore | None = None) -> None:
        super().__init__()
        self.setWindowTitle("Images ⇄ Video")
        self.setAcceptDrops(True)

        # Settings
        self.store = store or SettingsStore()
        self.settings = self.store.load()

        # Core
        self.progress = ProgressReporter()
        self.orchestrator = self._build_orchestrator(self.settings)
        self.manager = TranscodeManager(self.orchestrator)
        self.manager.job_status.connect(self._on_job_status)
        self.manager.job_finished.connect(self._on_job_finished)

        # UI
        central = QtWidgets.QWidget(self)
        self.setCentralWidget(central)
        self.vbox = QtWidgets.QVBoxLayout(central)

        self._build_actions()
        self._build_image_list()
        self._build_settings_box()
        self._build_log()
        self._build_status_bar()

        self.notifier = RateLimitedNotifier(
            lambda msg: self.status.showMessage(msg, 3000), self.settings.notify_interval_ms
        )

        # Progress ticks are drained on this thread; workers never wait on the UI
        self.progress_timer = QtCore.QTimer(self)
        self.progress_timer.setInterval(PROGRESS_POLL_MS)
        self.progress_timer.timeout.connect(self._poll_progress)
        self.progress_timer.start()

        self._apply_settings_to_ui()
        self._update_status("Ready")

    def _build_orchestrator(self, s: AppSettings) -> TranscodeOrchestrator:
        return TranscodeOrchestrator(
            GalleryStore(s.resolved_gallery_dir()),
            FFmpegEngine(s.ffmpeg_path or None, timeout=s.engine_timeout or None),
            progress=self.progress,
            staging_base=s.cache_dir or None,
            frame_rate=s.frame_rate,
            video_codec=s.video_codec,
            pixel_format=s.pixel_format,
            quality=s.quality,
        )

    def _build_actions(self) -> None:
        hl = QtWidgets.QHBoxLayout()
        self.btn_select = QtWidgets.QPushButton("Select Images…")
        self.btn_create = QtWidgets.QPushButton("Create Video")
        self.btn_decode = QtWidgets.QPushButton("Decode Video…")
        self.btn_clear = QtWidgets.QPushButton("Clear")
        self.btn_create.setEnabled(False)

        self.btn_select.clicked.connect(self._select_images)
        self.btn_create.clicked.connect(self._create_video)
        self.btn_decode.clicked.connect(self._decode_video)
        self.btn_clear.clicked.connect(self._clear_images)

        hl.addWidget(self.btn_select)
        hl.addWidget(self.btn_create)
        hl.addWidget(self.btn_decode)
        hl.addStretch(1)
        hl.addWidget(self.btn_clear)
        self.vbox.addLayout(hl)

        self.status_label = QtWidgets.QLabel()
        self.status_label.setWordWrap(True)
        self.status_label.setTextInteractionFlags(QtCore.Qt.TextSelectableByMouse)
        self.vbox.addWidget(self.status_label)

    def _build_image_list(self) -> None:
        box = QtWidgets.QGroupBox("Frames (drag to reorder)")
        lay = QtWidgets.QVBoxLayout(box)
        self.image_list = QtWidgets.QListWidget()
        self.image_list.setDragDropMode(QtWidgets.QAbstractItemView.InternalMove)
        self.image_list.setSelectionMode(QtWidgets.QAbstractItemView.ExtendedSelection)
        lay.addWidget(self.image_list)
        self.vbox.addWidget(box, 1)

    def _build_settings_box(self) -> None:
        box = QtWidgets.QGroupBox("Settings")
        grid = QtWidgets.QGridLayout(box)

        self.fps_spin = QtWidgets.QSpinBox()
        self.fps_spin.setRange(1, 120)
        self.quality_spin = QtWidgets.QSpinBox()
        self.quality_spin.setRange(1, 31)
        self.gallery_edit = QtWidgets.QLineEdit()
        btn_gallery = QtWidgets.QPushButton("Browse…")
        btn_gallery.clicked.connect(self._choose_gallery_dir)
        self.locate_btn = QtWidgets.QPushButton("Locate FFmpeg…")
        self.locate_btn.clicked.connect(self._locate_ffmpeg)

        r = 0
        grid.addWidget(QtWidgets.QLabel("Frame rate"), r, 0)
        grid.addWidget(self.fps_spin, r, 1)
        grid.addWidget(QtWidgets.QLabel("Quality (1 best – 31 worst)"), r, 2)
        grid.addWidget(self.quality_spin, r, 3)
        r += 1
        grid.addWidget(QtWidgets.QLabel("Gallery folder"), r, 0)
        grid.addWidget(self.gallery_edit, r, 1, 1, 2)
        grid.addWidget(btn_gallery, r, 3)
        r += 1
        grid.addWidget(self.locate_btn, r, 3)

        self.fps_spin.valueChanged.connect(self._on_settings_changed)
        self.quality_spin.valueChanged.connect(self._on_settings_changed)
        self.gallery_edit.editingFinished.connect(self._on_settings_changed)

        self.vbox.addWidget(box)

    def _build_log(self) -> None:
        self.log = QtWidgets.QPlainTextEdit()
        self.log.setReadOnly(True)
        self.log.setMaximumBlockCount(10000)
        self.vbox.addWidget(self.log)

    def _build_status_bar(self) -> None:
        self.status = QtWidgets.QStatusBar()
        self.setStatusBar(self.status)

    def _apply_settings_to_ui(self) -> None:
        s = self.settings
        # Block signals so loading does not rebuild the orchestrator mid-way
        for w in (self.fps_spin, self.quality_spin):
            w.blockSignals(True)
        self.fps_spin.setValue(s.frame_rate)
        self.quality_spin.setValue(s.quality)
        for w in (self.fps_spin, self.quality_spin):
            w.blockSignals(False)
        self.gallery_edit.setText(s.resolved_gallery_dir())
        if s.ffmpeg_path:
            os.environ["FFMPEG_PATH"] = s.ffmpeg_path

    def _collect_settings(self) -> AppSettings:
        s = self.settings
        s.frame_rate = int(self.fps_spin.value())
        s.quality = int(self.quality_spin.value())
        s.gallery_dir = self.gallery_edit.text().strip()
        return s

    def _on_settings_changed(self) -> None:
        if self.manager.active:
            # Re-applied from _on_job_finished once nothing is running
            return
        self.settings = self._collect_settings()
        o = self.orchestrator
        o.frame_rate = self.settings.frame_rate
        o.quality = self.settings.quality
        o.store = GalleryStore(self.settings.resolved_gallery_dir())

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # noqa: N802
        self.settings = self._collect_settings()
        self.store.save(self.settings)
        super().closeEvent(event)

    # Drag & Drop
    def dragEnterEvent(self, event: QtGui.QDragEnterEvent) -> None:  # noqa: N802
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            super().dragEnterEvent(event)

    def dropEvent(self, event: QtGui.QDropEvent) -> None:  # noqa: N802
        paths = [Path(url.toLocalFile()) for url in event.mimeData().urls()]
        images = [p for p in paths if p.is_file() and p.suffix.lower() in IMAGE_EXTS]
        if images:
            self._add_images(images)

    # Actions
    def _select_images(self) -> None:
        files, _ = QtWidgets.QFileDialog.getOpenFileNames(
            self, "Select Images", self.settings.last_image_dir, IMAGE_FILTER
        )
        if not files:
            self._update_status("No images selected")
            return
        self.image_list.clear()
        self.settings.last_image_dir = str(Path(files[0]).parent)
        self._add_images([Path(f) for f in files])

    def _add_images(self, images: List[Path]) -> None:
        for p in images:
            item = QtWidgets.QListWidgetItem(p.name)
            item.setData(QtCore.Qt.UserRole, str(p))
            item.setToolTip(str(p))
            self.image_list.addItem(item)
        count = self.image_list.count()
        self._update_status(f"Selected {count} image(s)")
        self.btn_create.setEnabled(count > 0)

    def _clear_images(self) -> None:
        self.image_list.clear()
        self.btn_create.setEnabled(False)
        self._update_status("Ready")

    def _selected_paths(self) -> List[Path]:
        return [
            Path(self.image_list.item(i).data(QtCore.Qt.UserRole))
            for i in range(self.image_list.count())
        ]

    def _create_video(self) -> None:
        try:
            job = self.manager.start_encode(self._selected_paths())
        except GuardBusy:
            self.notifier.notify("Already encoding")
            return
        except EmptyInput:
            self.notifier.notify("Select images first")
            return
        self._append_log(job.id, f"Encoding {len(job.inputs)} image(s) into {job.output_name}")

    def _decode_video(self) -> None:
        path, _ = QtWidgets.QFileDialog.getOpenFileName(
            self, "Select Video", self.settings.last_video_dir, VIDEO_FILTER
        )
        if not path:
            return
        self.settings.last_video_dir = str(Path(path).parent)
        job = self.manager.start_decode(path)
        self._append_log(job.id, f"Decoding {path}")

    def _choose_gallery_dir(self) -> None:
        d = QtWidgets.QFileDialog.getExistingDirectory(self, "Select Gallery Folder", self.gallery_edit.text())
        if d:
            self.gallery_edit.setText(d)
            self._on_settings_changed()

    def _locate_ffmpeg(self) -> None:
        if sys.platform == "win32":
            filt = "FFmpeg (ffmpeg.exe) (*.exe)"
        else:
            filt = "FFmpeg (ffmpeg)"
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Locate ffmpeg executable", "", filt)
        if not path:
            return
        os.environ["FFMPEG_PATH"] = path
        self.settings.ffmpeg_path = path
        self.store.save(self._collect_settings())
        self.orchestrator.engine = FFmpegEngine(path, timeout=self.settings.engine_timeout or None)
        self.status.showMessage(f"Using ffmpeg at {path}", 5000)

    # Manager slots
    def _poll_progress(self) -> None:
        latest = self.progress.latest()
        if len(latest) == 1:
            self._update_status(latest[0][1])
        elif latest:
            self._update_status("\n".join(f"[{job_id}] {text}" for job_id, text in latest))

    def _on_job_status(self, job_id: int, text: str) -> None:
        self._update_status(text)
        self._append_log(job_id, text)

    def _on_job_finished(self, job_id: int, ok: bool, message: str) -> None:
        # This job's late ticks must not overwrite its final status
        self.progress.discard(job_id)
        self._update_status(message)
        self._on_settings_changed()
        if ok:
            self.notifier.notify("Done")
        else:
            self.notifier.notify("Job failed")

    def _update_status(self, text: str) -> None:
        self.status_label.setText(f"Status:\n{text}")

    def _append_log(self, job_id: int, line: str) -> None:
        self.log.appendPlainText(f"[{job_id}] {line}")
        logger.debug("[%d] %s", job_id, line)
