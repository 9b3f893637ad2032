"""Directory-backed gallery with two-phase (pending, then finalized) commits.

A reservation is a hidden ``.pending-<name>`` file next to where the output
will live. Writing goes into that file; ``finalize`` renames it to the
visible name in one ``os.replace``. Readers only ever list visible names.
"""
from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from .errors import CommitError

logger = logging.getLogger(__name__)

PENDING_PREFIX = ".pending-"

VIDEO_MIME = "video/mp4"
IMAGE_MIME = "image/jpeg"
VIDEO_PATH_HINT = "Movies"
FRAMES_PATH_HINT = "Pictures/DecodedFrames"


@dataclass(frozen=True)
class CommitRecord:
    logical_name: str
    mime_type: str
    relative_path: Optional[str]
    pending: bool = True


@dataclass
class PendingHandle:
    record: CommitRecord
    pending_path: Path
    final_path: Path
    written: bool = False

    @property
    def uri(self) -> str:
        return self.final_path.resolve().as_uri()


class GalleryStore:
    """Persistent output store rooted at ``root``."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)
        # Serializes name picking across concurrent decode/encode jobs
        self._names_lock = threading.Lock()

    def _folder(self, path_hint: Optional[str]) -> Path:
        if not path_hint:
            return self.root
        hint = Path(path_hint)
        if hint.is_absolute() or ".." in hint.parts:
            raise CommitError(f"Invalid storage path hint: {path_hint}")
        return self.root / hint

    @staticmethod
    def _unique_name(folder: Path, name: str) -> str:
        """Return ``name`` or ``name (n)`` that is neither visible nor reserved."""
        def taken(candidate: str) -> bool:
            return (folder / candidate).exists() or (folder / (PENDING_PREFIX + candidate)).exists()

        if not taken(name):
            return name
        stem, suffix = os.path.splitext(name)
        for i in range(1, 1000):
            candidate = f"{stem} ({i}){suffix}"
            if not taken(candidate):
                return candidate
        raise CommitError(f"No free name for {name} in {folder}")

    def reserve(self, logical_name: str, mime_type: str, path_hint: Optional[str] = None) -> PendingHandle:
        folder = self._folder(path_hint)
        try:
            folder.mkdir(parents=True, exist_ok=True)
            with self._names_lock:
                name = self._unique_name(folder, logical_name)
                pending_path = folder / (PENDING_PREFIX + name)
                pending_path.touch(exist_ok=False)
        except OSError as e:
            raise CommitError(f"Cannot reserve {logical_name} in {folder}: {e}") from e
        record = CommitRecord(logical_name=name, mime_type=mime_type, relative_path=path_hint)
        logger.debug("Reserved %s (%s)", pending_path, mime_type)
        return PendingHandle(record=record, pending_path=pending_path, final_path=folder / name)

    def write(self, handle: PendingHandle, stream: BinaryIO) -> None:
        if not handle.record.pending:
            raise CommitError(f"{handle.record.logical_name} is already finalized")
        try:
            with open(handle.pending_path, "wb") as out:
                shutil.copyfileobj(stream, out)
                out.flush()
                os.fsync(out.fileno())
        except OSError as e:
            raise CommitError(f"Cannot write {handle.record.logical_name}: {e}") from e
        handle.written = True

    def finalize(self, handle: PendingHandle) -> str:
        """Make the output visible. Returns its URI."""
        if not handle.record.pending:
            return handle.uri
        if not handle.written:
            raise CommitError(f"{handle.record.logical_name} was never written")
        try:
            os.replace(handle.pending_path, handle.final_path)
        except OSError as e:
            raise CommitError(f"Cannot finalize {handle.record.logical_name}: {e}") from e
        handle.record = replace(handle.record, pending=False)
        logger.info("Committed %s", handle.final_path)
        return handle.uri

    def discard(self, handle: PendingHandle) -> None:
        """Drop a reservation that will never be finalized."""
        if not handle.record.pending:
            return
        try:
            handle.pending_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not discard pending %s: %s", handle.pending_path, e)

    def list_visible(self, path_hint: Optional[str] = None) -> List[str]:
        folder = self._folder(path_hint)
        if not folder.is_dir():
            return []
        return sorted(
            p.name for p in folder.iterdir()
            if p.is_file() and not p.name.startswith(PENDING_PREFIX)
        )

    def is_visible(self, name: str, path_hint: Optional[str] = None) -> bool:
        return name in self.list_visible(path_hint)
