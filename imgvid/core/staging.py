from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from .errors import ResourceReadError

logger = logging.getLogger(__name__)

ENCODE_INPUT_TEMPLATE = "img{index:05d}.{ext}"
DEFAULT_STAGED_EXT = "jpg"

_EXT_ALIASES = {"jpeg": "jpg", "tif": "tiff"}


def create_staging_dir(prefix: str, base_dir: Optional[Union[str, Path]] = None) -> Path:
    """Create a fresh, job-private directory for intermediate files."""
    if base_dir:
        Path(base_dir).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None))
    logger.debug("Created staging dir %s", path)
    return path


def staged_extension(resources: Sequence[Path]) -> str:
    """Return the single extension used to name a staged image sequence.

    ffmpeg addresses the sequence through one pattern, so every frame gets
    the same suffix: the one shared by all inputs, else ``jpg``.
    """
    exts = {Path(r).suffix.lower().lstrip(".") for r in resources}
    if len(exts) != 1:
        return DEFAULT_STAGED_EXT
    ext = exts.pop()
    if not ext:
        return DEFAULT_STAGED_EXT
    return _EXT_ALIASES.get(ext, ext)


def _copy_resource(resource: Path, target: Path) -> None:
    # Read errors name the input; write errors propagate as plain OSError
    try:
        with open(resource, "rb") as src:
            data = src.read()
    except OSError as e:
        raise ResourceReadError(resource, e.strerror or str(e)) from e
    target.write_bytes(data)


def materialize(
    staging_dir: Path, resources: Sequence[Path], ext: Optional[str] = None
) -> List[Path]:
    """Copy ``resources`` into ``staging_dir`` as ``img00001.<ext>``, ``img00002.<ext>``, ...

    Numbering follows the order of ``resources`` exactly; it becomes the
    frame order of the encoded video. On a read failure the files staged so
    far are left in place for ``cleanup``.
    """
    ext = ext or staged_extension(resources)
    staged: List[Path] = []
    for idx, resource in enumerate(resources, start=1):
        target = Path(staging_dir) / ENCODE_INPUT_TEMPLATE.format(index=idx, ext=ext)
        _copy_resource(Path(resource), target)
        staged.append(target)
    logger.debug("Staged %d input(s) into %s", len(staged), staging_dir)
    return staged


def stage_single(staging_dir: Path, resource: Path, name: str) -> Path:
    """Copy one resource into ``staging_dir`` under ``name``."""
    target = Path(staging_dir) / name
    _copy_resource(Path(resource), target)
    return target


def cleanup(staging_dir: Optional[Path]) -> None:
    """Recursively remove ``staging_dir``. Missing directories are a no-op."""
    if staging_dir is None:
        return
    path = Path(staging_dir)
    if not path.exists():
        return
    shutil.rmtree(path, ignore_errors=True)
    if path.exists():
        logger.warning("Could not fully remove staging dir %s", path)
    else:
        logger.debug("Removed staging dir %s", path)


@contextmanager
def staging_area(prefix: str, base_dir: Optional[Union[str, Path]] = None) -> Iterator[Path]:
    """Yield a new staging directory and remove it when the block exits."""
    path = create_staging_dir(prefix, base_dir)
    try:
        yield path
    finally:
        cleanup(path)
