"""Errors raised while staging, transcoding and committing jobs."""
from __future__ import annotations

from pathlib import Path
from typing import Union


class TranscodeError(RuntimeError):
    """Base error for the transcoding core."""


class GuardBusy(TranscodeError):
    """Another encode job already holds the execution guard."""

    def __init__(self, message: str = "An encode is already in progress") -> None:
        super().__init__(message)


class EmptyInput(TranscodeError):
    """Encode was triggered with no images selected."""

    def __init__(self, message: str = "Select images first") -> None:
        super().__init__(message)


class ResourceReadError(TranscodeError):
    """An input resource could not be opened or read."""

    def __init__(self, resource: Union[str, Path], reason: str = "") -> None:
        self.resource = resource
        msg = f"Cannot read {resource}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EngineFailure(TranscodeError):
    """ffmpeg ran and reported failure."""

    def __init__(self, diagnostic: str) -> None:
        self.diagnostic = diagnostic
        super().__init__(diagnostic)


class ProcessFault(TranscodeError):
    """Unexpected fault during orchestration (I/O error, engine could not start, ...)."""


class CommitError(TranscodeError):
    """The gallery store could not reserve, write or finalize an output."""
