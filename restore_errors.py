"""Error kinds raised by the restoration pipeline."""

from __future__ import annotations

from typing import Optional, Sequence


class RestoreError(Exception):
    """Base class for all pipeline errors."""


class InvalidOptions(RestoreError, ValueError):
    """Required settings or input path missing."""


class ExternalToolNotFound(RestoreError, FileNotFoundError):
    """The ffmpeg executable could not be located."""


class InputIOError(RestoreError, OSError):
    """The input path does not exist or cannot be read."""


class Cancelled(RestoreError):
    """Cancellation was observed at a job checkpoint."""


class ProcessFailed(RestoreError, RuntimeError):
    """ffmpeg ran but returned a nonzero exit code."""

    def __init__(self, exit_code: int, command: Optional[Sequence[str]] = None) -> None:
        super().__init__(f"FFmpeg returned code {exit_code}")
        self.exit_code = exit_code
        self.command = list(command) if command is not None else None


class InternalError(RestoreError, RuntimeError):
    """Pipe or spawn level failure."""
