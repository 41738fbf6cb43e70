"""Toolchain: ffmpeg binary resolution, config location, and progress output."""

from __future__ import annotations

import os
import platform
import shutil
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from restore_errors import ExternalToolNotFound

FFMPEG_ENV_VARS = ("RESTORE_BEAST_FFMPEG", "FFMPEG_PATH")
FFMPEG_CANDIDATES = (
    "/opt/homebrew/bin/ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/usr/bin/ffmpeg",
)


def get_default_config_dir() -> Path:
    """Return the per-user config directory, honouring XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        home = os.environ.get("HOME")
        base = Path(home) / ".config" if home else Path("/tmp")
    return base / "restore-beast"


def progress_write(message: str) -> None:
    """Write a status line without corrupting an active progress bar."""
    tqdm.write(message)


def get_ffmpeg_binary_name() -> str:
    """Return the expected ffmpeg binary name for the current OS."""
    if platform.system().lower() == "windows":
        return "ffmpeg.exe"
    return "ffmpeg"


def _is_executable(candidate: Path) -> bool:
    if not candidate.is_file():
        return False
    if platform.system().lower() == "windows":
        return True
    return os.access(candidate, os.X_OK)


def locate_ffmpeg(custom_path: Optional[str] = None) -> str:
    """Resolve ffmpeg from an explicit path, the environment, known prefixes, or PATH."""
    if custom_path:
        candidate = Path(custom_path).expanduser().resolve()
        if not _is_executable(candidate):
            raise ExternalToolNotFound(f"FFmpeg executable not found at: {candidate}")
        return str(candidate)

    for env_var in FFMPEG_ENV_VARS:
        value = os.environ.get(env_var)
        if value and _is_executable(Path(value)):
            return value

    for prefix in FFMPEG_CANDIDATES:
        if _is_executable(Path(prefix)):
            return prefix

    system_binary = shutil.which(get_ffmpeg_binary_name())
    if system_binary:
        return system_binary

    raise ExternalToolNotFound(
        "FFmpeg executable not found. Install it with your system package manager "
        "or set RESTORE_BEAST_FFMPEG to point to the ffmpeg binary."
    )


def locate_ffprobe(ffmpeg: str) -> Optional[str]:
    """Find ffprobe next to ``ffmpeg``, then on PATH; None when absent."""
    name = "ffprobe.exe" if platform.system().lower() == "windows" else "ffprobe"
    sibling = Path(ffmpeg).expanduser().with_name(name)
    if sibling.parent != Path(".") and _is_executable(sibling):
        return str(sibling)
    return shutil.which(name)
