"""Turn ffmpeg's stderr status lines into a per-file progress bar."""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from process_supervisor import STDERR
from toolchain import locate_ffprobe, progress_write

UNKNOWN_ETA = "--:--"

_STATUS_PATTERN = re.compile(
    r"(?:Duration:\s*([0-9:.]+))|(?:time=([0-9:.]+))|(?:fps=\s*([0-9.]+))"
)
_LINE_BREAK = re.compile(r"[\r\n]")


@dataclass(frozen=True)
class ProgressState:
    fps: Optional[str] = None
    time_string: Optional[str] = None
    seconds: Optional[float] = None
    progress: Optional[float] = None
    eta: Optional[str] = None
    new_duration: Optional[float] = None


def parse_time_string(text: str) -> Optional[float]:
    """Parse ``MM:SS(.ff)`` or ``HH:MM:SS(.ff)``; zero or malformed gives None."""
    parts = text.split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        values = [float(part) for part in parts]
    except ValueError:
        return None
    if len(values) == 2:
        total = values[0] * 60 + values[1]
    else:
        total = values[0] * 3600 + values[1] * 60 + values[2]
    return total if total > 0 else None


def format_time(seconds: float) -> str:
    """Format whole seconds as ``M:SS`` or ``H:MM:SS`` (fractions truncated)."""
    total = max(int(seconds), 0)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return "%d:%02d:%02d" % (hours, minutes, secs)
    return "%d:%02d" % (minutes, secs)


def parse_progress_line(line: str, current_duration: float = 0.0) -> ProgressState:
    """Extract duration, encoded time, fps, progress and ETA from one line."""
    duration_text = time_text = fps_text = None
    for match in _STATUS_PATTERN.finditer(line):
        duration_text = match.group(1) or duration_text
        time_text = match.group(2) or time_text
        fps_text = match.group(3) or fps_text

    new_duration = None
    if current_duration <= 0 and duration_text:
        new_duration = parse_time_string(duration_text)

    if time_text is None:
        return ProgressState(new_duration=new_duration)

    seconds = parse_time_string(time_text)
    if seconds is None:
        return ProgressState(fps=fps_text, time_string=time_text, new_duration=new_duration)

    duration = new_duration or current_duration
    if duration <= 0:
        return ProgressState(fps_text, time_text, seconds, None, UNKNOWN_ETA, new_duration)

    progress = min(max(seconds / duration, 0.0), 1.0)
    remaining = max(duration - seconds, 0.0)
    try:
        encoding = float(fps_text) > 0 if fps_text else False
    except ValueError:
        encoding = False

    if remaining <= 0:
        progress, eta = 1.0, format_time(0)
    elif encoding:
        eta = format_time(remaining)
    else:
        eta = UNKNOWN_ETA
    return ProgressState(fps_text, time_text, seconds, progress, eta, new_duration)


def read_media_duration(ffmpeg: str, input_path: Path) -> float:
    """Media duration in seconds from ffprobe, or 0.0 when it cannot be read."""
    ffprobe = locate_ffprobe(ffmpeg)
    if ffprobe is None:
        return 0.0
    cmd = [
        ffprobe,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        payload = json.loads(result.stdout)
        return max(float(payload.get("format", {}).get("duration") or 0.0), 0.0)
    except (OSError, subprocess.CalledProcessError, json.JSONDecodeError, TypeError, ValueError):
        # Progress falls back to elapsed media time without a total.
        return 0.0


class FFmpegProgressSink:
    """Output sink that feeds status lines to a tqdm bar and logs the rest.

    ffmpeg rewrites its ``-stats`` line with carriage returns, so both ``\\r``
    and ``\\n`` end a line here.
    """

    def __init__(self, duration: float = 0.0, desc: Optional[str] = None, bar=None) -> None:
        self.duration = max(duration, 0.0)
        self.desc = desc
        self.bar = bar
        self.state = ProgressState()
        self._pending = {}

    def __call__(self, channel: str, text: str) -> None:
        buffered = self._pending.get(channel, "") + text
        *lines, self._pending[channel] = _LINE_BREAK.split(buffered)
        for line in lines:
            self._handle(channel, line)

    def close(self) -> None:
        for channel, line in list(self._pending.items()):
            self._handle(channel, line)
        self._pending.clear()
        if self.bar is not None:
            self.bar.close()

    def _handle(self, channel: str, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if channel != STDERR:
            progress_write(line)
            return

        state = parse_progress_line(line, self.duration)
        if state.new_duration:
            self.duration = state.new_duration
            if self.bar is not None:
                self.bar.total = round(self.duration, 2)
                self.bar.refresh()
        if state.time_string is None:
            progress_write(line)
            return

        self.state = state
        if state.seconds is not None:
            self._advance(state)

    def _advance(self, state: ProgressState) -> None:
        bar = self._ensure_bar()
        position = state.seconds
        if self.duration > 0:
            position = min(position, self.duration)
        position = round(position, 2)
        # Status lines can repeat an older timestamp; the bar only moves forward.
        if position > bar.n:
            bar.update(position - bar.n)
        bar.set_postfix(fps=state.fps or "?", eta=state.eta or UNKNOWN_ETA, refresh=False)

    def _ensure_bar(self):
        if self.bar is None:
            self.bar = tqdm(
                total=round(self.duration, 2) if self.duration > 0 else None,
                desc=self.desc,
                unit="s",
                leave=False,
            )
        return self.bar
