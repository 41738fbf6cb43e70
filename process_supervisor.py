"""Run ffmpeg and forward its output without blocking on either pipe."""

from __future__ import annotations

import codecs
import os
import select
import subprocess
import sys
from enum import Enum
from typing import Callable, Optional, Sequence

from restore_errors import InternalError

STDOUT = "stdout"
STDERR = "stderr"

OutputSink = Callable[[str, str], None]


class SupervisorState(str, Enum):
    IDLE = "idle"
    SPAWNED = "spawned"
    DRAINING = "draining"
    REAPED = "reaped"


def stderr_sink(channel: str, text: str) -> None:
    """Default sink: echo every chunk to our own stderr."""
    sys.stderr.write(text)
    sys.stderr.flush()


def _close_pipes(process: subprocess.Popen) -> None:
    for pipe in (process.stdout, process.stderr):
        if pipe is not None:
            pipe.close()


class ProcessSupervisor:
    """Spawn one child process and drain its stdout/stderr until it exits.

    The child is never killed by the supervisor; cancellation only takes
    effect between jobs.
    """

    def __init__(
        self,
        sink: Optional[OutputSink] = None,
        poll_interval: float = 0.1,
        read_size: int = 4096,
    ) -> None:
        self.sink = sink if sink is not None else stderr_sink
        self.poll_interval = poll_interval
        self.read_size = read_size
        self.state = SupervisorState.IDLE
        self.returncode: Optional[int] = None

    def run(self, cmd: Sequence[str]) -> int:
        """Run ``cmd`` to completion and return its exit code."""
        if self.state is not SupervisorState.IDLE:
            raise InternalError("ProcessSupervisor instances run a single command")

        try:
            process = subprocess.Popen(
                list(cmd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            self.state = SupervisorState.REAPED
            raise InternalError(f"Failed to start {cmd[0] if cmd else 'process'}: {exc}") from exc

        self.state = SupervisorState.SPAWNED
        with process:
            streams = {
                process.stdout.fileno(): STDOUT,
                process.stderr.fileno(): STDERR,
            }
            decoders = {
                fd: codecs.getincrementaldecoder("utf-8")(errors="replace") for fd in streams
            }
            try:
                self.state = SupervisorState.DRAINING
                self._drain(process, streams, decoders)
                self._drain_remaining(streams, decoders)
                for fd, channel in streams.items():
                    tail = decoders[fd].decode(b"", final=True)
                    if tail:
                        self.sink(channel, tail)
            except OSError as exc:
                _close_pipes(process)
                raise InternalError(f"Failed reading process output: {exc}") from exc
            except BaseException:
                # Nobody reads the pipes any more; a full pipe would block wait().
                _close_pipes(process)
                raise
            finally:
                self.returncode = process.wait()
                self.state = SupervisorState.REAPED
        return self.returncode

    def _forward(self, fd: int, chunk: bytes, streams, decoders) -> None:
        text = decoders[fd].decode(chunk)
        if text:
            self.sink(streams[fd], text)

    def _drain(self, process: subprocess.Popen, streams, decoders) -> None:
        open_fds = list(streams)
        while open_fds:
            ready, _, _ = select.select(open_fds, [], [], self.poll_interval)
            if not ready:
                # A grandchild may hold the pipes open after ffmpeg exits.
                if process.poll() is not None:
                    return
                continue
            for fd in ready:
                chunk = os.read(fd, self.read_size)
                if not chunk:
                    open_fds.remove(fd)
                    continue
                self._forward(fd, chunk, streams, decoders)

    def _drain_remaining(self, streams, decoders) -> None:
        for fd in streams:
            os.set_blocking(fd, False)
            while True:
                try:
                    chunk = os.read(fd, self.read_size)
                except BlockingIOError:
                    break
                if not chunk:
                    break
                self._forward(fd, chunk, streams, decoders)
