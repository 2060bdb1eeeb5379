"""Data sources producing raw text blobs for the sampler.

All variants share one contract: ``produce()`` blocks until a blob of text is
available and returns it, raises a ``SourceError`` for a failed cycle, or
raises ``EndOfStream`` once the source is exhausted. ``close()`` may be called
from another thread to cancel a blocked ``produce()``.
"""

import io
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Protocol, TextIO

from pvfilt.config import Config, Mode
from pvfilt.utils import format_command, format_time

__all__ = [
    "CommandFailed",
    "CommandSource",
    "DataSource",
    "EndOfStream",
    "LineStreamSource",
    "RawBlob",
    "SourceError",
    "SourceTimeout",
    "SpawnFailed",
    "StdinSource",
    "open_source",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawBlob:
    """Text captured from one source cycle."""

    text: str
    timestamp: float
    returncode: int | None = None


class EndOfStream(Exception):
    """The source is exhausted. Not a failure."""


class SourceError(Exception):
    """A source cycle failed. Subclasses carry a distinct exit code."""

    exit_code = 1


class SourceTimeout(SourceError):
    exit_code = 4

    def __init__(self, timeout: float):
        super().__init__(f"timed out after {format_time(timeout)}")
        self.timeout = timeout


class CommandFailed(SourceError):
    exit_code = 5

    def __init__(self, returncode: int, blob: RawBlob | None = None):
        super().__init__(f"exited with status {returncode}")
        self.returncode = returncode
        self.blob = blob


class SpawnFailed(SourceError):
    exit_code = 3

    def __init__(self, command: str, cause: OSError):
        super().__init__(f"failed to run {command}: {cause.strerror or cause}")
        self.command = command
        self.cause = cause


class DataSource(Protocol):
    def produce(self) -> RawBlob: ...

    def close(self) -> None: ...

    def describe(self) -> str: ...


def _spawn(argv: list[str], **kwargs) -> subprocess.Popen:
    if not argv:
        raise ValueError("No command given")
    try:
        # Own process group so a timeout can kill grandchildren holding the pipe
        return subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=os.name == "posix",
            **kwargs,
        )
    except OSError as e:
        raise SpawnFailed(argv[0], e) from e


def _kill(proc: subprocess.Popen):
    """Kill the process and whatever is left in its group.

    The group is signalled even when the leader has exited, since a
    backgrounded child may still hold the output pipe open.
    """
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    if proc.poll() is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


class CommandSource:
    """Run a command to completion on every cycle, like watch(1).

    stdout and stderr are merged into one blob. With a timeout, a command
    running longer is killed and the cycle reports ``SourceTimeout``; without
    one the caller simply waits, which delays the next cycle.
    """

    def __init__(self, argv: list[str], timeout: float | None = None):
        if not argv:
            raise ValueError("No command given")
        self.argv = list(argv)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._closed = False

    def describe(self) -> str:
        return format_command(self.argv)

    def produce(self) -> RawBlob:
        with self._lock:
            if self._closed:
                raise EndOfStream
            proc = _spawn(self.argv)
            self._proc = proc
        try:
            try:
                out, _ = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                logger.debug("Killing %s after %.1fs", self.argv[0], self.timeout)
                _kill(proc)
                proc.communicate()
                raise SourceTimeout(self.timeout) from None
        finally:
            with self._lock:
                self._proc = None
        blob = RawBlob(
            out.decode("utf-8", errors="replace"),
            timestamp=time.monotonic(),
            returncode=proc.returncode,
        )
        if proc.returncode != 0:
            raise CommandFailed(proc.returncode, blob)
        return blob

    def close(self):
        with self._lock:
            self._closed = True
            if self._proc is not None:
                _kill(self._proc)


class LineStreamSource:
    """Run a command once and produce one blob per line of its output.

    Carriage returns count as line breaks, so tools that redraw a single
    status line (``\\r``) still yield a blob per update.
    """

    def __init__(self, argv: list[str]):
        if not argv:
            raise ValueError("No command given")
        self.argv = list(argv)
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._closed = False
        self._reported_exit = False

    def describe(self) -> str:
        return format_command(self.argv)

    def _ensure_started(self) -> subprocess.Popen:
        with self._lock:
            if self._closed:
                raise EndOfStream
            if self._proc is None:
                # newline=None: universal newlines, so \r ends a line too
                self._proc = _spawn(
                    self.argv, text=True, encoding="utf-8", errors="replace"
                )
                logger.debug("Started %s (pid %d)", self.argv[0], self._proc.pid)
            return self._proc

    def produce(self) -> RawBlob:
        proc = self._ensure_started()
        line = proc.stdout.readline()  # type: ignore[union-attr]
        if line:
            return RawBlob(line, timestamp=time.monotonic())
        proc.wait()
        if self._closed or self._reported_exit or proc.returncode == 0:
            raise EndOfStream
        self._reported_exit = True
        raise CommandFailed(proc.returncode)

    def close(self):
        with self._lock:
            self._closed = True
            if self._proc is not None:
                _kill(self._proc)


class StdinSource:
    """Produce one blob per line of a text stream, stdin by default.

    A blocked read cannot be interrupted; ``close()`` only marks the source
    so the reading thread can be abandoned.
    """

    def __init__(self, stream: TextIO | None = None):
        if stream is None:
            # Universal newlines: sys.stdin does not split on \r
            stream = io.TextIOWrapper(
                sys.stdin.buffer, encoding="utf-8", errors="replace", newline=None
            )
        self.stream = stream
        self._closed = False

    def describe(self) -> str:
        return "<stdin>"

    def produce(self) -> RawBlob:
        if self._closed:
            raise EndOfStream
        line = self.stream.readline()
        if not line:
            raise EndOfStream
        return RawBlob(line, timestamp=time.monotonic())

    def close(self):
        self._closed = True


def open_source(config: Config) -> DataSource:
    """Build the data source variant selected by the configured mode."""
    if config.mode is Mode.WATCH:
        return CommandSource(config.command, timeout=config.timeout)
    if config.mode is Mode.RUN_ONCE:
        return LineStreamSource(config.command)
    return StdinSource()
