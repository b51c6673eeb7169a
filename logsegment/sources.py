"""Line sources — static file, stream (stdin / pipe), subprocess, and followed file.

Every source exposes the same small interface: ``read_line()`` returns the next
line with its terminator stripped, or a ``ReadSignal`` telling the caller that
the bounded wait expired (``TIMEOUT``) or that the source is done (``EOF``).
Any other I/O failure raises ``SourceReadError``.
"""

import logging
import os
import selectors
import subprocess
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Iterable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
POLL_INTERVAL = 0.5   # seconds; upper bound on a single wait in follow mode
CHANGE_EVENTS = {"created", "modified", "moved", "deleted"}


class ReadSignal(Enum):
    TIMEOUT = "timeout"
    EOF = "eof"


class SourceReadError(Exception):
    """Fatal, non-timeout failure while reading from a line source."""


def strip_terminator(line: str) -> str:
    """Remove one trailing ``\\n`` or ``\\r\\n``."""
    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
    return line


class LineSource(ABC):
    """Capability interface shared by every backend."""

    @abstractmethod
    def read_line(self) -> "str | ReadSignal":
        ...

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class _LineBuffer:
    """Accumulates raw bytes and hands out complete decoded lines."""

    def __init__(self, encoding: str, errors: str):
        self._data = bytearray()
        self._encoding = encoding
        self._errors = errors

    def feed(self, chunk: bytes) -> None:
        self._data += chunk

    def take_line(self) -> str | None:
        end = self._data.find(b"\n")
        if end == -1:
            return None
        raw = bytes(self._data[:end + 1])
        del self._data[:end + 1]
        return strip_terminator(self._decode(raw))

    def take_rest(self) -> str | None:
        """Return a trailing unterminated line, if any."""
        if not self._data:
            return None
        raw = bytes(self._data)
        self._data.clear()
        return self._decode(raw)

    def clear(self) -> None:
        self._data.clear()

    def _decode(self, raw: bytes) -> str:
        try:
            return raw.decode(self._encoding, self._errors)
        except UnicodeDecodeError as e:
            raise SourceReadError(f"Failed to decode input as {self._encoding}: {e}") from e


class IterableLineSource(LineSource):
    """In-memory source over strings; ``ReadSignal.TIMEOUT`` items pass through."""

    def __init__(self, lines: Iterable["str | ReadSignal"]):
        self._lines = iter(lines)

    def read_line(self) -> "str | ReadSignal":
        item = next(self._lines, ReadSignal.EOF)
        if isinstance(item, ReadSignal):
            return item
        return strip_terminator(item)


class FileLineSource(LineSource):
    """Static file read in batch mode. Exhaustion is the only terminal signal.

    Lines end at ``\\n`` only, the same as the stream backends; a lone ``\\r``
    stays part of the line.
    """

    def __init__(self, path: str, encoding: str = "utf-8", errors: str = "replace"):
        self.path = path
        self._buffer = _LineBuffer(encoding, errors)
        try:
            self._file = open(path, "rb")
        except OSError as e:
            raise SourceReadError(f"Cannot open {path}: {e}") from e
        logger.debug("Opened %s", path)

    def read_line(self) -> "str | ReadSignal":
        try:
            chunk = self._file.readline()
        except OSError as e:
            raise SourceReadError(f"Failed to read {self.path}: {e}") from e
        if not chunk:
            return ReadSignal.EOF
        self._buffer.feed(chunk)
        line = self._buffer.take_line()
        return line if line is not None else self._buffer.take_rest()

    def close(self) -> None:
        self._file.close()


class StreamLineSource(LineSource):
    """Binary stream with a file descriptor: standard input or a pipe.

    With ``timeout`` set (seconds), a read that would block longer than the
    bound returns ``ReadSignal.TIMEOUT``. Without it, reads block until data
    or EOF.
    """

    def __init__(
        self,
        stream,
        timeout: float | None = None,
        encoding: str = "utf-8",
        errors: str = "replace",
        close_stream: bool = False,
    ):
        self._stream = stream
        self._fd = stream.fileno()
        self._timeout = timeout
        self._close_stream = close_stream
        self._buffer = _LineBuffer(encoding, errors)
        self._eof = False
        self._selector = None
        if timeout is not None:
            self._selector = selectors.DefaultSelector()
            self._selector.register(self._fd, selectors.EVENT_READ)

    def read_line(self) -> "str | ReadSignal":
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while True:
            line = self._buffer.take_line()
            if line is not None:
                return line
            if self._eof:
                rest = self._buffer.take_rest()
                return rest if rest is not None else ReadSignal.EOF
            if deadline is not None and not self._wait_readable(deadline):
                return ReadSignal.TIMEOUT
            self._fill()

    def _wait_readable(self, deadline: float) -> bool:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return bool(self._selector.select(remaining))
        except OSError as e:
            raise SourceReadError(f"Failed to poll input: {e}") from e

    def _fill(self) -> None:
        try:
            chunk = os.read(self._fd, CHUNK_SIZE)
        except OSError as e:
            raise SourceReadError(f"Failed to read input: {e}") from e
        if chunk:
            self._buffer.feed(chunk)
        else:
            self._eof = True

    def close(self) -> None:
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        if self._close_stream:
            self._stream.close()


class ProcessLineSource(StreamLineSource):
    """Reads the standard output of a child process, e.g. ``tail -f -n 100 FILE``.

    Closing the source terminates the process if it is still running.
    """

    def __init__(
        self,
        args: list[str],
        timeout: float | None = None,
        encoding: str = "utf-8",
        errors: str = "replace",
    ):
        self.args = list(args)
        try:
            self._proc = subprocess.Popen(self.args, stdout=subprocess.PIPE)
        except OSError as e:
            raise SourceReadError(f"Cannot start {self.args[0]}: {e}") from e
        logger.info("Started %s (pid=%d)", " ".join(self.args), self._proc.pid)
        super().__init__(self._proc.stdout, timeout, encoding, errors, close_stream=True)

    @property
    def returncode(self) -> int | None:
        return self._proc.poll()

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Process %d did not exit, killing", self._proc.pid)
                self._proc.kill()
                self._proc.wait()
        super().close()
        logger.debug("Process %d exited with %s", self._proc.pid, self._proc.returncode)


class _ChangeHandler(FileSystemEventHandler):
    """Sets an event whenever the followed file is touched."""

    def __init__(self, path: str, changed: threading.Event):
        super().__init__()
        self._path = path
        self._changed = changed

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in CHANGE_EVENTS:
            return
        paths = {os.path.abspath(event.src_path)}
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.add(os.path.abspath(dest))
        if self._path in paths:
            self._changed.set()


def backlog_offset(fh, lines: int) -> int:
    """Byte offset at which the last ``lines`` lines of an open binary file begin."""
    end = fh.seek(0, os.SEEK_END)
    if lines <= 0:
        return end

    pos = end
    newlines = 0
    # A terminator on the very last line does not start a new one.
    if end > 0:
        fh.seek(end - 1)
        if fh.read(1) == b"\n":
            pos = end - 1

    while pos > 0:
        step = min(CHUNK_SIZE, pos)
        pos -= step
        fh.seek(pos)
        block = fh.read(step)
        idx = len(block)
        while True:
            idx = block.rfind(b"\n", 0, idx)
            if idx == -1:
                break
            newlines += 1
            if newlines == lines:
                return pos + idx + 1
    return 0


class FollowFileLineSource(LineSource):
    """Follows a growing file, like ``tail -f -n BACKLOG``.

    Starts with the last ``backlog`` lines, then returns new lines as they are
    appended. A wait longer than ``timeout`` returns ``ReadSignal.TIMEOUT``.
    Appends are picked up early through a watchdog observer; the bounded wait
    doubles as a poll. Handles:
    - File not yet existing (waits for creation)
    - Log rotation (inode change detection)
    - File truncation (seek back to start)
    """

    def __init__(
        self,
        path: str,
        timeout: float | None = 0.05,
        backlog: int = 100,
        encoding: str = "utf-8",
        errors: str = "replace",
    ):
        self.path = os.path.abspath(path)
        self._timeout = timeout
        self._buffer = _LineBuffer(encoding, errors)
        self._file = None
        self._pending: deque[str] = deque()   # lines left over from a rotated file
        self._inode = None
        self._closed = False
        self._changed = threading.Event()

        if os.path.exists(self.path):
            self._open_file(backlog=backlog)
        else:
            logger.info("Waiting for file %s to appear...", self.path)

        self._observer = Observer()
        directory = os.path.dirname(self.path)
        try:
            self._observer.schedule(_ChangeHandler(self.path, self._changed), directory, recursive=False)
            self._observer.start()
        except OSError as e:
            # inotify watch limits and the like; bounded waits still poll
            logger.warning("File notifications unavailable for %s: %s", directory, e)
            self._observer = None

    def read_line(self) -> "str | ReadSignal":
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while True:
            if self._pending:
                return self._pending.popleft()
            line = self._buffer.take_line()
            if line is not None:
                return line
            if self._closed:
                return ReadSignal.EOF

            self._changed.clear()
            if self._check_file() or self._read_available():
                continue

            wait = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return ReadSignal.TIMEOUT
                wait = min(wait, remaining)
            self._changed.wait(wait)

    def _open_file(self, backlog: int | None = None) -> None:
        """Open the file at its start, or at the last ``backlog`` lines."""
        try:
            self._file = open(self.path, "rb")
            self._inode = os.fstat(self._file.fileno()).st_ino
            if backlog is not None:
                self._file.seek(backlog_offset(self._file, backlog))
        except OSError as e:
            raise SourceReadError(f"Cannot open {self.path}: {e}") from e
        logger.debug("Opened %s (inode=%d) at offset %d", self.path, self._inode, self._file.tell())

    def _close_file(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def _read_available(self) -> bool:
        """Read everything currently in the file. Returns True if anything arrived."""
        if self._file is None:
            return False
        try:
            chunk = self._file.read()
        except OSError as e:
            raise SourceReadError(f"Failed to read {self.path}: {e}") from e
        if not chunk:
            return False
        self._buffer.feed(chunk)
        return True

    def _check_file(self) -> bool:
        """Handle creation, rotation, and truncation. Returns True if the handle changed."""
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SourceReadError(f"Cannot stat {self.path}: {e}") from e

        if self._file is None:
            logger.info("Followed file created: %s", self.path)
            self._open_file()
            return True

        if stat.st_ino != self._inode:
            logger.info("File rotation detected for %s", self.path)
            # Drain whatever the old file still holds, unterminated tail included
            self._read_available()
            line = self._buffer.take_line()
            while line is not None:
                self._pending.append(line)
                line = self._buffer.take_line()
            rest = self._buffer.take_rest()
            if rest is not None:
                self._pending.append(rest)
            self._close_file()
            self._open_file()
            return True

        if stat.st_size < self._file.tell():
            logger.info("File truncation detected for %s", self.path)
            self._buffer.clear()
            self._file.seek(0)
            return True
        return False

    def close(self) -> None:
        self._closed = True
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self._close_file()


def open_source(config) -> LineSource:
    """Pick the backend described by a Config."""
    timeout = config.timeout_ms / 1000.0 if config.follow else None

    if config.command:
        return ProcessLineSource(list(config.command), timeout, config.encoding, config.errors)
    if config.path in (None, "-"):
        return StreamLineSource(sys.stdin.buffer, timeout, config.encoding, config.errors)
    if config.follow:
        return FollowFileLineSource(
            config.path, timeout, config.backlog, config.encoding, config.errors
        )
    return FileLineSource(config.path, config.encoding, config.errors)
