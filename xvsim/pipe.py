"""In-kernel pipes: a bounded byte ring shared by a read end and a write end."""

from __future__ import annotations

import io
import threading
from typing import Tuple

PIPESIZE = 512


class Pipe:
    """A 512-byte ring buffer that blocks writers when full and readers when empty."""

    def __init__(self) -> None:
        self._data = bytearray(PIPESIZE)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        """Whether both ends have been closed."""
        return not self.readopen and not self.writeopen

    def write(self, data: bytes) -> int:
        """Write every byte of data, waiting for room; returns len(data).

        Raises BrokenPipeError if the pipe fills up after the read end closed.
        """
        data = bytes(data)
        with self._cond:
            for byte in data:
                while self.nwrite == self.nread + PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("read end of pipe is closed")
                    self._cond.notify_all()
                    self._cond.wait()
                self._data[self.nwrite % PIPESIZE] = byte
                self.nwrite += 1
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting while the pipe is empty and still has a writer.

        Returns b"" at end of file.
        """
        if n < 0:
            raise ValueError("count must not be negative")
        with self._cond:
            while self.nread == self.nwrite and self.writeopen:
                self._cond.wait()
            count = min(n, self.nwrite - self.nread)
            start = self.nread % PIPESIZE
            end = start + count
            if end <= PIPESIZE:
                out = bytes(self._data[start:end])
            else:
                out = bytes(self._data[start:]) + bytes(self._data[:end - PIPESIZE])
            self.nread += count
            self._cond.notify_all()
        return out

    def close(self, writable: bool) -> None:
        """Close the write end if writable, else the read end, and wake waiters."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


class PipeEnd:
    """One end of a pipe as held in a file table, with a reference count."""

    def __init__(self, pipe: Pipe, readable: bool, writable: bool) -> None:
        self.pipe = pipe
        self.readable = readable
        self.writable = writable
        self.refs = 1

    def _check_open(self) -> None:
        if self.refs <= 0:
            raise ValueError("pipe end is closed")

    def read(self, n: int) -> bytes:
        """Read from the pipe through this end."""
        self._check_open()
        if not self.readable:
            raise io.UnsupportedOperation("pipe end is not readable")
        return self.pipe.read(n)

    def write(self, data: bytes) -> int:
        """Write to the pipe through this end."""
        self._check_open()
        if not self.writable:
            raise io.UnsupportedOperation("pipe end is not writable")
        return self.pipe.write(data)

    def dup(self) -> "PipeEnd":
        """Take another reference to this end."""
        self._check_open()
        self.refs += 1
        return self

    def close(self) -> None:
        """Drop a reference; the last one closes this end of the pipe."""
        self._check_open()
        self.refs -= 1
        if self.refs == 0:
            self.pipe.close(self.writable)


def open_pipe() -> Tuple[PipeEnd, PipeEnd]:
    """A new pipe as (read end, write end)."""
    pipe = Pipe()
    return PipeEnd(pipe, True, False), PipeEnd(pipe, False, True)