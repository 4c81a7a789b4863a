"""Spin locks owned by a thread and sleeping locks owned by a process id."""

from __future__ import annotations

import threading
from typing import Optional

from .mmu import KernelPanic


class SpinLock:
    """A mutual-exclusion lock that panics on recursive acquire or foreign release."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.locked = False
        self.cpu: Optional[int] = None
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Wait until the lock is free and take it."""
        if self.holding():
            raise KernelPanic("acquire")
        self._lock.acquire()
        self.locked = True
        self.cpu = threading.get_ident()

    def release(self) -> None:
        """Release a lock the caller holds."""
        if not self.holding():
            raise KernelPanic("release")
        self.cpu = None
        self.locked = False
        self._lock.release()

    def holding(self) -> bool:
        """Whether the calling thread holds the lock."""
        return self.locked and self.cpu == threading.get_ident()

    def __enter__(self) -> "SpinLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class SleepLock:
    """A long-term lock whose waiters sleep until it is released."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.locked = False
        self.pid = 0
        self._cond = threading.Condition(threading.Lock())

    def acquire(self, pid: int) -> None:
        """Sleep until the lock is free, then take it for pid."""
        with self._cond:
            while self.locked:
                self._cond.wait()
            self.locked = True
            self.pid = pid

    def release(self) -> None:
        """Free the lock and wake every sleeper."""
        with self._cond:
            self.locked = False
            self.pid = 0
            self._cond.notify_all()

    def holding(self) -> bool:
        """Whether the lock is held by anyone."""
        with self._cond:
            return self.locked