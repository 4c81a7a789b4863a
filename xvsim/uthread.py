"""User-level threads switched by a timer-driven round-robin scheduler."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass
from typing import IO, Callable, Iterable, Iterator, List, Optional, Sequence

MAX_THREAD = 4
QUANTUM = 10


class ThreadState(enum.IntEnum):
    """State of a thread slot."""

    FREE = 0
    RUNNING = 1
    RUNNABLE = 2


class NoRunnableThreads(RuntimeError):
    """The scheduler found no thread to run."""


@dataclass
class _Thread:
    state: ThreadState = ThreadState.FREE
    body: Optional[Iterator] = None


class UserThreads:
    """A fixed set of thread slots; slot 0 is the main thread.

    A thread body is an iterator; each step it yields is one clock tick,
    and every quantum ticks the scheduler takes over.
    """

    def __init__(
        self,
        max_threads: int = MAX_THREAD,
        quantum: int = QUANTUM,
        err: Optional[IO[str]] = None,
    ) -> None:
        if max_threads < 1:
            raise ValueError("max_threads must be at least 1")
        if quantum < 1:
            raise ValueError("quantum must be at least 1")
        self.threads: List[_Thread] = [_Thread() for _ in range(max_threads)]
        self.quantum = quantum
        self.err = err
        self.ticks = 0
        self.current = 0
        self.threads[0].state = ThreadState.RUNNING

    @property
    def states(self) -> List[ThreadState]:
        """The state of every slot."""
        return [t.state for t in self.threads]

    def create(self, func: Callable[[], Iterable]) -> int:
        """Start func's iterator in a free slot, runnable; returns the slot."""
        for i, t in enumerate(self.threads):
            if t.state == ThreadState.FREE:
                t.body = iter(func())
                t.state = ThreadState.RUNNABLE
                return i
        raise RuntimeError("no free thread slot")

    def schedule(self) -> Optional[int]:
        """Switch to another runnable thread; returns its slot, or None if none switched."""
        cur = self.threads[self.current]
        nxt = next(
            (i for i, t in enumerate(self.threads)
             if t.state == ThreadState.RUNNABLE and i != self.current),
            None,
        )
        if nxt is None and cur.state == ThreadState.RUNNABLE:
            nxt = self.current
        if nxt is None:
            raise NoRunnableThreads("thread_schedule: no runnable threads")
        if nxt == self.current:
            return None
        self.threads[nxt].state = ThreadState.RUNNING
        if self.current != 0 and cur.state == ThreadState.RUNNING:
            cur.state = ThreadState.RUNNABLE
        self.current = nxt
        return nxt

    def run(self) -> None:
        """Run threads until the scheduler finds nothing runnable, then report it."""
        try:
            self.schedule()
            while True:
                thread = self.threads[self.current]
                try:
                    next(thread.body)
                except StopIteration:
                    thread.state = ThreadState.FREE
                    thread.body = None
                    self.schedule()
                    continue
                self.ticks += 1
                if self.ticks % self.quantum == 0:
                    self.schedule()
        except NoRunnableThreads as exc:
            (self.err if self.err is not None else sys.stderr).write(f"{exc}\n")


def _mythread(threads: UserThreads, out: IO[str]) -> Iterator[None]:
    out.write("my thread running\n")
    for _ in range(100):
        out.write(f"my thread 0x{threads.current:x}\n")
        yield
    out.write("my thread: exit\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run two demonstration threads."""
    out = sys.stdout
    threads = UserThreads()
    threads.create(lambda: _mythread(threads, out))
    threads.create(lambda: _mythread(threads, out))
    threads.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())