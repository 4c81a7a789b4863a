"""Process table: creation, fork, exit, wait, sleep/wakeup and round-robin scheduling."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from .locks import SpinLock
from .mmu import (
    DPL_USER,
    FL_IF,
    NOFILE,
    NPROC,
    PGSIZE,
    SEG_UCODE,
    SEG_UDATA,
    UINT_MASK,
    KernelPanic,
)
from .vm import AddressSpace, KernelMapping, OutOfMemory, PhysicalMemory
from .xstring import safestrcpy

_NAME_SIZE = 16


class ProcState(enum.IntEnum):
    """Life-cycle state of a process slot."""

    UNUSED = 0
    EMBRYO = 1
    SLEEPING = 2
    RUNNABLE = 3
    RUNNING = 4
    ZOMBIE = 5

    @property
    def label(self) -> str:
        """The fixed-width name used in process listings."""
        return _STATE_LABELS[self]


_STATE_LABELS = {
    ProcState.UNUSED: "unused",
    ProcState.EMBRYO: "embryo",
    ProcState.SLEEPING: "sleep ",
    ProcState.RUNNABLE: "runble",
    ProcState.RUNNING: "run   ",
    ProcState.ZOMBIE: "zombie",
}


@dataclass
class Context:
    """Callee-saved registers kept across a kernel context switch."""

    edi: int = 0
    esi: int = 0
    ebx: int = 0
    ebp: int = 0
    eip: int = 0


@dataclass
class _TrapFrame:
    edi: int = 0
    esi: int = 0
    ebp: int = 0
    oesp: int = 0
    ebx: int = 0
    edx: int = 0
    ecx: int = 0
    eax: int = 0
    gs: int = 0
    fs: int = 0
    es: int = 0
    ds: int = 0
    trapno: int = 0
    err: int = 0
    eip: int = 0
    cs: int = 0
    eflags: int = 0
    esp: int = 0
    ss: int = 0


@dataclass(eq=False)
class Process:
    """Per-process state.

    Open files are objects with dup() and close() methods.
    """

    sz: int = 0
    pgdir: Optional[AddressSpace] = None
    kstack: Optional[int] = None
    state: ProcState = ProcState.UNUSED
    pid: int = 0
    parent: Optional["Process"] = None
    tf: Any = None
    context: Optional[Context] = None
    chan: Any = None
    killed: bool = False
    ofile: List[Any] = field(default_factory=lambda: [None] * NOFILE)
    cwd: Optional[str] = None
    name: str = ""
    scheduler: int = 0


class ProcessTable:
    """A fixed-size table of processes sharing one physical memory."""

    def __init__(
        self,
        memory: Optional[PhysicalMemory] = None,
        kernel_mappings: Iterable[KernelMapping] = (),
        nproc: int = NPROC,
        trapframe_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        if nproc <= 0:
            raise ValueError("nproc must be positive")
        self.memory = memory if memory is not None else PhysicalMemory()
        self.kernel_mappings = tuple(kernel_mappings)
        self.lock = SpinLock("ptable")
        self.procs: List[Process] = [Process() for _ in range(nproc)]
        self.nextpid = 1
        self.initproc: Optional[Process] = None
        self.current: Optional[Process] = None
        self._trapframe_factory = trapframe_factory or _TrapFrame
        self._cursor = 0

    def allocproc(self) -> Optional[Process]:
        """Claim an unused slot as an embryo with a kernel stack, or None."""
        with self.lock:
            p = next((q for q in self.procs if q.state == ProcState.UNUSED), None)
            if p is None:
                return None
            p.state = ProcState.EMBRYO
            p.pid = self.nextpid
            self.nextpid += 1
        try:
            p.kstack = self.memory.kalloc()
        except OutOfMemory:
            p.state = ProcState.UNUSED
            return None
        p.tf = self._trapframe_factory()
        p.context = Context()
        return p

    def userinit(self, initcode: bytes) -> Process:
        """Create the first user process running initcode at address 0."""
        p = self.allocproc()
        if p is None:
            raise KernelPanic("userinit: out of memory?")
        self.initproc = p
        try:
            p.pgdir = AddressSpace(self.memory, self.kernel_mappings)
        except OutOfMemory:
            raise KernelPanic("userinit: out of memory?") from None
        p.pgdir.inituvm(initcode)
        p.sz = PGSIZE
        p.tf = self._trapframe_factory()
        p.tf.cs = (SEG_UCODE << 3) | DPL_USER
        p.tf.ds = (SEG_UDATA << 3) | DPL_USER
        p.tf.es = p.tf.ds
        p.tf.ss = p.tf.ds
        p.tf.eflags = FL_IF
        p.tf.esp = PGSIZE
        p.tf.eip = 0
        p.name = safestrcpy("initcode", _NAME_SIZE)
        p.cwd = "/"
        with self.lock:
            p.state = ProcState.RUNNABLE
        return p

    def growproc(self, proc: Process, n: int) -> int:
        """Grow or shrink a process's memory by n bytes; returns the new size."""
        sz = proc.sz
        if n > 0:
            sz = proc.pgdir.allocuvm(sz, sz + n)
        elif n < 0:
            sz = proc.pgdir.deallocuvm(sz, (sz + n) & UINT_MASK)
        proc.sz = sz
        return sz

    def fork(self, parent: Process) -> int:
        """Create a copy of parent; returns the child's pid."""
        np = self.allocproc()
        if np is None:
            raise OutOfMemory("no free process slot")
        try:
            np.pgdir = parent.pgdir.copy(parent.sz)
        except OutOfMemory:
            self.memory.kfree(np.kstack)
            np.kstack = None
            np.state = ProcState.UNUSED
            raise
        np.sz = parent.sz
        np.parent = parent
        np.tf = copy.copy(parent.tf)
        np.tf.eax = 0
        np.ofile = [f.dup() if f is not None else None for f in parent.ofile]
        np.cwd = parent.cwd
        np.name = safestrcpy(parent.name, _NAME_SIZE)
        with self.lock:
            np.state = ProcState.RUNNABLE
        return np.pid

    def exit(self, proc: Process) -> None:
        """Close files, hand children to init and leave proc a zombie."""
        if proc is self.initproc:
            raise KernelPanic("init exiting")
        for fd, f in enumerate(proc.ofile):
            if f is not None:
                f.close()
                proc.ofile[fd] = None
        proc.cwd = None
        with self.lock:
            self._wakeup1(proc.parent)
            for p in self.procs:
                if p.parent is proc:
                    p.parent = self.initproc
                    if p.state == ProcState.ZOMBIE:
                        self._wakeup1(self.initproc)
            proc.state = ProcState.ZOMBIE
            self._sched(proc)

    def wait(self, proc: Process) -> Optional[int]:
        """Reap an exited child and return its pid.

        Raises ChildProcessError when proc has no children or was killed.
        When children exist but none has exited, proc goes to sleep and
        None is returned; call again once it has been woken.
        """
        with self.lock:
            havekids = False
            for p in self.procs:
                if p.parent is not proc:
                    continue
                havekids = True
                if p.state == ProcState.ZOMBIE:
                    pid = p.pid
                    self.memory.kfree(p.kstack)
                    p.kstack = None
                    if p.pgdir is not None:
                        p.pgdir.free()
                    p.pgdir = None
                    p.sz = 0
                    p.pid = 0
                    p.parent = None
                    p.name = ""
                    p.killed = False
                    p.tf = None
                    p.context = None
                    p.state = ProcState.UNUSED
                    return pid
            if not havekids:
                raise ChildProcessError("no children")
            if proc.killed:
                raise ChildProcessError("process was killed")
            proc.chan = proc
            proc.state = ProcState.SLEEPING
            self._sched(proc)
        return None

    def schedule(self) -> Optional[Process]:
        """Pick the next runnable process in round-robin order and mark it running."""
        with self.lock:
            if self.current is not None and self.current.state == ProcState.RUNNING:
                raise KernelPanic("sched running")
            n = len(self.procs)
            order = list(range(self._cursor, n)) + list(range(n))
            for i in order:
                p = self.procs[i]
                if p.state != ProcState.RUNNABLE:
                    continue
                p.chan = None
                p.state = ProcState.RUNNING
                self.current = p
                self._cursor = (i + 1) % n
                return p
            self.current = None
            return None

    def yield_(self, proc: Process) -> None:
        """Give up the CPU for one scheduling round."""
        with self.lock:
            proc.state = ProcState.RUNNABLE
            self._sched(proc)

    def sleep(self, proc: Optional[Process], chan: Any) -> None:
        """Put proc to sleep on chan."""
        if proc is None:
            raise KernelPanic("sleep")
        with self.lock:
            proc.chan = chan
            proc.state = ProcState.SLEEPING
            self._sched(proc)

    def wakeup(self, chan: Any) -> None:
        """Make every process sleeping on chan runnable."""
        with self.lock:
            self._wakeup1(chan)

    def kill(self, pid: int) -> None:
        """Mark the process with pid as killed, waking it if asleep."""
        with self.lock:
            for p in self.procs:
                if p.state != ProcState.UNUSED and p.pid == pid:
                    p.killed = True
                    if p.state == ProcState.SLEEPING:
                        p.state = ProcState.RUNNABLE
                    return
        raise ProcessLookupError(f"no process {pid}")

    def procdump(self) -> List[str]:
        """One line per used slot: pid, state and name."""
        return [
            f"{p.pid} {p.state.label} {p.name}"
            for p in self.procs
            if p.state != ProcState.UNUSED
        ]

    def uthread_init(self, proc: Process, addr: int) -> None:
        """Record the user-level scheduler entry point for proc."""
        proc.scheduler = addr & UINT_MASK

    def _wakeup1(self, chan: Any) -> None:
        for p in self.procs:
            if p.state == ProcState.SLEEPING and p.chan == chan:
                p.state = ProcState.RUNNABLE

    def _sched(self, proc: Process) -> None:
        if proc.state == ProcState.RUNNING:
            raise KernelPanic("sched running")
        if self.current is proc:
            self.current = None