"""System call argument fetching, dispatch, process calls and trap handling."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass
from typing import IO, Callable, Dict, Mapping, Optional

from .locks import SpinLock
from .mmu import DPL_USER, PGSIZE, UINT_MASK, KernelPanic
from .proc import Process, ProcessTable, ProcState
from .vm import AddressSpace

# Processor-defined traps
T_DIVIDE = 0
T_DEBUG = 1
T_NMI = 2
T_BRKPT = 3
T_OFLOW = 4
T_BOUND = 5
T_ILLOP = 6
T_DEVICE = 7
T_DBLFLT = 8
T_TSS = 10
T_SEGNP = 11
T_STACK = 12
T_GPFLT = 13
T_PGFLT = 14
T_FPERR = 16
T_ALIGN = 17
T_MCHK = 18
T_SIMDERR = 19

T_SYSCALL = 64
T_DEFAULT = 500
T_IRQ0 = 32

IRQ_TIMER = 0
IRQ_KBD = 1
IRQ_COM1 = 4
IRQ_IDE = 14
IRQ_ERROR = 19
IRQ_SPURIOUS = 31

_DEVICE_TRAPS = frozenset({
    T_IRQ0 + IRQ_IDE,
    T_IRQ0 + IRQ_KBD,
    T_IRQ0 + IRQ_COM1,
    T_IRQ0 + 0xB,
})

_FAILURES = (ValueError, OSError, MemoryError)

Handler = Callable[[Process], Optional[int]]


class SyscallNumber(enum.IntEnum):
    """System call numbers passed in %eax."""

    FORK = 1
    EXIT = 2
    WAIT = 3
    PIPE = 4
    READ = 5
    KILL = 6
    EXEC = 7
    FSTAT = 8
    CHDIR = 9
    DUP = 10
    GETPID = 11
    SBRK = 12
    SLEEP = 13
    UPTIME = 14
    OPEN = 15
    WRITE = 16
    MKNOD = 17
    UNLINK = 18
    LINK = 19
    MKDIR = 20
    CLOSE = 21
    UTHREAD_INIT = 22


@dataclass
class TrapFrame:
    """Registers saved on entry to the kernel."""

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


def _int32(value: int) -> int:
    return ((value + 0x80000000) & UINT_MASK) - 0x80000000


def fetchint(space: AddressSpace, sz: int, addr: int) -> int:
    """The signed 32-bit int at user address addr; raises ValueError if out of range."""
    addr &= UINT_MASK
    if addr >= sz or addr + 4 > sz:
        raise ValueError(f"address {addr:#x} is outside the process")
    return _int32(int.from_bytes(space.copyin(addr, 4), "little"))


def fetchstr(space: AddressSpace, sz: int, addr: int) -> bytes:
    """The NUL-terminated string at user address addr, without the NUL."""
    addr &= UINT_MASK
    if addr >= sz:
        raise ValueError(f"address {addr:#x} is outside the process")
    out = bytearray()
    a = addr
    while a < sz:
        step = min(PGSIZE - a % PGSIZE, sz - a)
        chunk = space.copyin(a, step)
        end = chunk.find(0)
        if end >= 0:
            return bytes(out + chunk[:end])
        out += chunk
        a += step
    raise ValueError("string is not terminated inside the process")


def argint(space: AddressSpace, sz: int, esp: int, n: int) -> int:
    """The nth 32-bit system call argument."""
    return fetchint(space, sz, (esp + 4 + 4 * n) & UINT_MASK)


def argptr(space: AddressSpace, sz: int, esp: int, n: int, size: int) -> int:
    """The nth argument as the address of a size-byte block inside the process."""
    i = argint(space, sz, esp, n) & UINT_MASK
    if size < 0 or i >= sz or i + size > sz:
        raise ValueError(f"block {i:#x}+{size} is outside the process")
    return i


def argstr(space: AddressSpace, sz: int, esp: int, n: int) -> bytes:
    """The nth argument as a NUL-terminated string."""
    return fetchstr(space, sz, argint(space, sz, esp, n))


class Kernel:
    """Dispatches system calls and traps for processes of a process table.

    A handler returns the call's result, raises OSError, ValueError or
    MemoryError to fail with -1, or returns None when the process went to
    sleep (or exited) and has no result; a sleeping call is issued again
    once the process is runnable. Extra handlers, such as file-system calls,
    may be given by number.
    """

    def __init__(
        self,
        ptable: Optional[ProcessTable] = None,
        console: Optional[IO[str]] = None,
        handlers: Optional[Mapping[int, Handler]] = None,
        irq_handlers: Optional[Mapping[int, Callable[[], None]]] = None,
    ) -> None:
        self.ptable = ptable if ptable is not None else ProcessTable(trapframe_factory=TrapFrame)
        self.console = console if console is not None else sys.stdout
        self.ticks = 0
        self.tickslock = SpinLock("time")
        self.irq_handlers: Dict[int, Callable[[], None]] = dict(irq_handlers or {})
        self.cr2 = 0
        self._ticks_chan = object()
        self._sleep_start: Dict[Process, int] = {}
        self._calls: Dict[int, Handler] = {
            SyscallNumber.FORK: self.sys_fork,
            SyscallNumber.EXIT: self.sys_exit,
            SyscallNumber.WAIT: self.sys_wait,
            SyscallNumber.KILL: self.sys_kill,
            SyscallNumber.GETPID: self.sys_getpid,
            SyscallNumber.SBRK: self.sys_sbrk,
            SyscallNumber.SLEEP: self.sys_sleep,
            SyscallNumber.UPTIME: self.sys_uptime,
            SyscallNumber.UTHREAD_INIT: self.sys_uthread_init,
        }
        self._calls.update({int(k): v for k, v in (handlers or {}).items()})

    def _argint(self, proc: Process, n: int) -> int:
        return argint(proc.pgdir, proc.sz, proc.tf.esp, n)

    def syscall(self, proc: Process) -> Optional[int]:
        """Run the call numbered in proc.tf.eax and store its result in eax."""
        num = _int32(proc.tf.eax)
        handler = self._calls.get(num)
        if handler is None:
            self.console.write(f"{proc.pid} {proc.name}: unknown sys call {num}\n")
            proc.tf.eax = UINT_MASK
            return -1
        try:
            result = handler(proc)
        except _FAILURES:
            result = -1
        if result is None:
            return None
        proc.tf.eax = result & UINT_MASK
        return result

    def _exit_if_killed(self, proc: Optional[Process], tf: TrapFrame) -> bool:
        if (
            proc is not None
            and proc.killed
            and (tf.cs & 3) == DPL_USER
            and proc.state != ProcState.ZOMBIE
        ):
            self.ptable.exit(proc)
            return True
        return False

    def trap(self, proc: Optional[Process], tf: TrapFrame) -> None:
        """Handle a trap taken while proc (or no process) was running."""
        if tf.trapno == T_SYSCALL:
            if proc is None:
                raise KernelPanic("syscall without a process")
            if proc.killed:
                self.ptable.exit(proc)
                return
            proc.tf = tf
            self.syscall(proc)
            if proc.killed and proc.state != ProcState.ZOMBIE:
                self.ptable.exit(proc)
            return

        trapno = tf.trapno
        if trapno == T_IRQ0 + IRQ_TIMER:
            with self.tickslock:
                self.ticks = (self.ticks + 1) & UINT_MASK
            self.ptable.wakeup(self._ticks_chan)
            if proc is not None and proc.scheduler != 0 and self.ticks % 10 == 0:
                proc.tf.eip = proc.scheduler
        elif trapno in _DEVICE_TRAPS:
            handler = self.irq_handlers.get(trapno)
            if handler is not None:
                handler()
        elif trapno == T_IRQ0 + IRQ_IDE + 1:
            pass
        elif trapno == T_IRQ0 + IRQ_SPURIOUS:
            self.console.write(f"cpu0: spurious interrupt at {tf.cs:x}:{tf.eip:x}\n")
        else:
            if proc is None or (tf.cs & 3) == 0:
                self.console.write(
                    f"unexpected trap {tf.trapno} from cpu 0 eip {tf.eip:x} "
                    f"(cr2=0x{self.cr2:x})\n"
                )
                raise KernelPanic("trap")
            self.console.write(
                f"pid {proc.pid} {proc.name}: trap {tf.trapno} err {tf.err} on cpu 0 "
                f"eip 0x{tf.eip:x} addr 0x{self.cr2:x}--kill proc\n"
            )
            proc.killed = True

        if self._exit_if_killed(proc, tf):
            return
        if (
            proc is not None
            and proc.state == ProcState.RUNNING
            and trapno == T_IRQ0 + IRQ_TIMER
        ):
            self.ptable.yield_(proc)
        self._exit_if_killed(proc, tf)

    def sys_fork(self, proc: Process) -> int:
        return self.ptable.fork(proc)

    def sys_exit(self, proc: Process) -> None:
        """Exit proc; there is no result."""
        self.ptable.exit(proc)
        return None

    def sys_wait(self, proc: Process) -> Optional[int]:
        return self.ptable.wait(proc)

    def sys_kill(self, proc: Process) -> int:
        self.ptable.kill(self._argint(proc, 0))
        return 0

    def sys_getpid(self, proc: Process) -> int:
        return proc.pid

    def sys_sbrk(self, proc: Process) -> int:
        n = self._argint(proc, 0)
        addr = proc.sz
        self.ptable.growproc(proc, n)
        return addr

    def sys_sleep(self, proc: Process) -> Optional[int]:
        """Sleep for n ticks; returns None while still sleeping."""
        n = self._argint(proc, 0) & UINT_MASK
        with self.tickslock:
            ticks0 = self._sleep_start.setdefault(proc, self.ticks)
            if (self.ticks - ticks0) & UINT_MASK >= n:
                del self._sleep_start[proc]
                return 0
            if proc.killed:
                del self._sleep_start[proc]
                raise InterruptedError("process was killed")
        self.ptable.sleep(proc, self._ticks_chan)
        return None

    def sys_uptime(self, proc: Process) -> int:
        with self.tickslock:
            return self.ticks

    def sys_uthread_init(self, proc: Process) -> int:
        func = self._argint(proc, 0)
        if proc.scheduler == 0:
            self.ptable.uthread_init(proc, func)
        return 0