import io
import struct

import pytest

from xvsim.mmu import DPL_USER, PGSIZE, KernelPanic
from xvsim.proc import ProcState
from xvsim.syscall import (
    IRQ_SPURIOUS,
    IRQ_TIMER,
    T_DIVIDE,
    T_IRQ0,
    T_SYSCALL,
    Kernel,
    SyscallNumber,
    TrapFrame,
    argint,
    argptr,
    argstr,
    fetchint,
    fetchstr,
)

ESP = 0x800
TIMER = T_IRQ0 + IRQ_TIMER


@pytest.fixture
def kernel():
    return Kernel(console=io.StringIO())


@pytest.fixture
def proc(kernel):
    p = kernel.ptable.userinit(b"\x90")
    assert kernel.ptable.schedule() is p
    p.tf.esp = ESP
    return p


def call(kernel, proc, num, *args):
    if args:
        proc.pgdir.copyout(proc.tf.esp + 4, struct.pack(f"<{len(args)}i", *args))
    proc.tf.eax = num
    return kernel.syscall(proc)


def test_fetchint_reads_signed_value(proc):
    proc.pgdir.copyout(0x100, struct.pack("<i", -7))
    assert fetchint(proc.pgdir, proc.sz, 0x100) == -7


def test_fetchint_rejects_out_of_range(proc):
    with pytest.raises(ValueError):
        fetchint(proc.pgdir, proc.sz, proc.sz)
    with pytest.raises(ValueError):
        fetchint(proc.pgdir, proc.sz, proc.sz - 2)


def test_fetchstr_stops_at_nul(proc):
    proc.pgdir.copyout(0x200, b"hello\0world")
    assert fetchstr(proc.pgdir, proc.sz, 0x200) == b"hello"


def test_fetchstr_without_nul_fails(proc):
    proc.pgdir.copyout(PGSIZE - 3, b"abc")
    with pytest.raises(ValueError):
        fetchstr(proc.pgdir, proc.sz, PGSIZE - 3)


def test_argint_and_argstr(proc):
    proc.pgdir.copyout(0x300, b"name\0")
    proc.pgdir.copyout(ESP + 4, struct.pack("<ii", 42, 0x300))
    assert argint(proc.pgdir, proc.sz, ESP, 0) == 42
    assert argstr(proc.pgdir, proc.sz, ESP, 1) == b"name"


def test_argptr_bounds(proc):
    proc.pgdir.copyout(ESP + 4, struct.pack("<i", 0x100))
    assert argptr(proc.pgdir, proc.sz, ESP, 0, 16) == 0x100
    with pytest.raises(ValueError):
        argptr(proc.pgdir, proc.sz, ESP, 0, -1)
    with pytest.raises(ValueError):
        argptr(proc.pgdir, proc.sz, ESP, 0, proc.sz)


def test_getpid(kernel, proc):
    assert call(kernel, proc, SyscallNumber.GETPID) == proc.pid
    assert proc.tf.eax == proc.pid


def test_unknown_syscall_reports_and_fails(kernel, proc):
    assert call(kernel, proc, 99) == -1
    assert proc.tf.eax == 0xFFFFFFFF
    assert "unknown sys call 99" in kernel.console.getvalue()


def test_unregistered_file_call_is_unknown(kernel, proc):
    assert call(kernel, proc, SyscallNumber.READ) == -1


def test_extra_handler_is_dispatched(proc):
    k = Kernel(ptable=None, console=io.StringIO(), handlers={SyscallNumber.DUP: lambda p: 3})
    p = k.ptable.userinit(b"\x90")
    p.tf.eax = SyscallNumber.DUP
    assert k.syscall(p) == 3


def test_sbrk_grows_memory(kernel, proc):
    old = proc.sz
    assert call(kernel, proc, SyscallNumber.SBRK, PGSIZE) == old
    assert proc.sz == old + PGSIZE
    assert proc.pgdir.copyin(old, 4) == bytes(4)


def test_kill_unknown_pid_fails(kernel, proc):
    assert call(kernel, proc, SyscallNumber.KILL, 999) == -1


def test_kill_marks_process(kernel, proc):
    child_pid = call(kernel, proc, SyscallNumber.FORK)
    assert call(kernel, proc, SyscallNumber.KILL, child_pid) == 0
    child = next(p for p in kernel.ptable.procs if p.pid == child_pid)
    assert child.killed


def test_fork_and_wait(kernel, proc):
    child_pid = call(kernel, proc, SyscallNumber.FORK)
    child = next(p for p in kernel.ptable.procs if p.pid == child_pid)
    assert child.tf.eax == 0
    assert child.parent is proc
    kernel.ptable.exit(child)
    assert call(kernel, proc, SyscallNumber.WAIT) == child_pid
    assert child.state == ProcState.UNUSED


def test_wait_without_children_fails(kernel, proc):
    assert call(kernel, proc, SyscallNumber.WAIT) == -1


def test_wait_sleeps_until_child_exits(kernel, proc):
    child_pid = call(kernel, proc, SyscallNumber.FORK)
    proc.tf.eax = SyscallNumber.WAIT
    assert kernel.syscall(proc) is None
    assert proc.state == ProcState.SLEEPING
    child = next(p for p in kernel.ptable.procs if p.pid == child_pid)
    child.tf.eax = SyscallNumber.EXIT
    assert kernel.syscall(child) is None
    assert child.state == ProcState.ZOMBIE
    assert proc.state == ProcState.RUNNABLE
    assert kernel.syscall(proc) == child_pid


def test_uthread_init_sets_scheduler_once(kernel, proc):
    assert call(kernel, proc, SyscallNumber.UTHREAD_INIT, 0x1234) == 0
    assert proc.scheduler == 0x1234
    call(kernel, proc, SyscallNumber.UTHREAD_INIT, 0x5678)
    assert proc.scheduler == 0x1234


def test_timer_counts_ticks_and_yields(kernel, proc):
    kernel.trap(proc, TrapFrame(trapno=TIMER))
    assert call(kernel, proc, SyscallNumber.UPTIME) == 1
    assert proc.state == ProcState.RUNNABLE


def test_timer_redirects_to_user_scheduler(kernel, proc):
    call(kernel, proc, SyscallNumber.UTHREAD_INIT, 0x1234)
    for _ in range(9):
        kernel.trap(proc, TrapFrame(trapno=TIMER))
    assert proc.tf.eip != 0x1234
    kernel.trap(proc, TrapFrame(trapno=TIMER))
    assert proc.tf.eip == 0x1234


def test_sleep_waits_for_ticks(kernel, proc):
    assert call(kernel, proc, SyscallNumber.SLEEP, 2) is None
    assert proc.state == ProcState.SLEEPING
    kernel.trap(None, TrapFrame(trapno=TIMER))
    assert proc.state == ProcState.RUNNABLE
    assert kernel.syscall(proc) is None
    kernel.trap(None, TrapFrame(trapno=TIMER))
    assert kernel.syscall(proc) == 0


def test_syscall_trap_runs_call(kernel, proc):
    tf = TrapFrame(trapno=T_SYSCALL, eax=SyscallNumber.GETPID, esp=ESP, cs=DPL_USER)
    kernel.trap(proc, tf)
    assert proc.tf is tf
    assert tf.eax == proc.pid


def test_user_fault_kills_process(kernel, proc):
    child_pid = call(kernel, proc, SyscallNumber.FORK)
    child = next(p for p in kernel.ptable.procs if p.pid == child_pid)
    kernel.trap(child, TrapFrame(trapno=T_DIVIDE, cs=DPL_USER))
    assert child.killed
    assert child.state == ProcState.ZOMBIE
    assert "--kill proc" in kernel.console.getvalue()


def test_kernel_fault_panics(kernel):
    with pytest.raises(KernelPanic):
        kernel.trap(None, TrapFrame(trapno=T_DIVIDE, cs=0))


def test_spurious_interrupt_is_logged(kernel):
    kernel.trap(None, TrapFrame(trapno=T_IRQ0 + IRQ_SPURIOUS))
    assert "spurious interrupt" in kernel.console.getvalue()


def test_device_interrupt_calls_handler():
    seen = []
    k = Kernel(console=io.StringIO(), irq_handlers={T_IRQ0 + 0xB: lambda: seen.append(1)})
    k.trap(None, TrapFrame(trapno=T_IRQ0 + 0xB))
    assert seen == [1]