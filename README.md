# xvsim

`xvsim` models the working parts of a small Unix-like teaching kernel in
plain Python. Page tables map onto a simulated physical memory; processes are
created, forked, scheduled, put to sleep and reaped; pipes, locks and system
call argument checks follow the same rules and limits as the kernel they
describe. It needs nothing beyond the standard library.

## Installation

```
pip install .
pip install ".[test]"   # adds pytest, to run the test suite
```

## What is inside

| Module            | Contents |
|-------------------|----------|
| `xvsim.mmu`       | Address arithmetic (`pdx`, `ptx`, `pgaddr`, `pgroundup`, `pgrounddown`, `pte_addr`, `pte_flags`, `v2p`, `p2v`), `seg_asm`, `SegmentDescriptor` and `GateDescriptor` with byte packing, layout and parameter constants, `KernelPanic` |
| `xvsim.xstring`   | C-style string helpers on `str` or `bytes`: `memcmp`, `strncmp`, `strcmp`, `strncpy`, `safestrcpy`, `strlen`, `strchr`, `atoi`, `gets` |
| `xvsim.printf`    | A formatter that knows `%d`, `%x`, `%p`, `%s`, `%c` and `%%`: `printint`, `sprintf`, `printf` |
| `xvsim.wc`        | Line, word and character counting: `count`, `WordCount`, and the `xvsim-wc` command |
| `xvsim.vm`        | `PhysicalMemory` (page allocator), `AddressSpace` (two-level page tables, grow, shrink, copy, `copyout`, `copyin`), `KernelMapping`, `OutOfMemory` |
| `xvsim.umalloc`   | `Allocator`, a first-fit free-list heap that coalesces freed blocks and grows through an `sbrk` callable |
| `xvsim.elf`       | `ElfHeader` and `ProgramHeader`, read with `from_bytes` and written with `to_bytes` |
| `xvsim.locks`     | `SpinLock` (panics on recursive acquire or foreign release; usable with `with`) and `SleepLock` |
| `xvsim.proc`      | `ProcessTable`, `Process`, `ProcState`, `Context`: `allocproc`, `userinit`, `growproc`, `fork`, `exit`, `wait`, `schedule`, `yield_`, `sleep`, `wakeup`, `kill`, `procdump`, `uthread_init` |
| `xvsim.pipe`      | 512-byte pipes: `open_pipe`, `Pipe`, `PipeEnd` with reference-counted `dup` and `close` |
| `xvsim.syscall`   | `fetchint`, `fetchstr`, `argint`, `argptr`, `argstr`, `SyscallNumber`, `TrapFrame`, and `Kernel`, which dispatches system calls and traps |
| `xvsim.packets`   | `EthHeader`, `Ipv4Header`, `TcpHeader`, `TcpFlags`, `ipv4_checksum`, `tcp_checksum`, and `TcpResponder` |
| `xvsim.pci`       | `config_address`, `PciDevice`, and `PciBus`, which scans a bus through config-space callables |
| `xvsim.madt`      | `parse_madt`, reading local APIC and I/O APIC ids into `MadtInfo` |
| `xvsim.uthread`   | User-level threads on a fixed slot table: `UserThreads`, `ThreadState`, and the `xvsim-uthread` command |
| `xvsim.shell`     | The shell's command-line parser: `parsecmd`, `gettoken`, `peek`, `ExecCmd`, `RedirCmd`, `PipeCmd`, `ListCmd`, `BackCmd`, `ShellSyntaxError` |

## Examples

Page arithmetic:

```python
from xvsim.mmu import pgroundup, pdx, ptx

pgroundup(4097)      # 8192
pdx(0x00401000)      # 1
ptx(0x00401000)      # 1
```

Formatting the way the user-level `printf` does (hex digits are upper case):

```python
from xvsim.printf import sprintf

sprintf("%d %x %s", -42, 255, "ok")   # '-42 FF ok'
```

A process table with a first process and a fork:

```python
from xvsim.proc import ProcessTable

table = ProcessTable()
init = table.userinit(b"\x90")
child_pid = table.fork(init)
print(table.procdump())
```

`ProcessTable.wait` returns the pid of an exited child, returns `None` after
putting the caller to sleep when its children are still running, and raises
`ChildProcessError` when it has none or was killed. `kill` raises
`ProcessLookupError` for an unknown pid.

Parsing a shell command line into a tree of commands:

```python
from xvsim.shell import parsecmd

tree = parsecmd("cat < in | grep x > out ; echo done &")
```

Malformed input raises `ShellSyntaxError`.

Faults that would halt the kernel, such as remapping a mapped page, raise
`KernelPanic`; running out of simulated physical pages raises `OutOfMemory`.

## Commands

Count lines, words and characters of files, or of standard input when no file
is given:

```
xvsim-wc README.md
```

Run two demonstration threads under the user-level scheduler:

```
xvsim-uthread
```

## What it does not do

- There is no file system. `Kernel` handles fork, exit, wait, kill, getpid,
  sbrk, sleep, uptime and uthread_init itself; other calls, such as open,
  read, write or exec, fail as unknown unless handlers are passed to
  `Kernel(handlers=...)` by number.
- The shell module only parses command lines; it does not run commands.
- Nothing boots or runs machine code: there is no emulator, no console and
  no disk, keyboard or network driver. `PciBus` and `TcpResponder` work on
  values and bytes handed to them, and device interrupts reach `Kernel.trap`
  only through `irq_handlers`.

## Running the tests

```
pytest
```