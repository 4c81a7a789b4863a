"""x86 memory-management definitions: segments, gates, paging helpers and layout constants."""

from __future__ import annotations

from dataclasses import dataclass, fields

UINT_MASK = 0xFFFFFFFF

# Eflags register
FL_CF = 0x00000001
FL_PF = 0x00000004
FL_AF = 0x00000010
FL_ZF = 0x00000040
FL_SF = 0x00000080
FL_TF = 0x00000100
FL_IF = 0x00000200
FL_DF = 0x00000400
FL_OF = 0x00000800
FL_IOPL_MASK = 0x00003000
FL_IOPL_0 = 0x00000000
FL_IOPL_1 = 0x00001000
FL_IOPL_2 = 0x00002000
FL_IOPL_3 = 0x00003000
FL_NT = 0x00004000
FL_RF = 0x00010000
FL_VM = 0x00020000
FL_AC = 0x00040000
FL_VIF = 0x00080000
FL_VIP = 0x00100000
FL_ID = 0x00200000

# Control register flags
CR0_PE = 0x00000001
CR0_MP = 0x00000002
CR0_EM = 0x00000004
CR0_TS = 0x00000008
CR0_ET = 0x00000010
CR0_NE = 0x00000020
CR0_WP = 0x00010000
CR0_AM = 0x00040000
CR0_NW = 0x20000000
CR0_CD = 0x40000000
CR0_PG = 0x80000000
CR4_PSE = 0x00000010

# Segment selectors
SEG_KCODE = 1
SEG_KDATA = 2
SEG_UCODE = 3
SEG_UDATA = 4
SEG_TSS = 5
NSEGS = 6

DPL_USER = 0x3

# Application segment type bits
STA_X = 0x8
STA_E = 0x4
STA_C = 0x4
STA_W = 0x2
STA_R = 0x2
STA_A = 0x1

# System segment type bits
STS_T16A = 0x1
STS_LDT = 0x2
STS_T16B = 0x3
STS_CG16 = 0x4
STS_TG = 0x5
STS_IG16 = 0x6
STS_TG16 = 0x7
STS_T32A = 0x9
STS_T32B = 0xB
STS_CG32 = 0xC
STS_IG32 = 0xE
STS_TG32 = 0xF

# Paging
NPDENTRIES = 1024
NPTENTRIES = 1024
PGSIZE = 4096
PGSHIFT = 12
PTXSHIFT = 12
PDXSHIFT = 22

PTE_P = 0x001
PTE_W = 0x002
PTE_U = 0x004
PTE_PWT = 0x008
PTE_PCD = 0x010
PTE_A = 0x020
PTE_D = 0x040
PTE_PS = 0x080
PTE_MBZ = 0x180

# Memory layout
EXTMEM = 0x100000
PHYSTOP = 0x20000000
DEVSPACE = 0xFE000000
BOOTPARAM = 0x50000
KERNBASE = 0x80000000
KERNLINK = KERNBASE + EXTMEM
PCI_BAR_BASE = 0x80000000
PCI_VP_OFFSET = 0x40000000

# Kernel parameters
NPROC = 64
KSTACKSIZE = 4096
NCPU = 4
NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 1000


class KernelPanic(RuntimeError):
    """Raised where the kernel would halt with a panic message."""


def pdx(va: int) -> int:
    """Page directory index of a virtual address."""
    return ((va & UINT_MASK) >> PDXSHIFT) & 0x3FF


def ptx(va: int) -> int:
    """Page table index of a virtual address."""
    return ((va & UINT_MASK) >> PTXSHIFT) & 0x3FF


def pgaddr(d: int, t: int, o: int) -> int:
    """Build a virtual address from directory index, table index and offset."""
    return ((d << PDXSHIFT) | (t << PTXSHIFT) | o) & UINT_MASK


def pgroundup(sz: int) -> int:
    """Round up to a page boundary."""
    return (sz + PGSIZE - 1) & ~(PGSIZE - 1) & UINT_MASK


def pgrounddown(a: int) -> int:
    """Round down to a page boundary."""
    return a & ~(PGSIZE - 1) & UINT_MASK


def pte_addr(pte: int) -> int:
    """Physical address held in a page table entry."""
    return pte & UINT_MASK & ~0xFFF


def pte_flags(pte: int) -> int:
    """Flag bits of a page table entry."""
    return pte & 0xFFF


def v2p(a: int) -> int:
    """Kernel virtual address to physical address."""
    return (a - KERNBASE) & UINT_MASK


def p2v(a: int) -> int:
    """Physical address to kernel virtual address."""
    return (a + KERNBASE) & UINT_MASK


def seg_asm(type: int, base: int, lim: int) -> bytes:
    """The eight bytes the boot assembler emits for a flat 32-bit segment."""
    words = (((lim >> 12) & 0xFFFF), (base & 0xFFFF))
    tail = (
        (base >> 16) & 0xFF,
        0x90 | type,
        0xC0 | ((lim >> 28) & 0xF),
        (base >> 24) & 0xFF,
    )
    return b"".join(w.to_bytes(2, "little") for w in words) + bytes(tail)


def _pack(obj, layout) -> bytes:
    value = 0
    shift = 0
    for name, width in layout:
        value |= (getattr(obj, name) & ((1 << width) - 1)) << shift
        shift += width
    return value.to_bytes(8, "little")


def _unpack(data: bytes, layout) -> dict:
    if len(data) != 8:
        raise ValueError(f"descriptor must be 8 bytes, got {len(data)}")
    value = int.from_bytes(bytes(data), "little")
    result = {}
    for name, width in layout:
        result[name] = value & ((1 << width) - 1)
        value >>= width
    return result


_SEG_LAYOUT = (
    ("lim_15_0", 16),
    ("base_15_0", 16),
    ("base_23_16", 8),
    ("type", 4),
    ("s", 1),
    ("dpl", 2),
    ("p", 1),
    ("lim_19_16", 4),
    ("avl", 1),
    ("rsv1", 1),
    ("db", 1),
    ("g", 1),
    ("base_31_24", 8),
)

_GATE_LAYOUT = (
    ("off_15_0", 16),
    ("cs", 16),
    ("args", 5),
    ("rsv1", 3),
    ("type", 4),
    ("s", 1),
    ("dpl", 2),
    ("p", 1),
    ("off_31_16", 16),
)


def _masked(layout, values: dict) -> dict:
    widths = dict(layout)
    return {k: v & ((1 << widths[k]) - 1) for k, v in values.items()}


@dataclass
class SegmentDescriptor:
    """A GDT segment descriptor with its bit fields."""

    lim_15_0: int = 0
    base_15_0: int = 0
    base_23_16: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    lim_19_16: int = 0
    avl: int = 0
    rsv1: int = 0
    db: int = 0
    g: int = 0
    base_31_24: int = 0

    @classmethod
    def seg(cls, type: int, base: int, lim: int, dpl: int) -> "SegmentDescriptor":
        """A normal segment with 4K granularity."""
        base &= UINT_MASK
        lim &= UINT_MASK
        return cls(**_masked(_SEG_LAYOUT, dict(
            lim_15_0=(lim >> 12) & 0xFFFF,
            base_15_0=base & 0xFFFF,
            base_23_16=(base >> 16) & 0xFF,
            type=type, s=1, dpl=dpl, p=1,
            lim_19_16=lim >> 28,
            avl=0, rsv1=0, db=1, g=1,
            base_31_24=base >> 24,
        )))

    @classmethod
    def seg16(cls, type: int, base: int, lim: int, dpl: int) -> "SegmentDescriptor":
        """A segment with byte granularity."""
        base &= UINT_MASK
        lim &= UINT_MASK
        return cls(**_masked(_SEG_LAYOUT, dict(
            lim_15_0=lim & 0xFFFF,
            base_15_0=base & 0xFFFF,
            base_23_16=(base >> 16) & 0xFF,
            type=type, s=1, dpl=dpl, p=1,
            lim_19_16=lim >> 16,
            avl=0, rsv1=0, db=1, g=0,
            base_31_24=base >> 24,
        )))

    def to_bytes(self) -> bytes:
        return _pack(self, _SEG_LAYOUT)

    @classmethod
    def from_bytes(cls, data: bytes) -> "SegmentDescriptor":
        return cls(**_unpack(data, _SEG_LAYOUT))


@dataclass
class GateDescriptor:
    """An IDT interrupt or trap gate descriptor."""

    off_15_0: int = 0
    cs: int = 0
    args: int = 0
    rsv1: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    off_31_16: int = 0

    @classmethod
    def make(cls, istrap: bool, sel: int, off: int, dpl: int) -> "GateDescriptor":
        """A present gate; trap gates leave interrupts enabled."""
        off &= UINT_MASK
        return cls(**_masked(_GATE_LAYOUT, dict(
            off_15_0=off & 0xFFFF,
            cs=sel,
            args=0,
            rsv1=0,
            type=STS_TG32 if istrap else STS_IG32,
            s=0,
            dpl=dpl,
            p=1,
            off_31_16=off >> 16,
        )))

    def to_bytes(self) -> bytes:
        return _pack(self, _GATE_LAYOUT)

    @classmethod
    def from_bytes(cls, data: bytes) -> "GateDescriptor":
        return cls(**_unpack(data, _GATE_LAYOUT))


def _field_names(cls) -> tuple:
    return tuple(f.name for f in fields(cls))