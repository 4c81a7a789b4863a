"""Two-level x86 page tables kept in simulated physical memory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .mmu import (
    KERNBASE,
    NPDENTRIES,
    PDXSHIFT,
    PGSIZE,
    PTE_P,
    PTE_U,
    PTE_W,
    UINT_MASK,
    KernelPanic,
    pdx,
    pgrounddown,
    pgroundup,
    pte_addr,
    pte_flags,
    ptx,
)

_ENTRY_SIZE = 4


class OutOfMemory(MemoryError):
    """No physical page was left for an allocation."""


class PhysicalMemory:
    """A contiguous range of page frames with a free list of pages."""

    def __init__(self, npages: int = 1024, base: int = 0x400000) -> None:
        if npages <= 0:
            raise ValueError("npages must be positive")
        if base <= 0 or base % PGSIZE:
            raise ValueError("base must be a positive page-aligned address")
        self.base = base
        self.size = npages * PGSIZE
        self._data = bytearray(self.size)
        self.free_pages: List[int] = [base + i * PGSIZE for i in reversed(range(npages))]
        self._allocated: set = set()

    def kalloc(self) -> int:
        """Take one free page and return its physical address."""
        if not self.free_pages:
            raise OutOfMemory("out of physical pages")
        pa = self.free_pages.pop()
        self._allocated.add(pa)
        return pa

    def kfree(self, pa: int) -> None:
        """Return an allocated page to the free list."""
        if pa not in self._allocated:
            raise KernelPanic("kfree")
        self._allocated.remove(pa)
        self.free_pages.append(pa)

    def _offset(self, pa: int, n: int) -> int:
        if n < 0 or pa < self.base or pa + n > self.base + self.size:
            raise ValueError(f"physical range {pa:#x}+{n} is outside memory")
        return pa - self.base

    def read(self, pa: int, n: int) -> bytes:
        """Read n bytes at a physical address."""
        off = self._offset(pa, n)
        return bytes(self._data[off:off + n])

    def write(self, pa: int, data: bytes) -> None:
        """Write bytes at a physical address."""
        data = bytes(data)
        off = self._offset(pa, len(data))
        self._data[off:off + len(data)] = data

    def _load(self, pa: int) -> int:
        return int.from_bytes(self.read(pa, _ENTRY_SIZE), "little")

    def _store(self, pa: int, value: int) -> None:
        self.write(pa, (value & UINT_MASK).to_bytes(_ENTRY_SIZE, "little"))


@dataclass(frozen=True)
class KernelMapping:
    """A range of physical memory mapped at a kernel virtual address."""

    virt: int
    phys_start: int
    phys_end: int
    perm: int


class AddressSpace:
    """A page directory with the kernel mappings and a user part below KERNBASE."""

    def __init__(self, memory: PhysicalMemory, kernel_mappings: Iterable[KernelMapping] = ()) -> None:
        self.memory = memory
        self.kernel_mappings = tuple(kernel_mappings)
        pgdir = memory.kalloc()
        memory.write(pgdir, bytes(PGSIZE))
        self.pgdir: Optional[int] = pgdir
        try:
            for k in self.kernel_mappings:
                size = (k.phys_end - k.phys_start) & UINT_MASK
                self.map_pages(k.virt, size, k.phys_start, k.perm)
        except OutOfMemory:
            self.free()
            raise

    def _require_pgdir(self, message: str) -> int:
        if self.pgdir is None:
            raise KernelPanic(message)
        return self.pgdir

    def walk(self, va: int, alloc: bool) -> Optional[int]:
        """Physical address of the entry for va, creating its page table if alloc."""
        pgdir = self._require_pgdir("walkpgdir: no pgdir")
        pde_pa = pgdir + _ENTRY_SIZE * pdx(va)
        pde = self.memory._load(pde_pa)
        if pde & PTE_P:
            pgtab = pte_addr(pde)
        else:
            if not alloc:
                return None
            try:
                pgtab = self.memory.kalloc()
            except OutOfMemory:
                return None
            self.memory.write(pgtab, bytes(PGSIZE))
            self.memory._store(pde_pa, pgtab | PTE_P | PTE_W | PTE_U)
        return pgtab + _ENTRY_SIZE * ptx(va)

    def map_pages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map the pages covering [va, va+size) to physical memory starting at pa."""
        a = pgrounddown(va)
        last = pgrounddown((va + size - 1) & UINT_MASK)
        while True:
            pte = self.walk(a, True)
            if pte is None:
                raise OutOfMemory("no memory for a page table")
            if self.memory._load(pte) & PTE_P:
                raise KernelPanic("remap")
            self.memory._store(pte, (pa | perm | PTE_P) & UINT_MASK)
            if a == last:
                break
            a = (a + PGSIZE) & UINT_MASK
            pa = (pa + PGSIZE) & UINT_MASK

    def inituvm(self, init: bytes) -> None:
        """Load less than a page of code at address 0."""
        init = bytes(init)
        if len(init) >= PGSIZE:
            raise KernelPanic("inituvm: more than a page")
        mem = self.memory.kalloc()
        self.memory.write(mem, bytes(PGSIZE))
        self.map_pages(0, PGSIZE, mem, PTE_W | PTE_U)
        self.memory.write(mem, init)

    def loaduvm(self, addr: int, data: bytes, offset: int, sz: int) -> None:
        """Copy sz bytes of data from offset into already mapped pages at addr."""
        if addr % PGSIZE:
            raise KernelPanic("loaduvm: addr must be page aligned")
        for i in range(0, sz, PGSIZE):
            pte = self.walk(addr + i, False)
            if pte is None:
                raise KernelPanic("loaduvm: address should exist")
            pa = pte_addr(self.memory._load(pte))
            n = min(sz - i, PGSIZE)
            chunk = bytes(data[offset + i:offset + i + n])
            if len(chunk) != n:
                raise ValueError("segment runs past the end of the data")
            self.memory.write(pa, chunk)

    def allocuvm(self, oldsz: int, newsz: int) -> int:
        """Grow the user part from oldsz to newsz; returns the new size."""
        if newsz >= KERNBASE:
            raise OutOfMemory("user memory would reach KERNBASE")
        if newsz < oldsz:
            return oldsz
        a = pgroundup(oldsz)
        while a < newsz:
            try:
                mem = self.memory.kalloc()
            except OutOfMemory:
                self.deallocuvm(newsz, oldsz)
                raise OutOfMemory("allocuvm out of memory") from None
            self.memory.write(mem, bytes(PGSIZE))
            try:
                self.map_pages(a, PGSIZE, mem, PTE_W | PTE_U)
            except OutOfMemory:
                self.deallocuvm(newsz, oldsz)
                self.memory.kfree(mem)
                raise OutOfMemory("allocuvm out of memory (2)") from None
            a += PGSIZE
        return newsz

    def deallocuvm(self, oldsz: int, newsz: int) -> int:
        """Shrink the user part from oldsz to newsz; returns the new size."""
        if newsz >= oldsz:
            return oldsz
        a = pgroundup(newsz)
        while a < oldsz:
            pte = self.walk(a, False)
            if pte is None:
                a = ((pdx(a) + 1) << PDXSHIFT) - PGSIZE
            else:
                entry = self.memory._load(pte)
                if entry & PTE_P:
                    pa = pte_addr(entry)
                    if pa == 0:
                        raise KernelPanic("kfree")
                    self.memory.kfree(pa)
                    self.memory._store(pte, 0)
            a += PGSIZE
        return newsz

    def free(self) -> None:
        """Free the user pages, every page table and the directory."""
        pgdir = self._require_pgdir("freevm: no pgdir")
        self.deallocuvm(KERNBASE, 0)
        for i in range(NPDENTRIES):
            pde = self.memory._load(pgdir + _ENTRY_SIZE * i)
            if pde & PTE_P:
                self.memory.kfree(pte_addr(pde))
        self.memory.kfree(pgdir)
        self.pgdir = None

    def clearpteu(self, uva: int) -> None:
        """Make the page at uva inaccessible to user code."""
        pte = self.walk(uva, False)
        if pte is None:
            raise KernelPanic("clearpteu")
        self.memory._store(pte, self.memory._load(pte) & ~PTE_U)

    def copy(self, sz: int) -> "AddressSpace":
        """A new address space holding a copy of the first sz bytes of user memory."""
        child = AddressSpace(self.memory, self.kernel_mappings)
        try:
            for i in range(0, sz, PGSIZE):
                pte = self.walk(i, False)
                if pte is None:
                    raise KernelPanic("copyuvm: pte should exist")
                entry = self.memory._load(pte)
                if not entry & PTE_P:
                    raise KernelPanic("copyuvm: page not present")
                mem = self.memory.kalloc()
                self.memory.write(mem, self.memory.read(pte_addr(entry), PGSIZE))
                try:
                    child.map_pages(i, PGSIZE, mem, pte_flags(entry))
                except OutOfMemory:
                    self.memory.kfree(mem)
                    raise
        except OutOfMemory:
            child.free()
            raise
        return child

    def uva2ka(self, uva: int) -> Optional[int]:
        """Physical address of the user page holding uva, or None if not user-accessible."""
        pte = self.walk(uva, False)
        if pte is None:
            return None
        entry = self.memory._load(pte)
        if not entry & PTE_P or not entry & PTE_U:
            return None
        return pte_addr(entry)

    def copyout(self, va: int, data: bytes) -> None:
        """Copy data to user address va."""
        data = bytes(data)
        pos = 0
        while pos < len(data):
            va0 = pgrounddown(va)
            pa0 = self.uva2ka(va0)
            if pa0 is None:
                raise ValueError(f"user address {va0:#x} is not mapped")
            n = min(PGSIZE - (va - va0), len(data) - pos)
            self.memory.write(pa0 + (va - va0), data[pos:pos + n])
            pos += n
            va = va0 + PGSIZE

    def copyin(self, va: int, n: int) -> bytes:
        """Read n bytes from user address va."""
        chunks = []
        remaining = n
        while remaining > 0:
            va0 = pgrounddown(va)
            pa0 = self.uva2ka(va0)
            if pa0 is None:
                raise ValueError(f"user address {va0:#x} is not mapped")
            step = min(PGSIZE - (va - va0), remaining)
            chunks.append(self.memory.read(pa0 + (va - va0), step))
            remaining -= step
            va = va0 + PGSIZE
        return b"".join(chunks)