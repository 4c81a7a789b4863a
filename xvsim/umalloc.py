"""First-fit heap allocator keeping a circular, address-ordered free list."""

from __future__ import annotations

import bisect
from typing import Callable, Dict, List, Optional, Tuple

HEADER_SIZE = 8
_MIN_UNITS = 4096
_BASE_ADDR = -HEADER_SIZE


class Allocator:
    """Hands out blocks of a heap that grows through an sbrk callable.

    sbrk(n) returns the start address of n new bytes or raises MemoryError.
    Without one, the heap grows from heap_start up to heap_limit.
    """

    def __init__(
        self,
        sbrk: Optional[Callable[[int], int]] = None,
        heap_start: int = 0x4000,
        heap_limit: Optional[int] = None,
    ) -> None:
        self._brk = heap_start
        self._limit = heap_limit
        self._sbrk = sbrk if sbrk is not None else self._default_sbrk
        self._blocks: List[List[int]] = []
        self._rover: Optional[int] = None
        self._allocated: Dict[int, int] = {}

    def _default_sbrk(self, n: int) -> int:
        if self._limit is not None and self._brk + n > self._limit:
            raise MemoryError("heap limit reached")
        start = self._brk
        self._brk += n
        return start

    def _next(self, i: int) -> int:
        return (i + 1) % len(self._blocks)

    def _morecore(self, nunits: int) -> int:
        nu = max(nunits, _MIN_UNITS)
        addr = self._sbrk(nu * HEADER_SIZE)
        self._allocated[addr] = nu
        self.free(addr + HEADER_SIZE)
        return self._rover

    def malloc(self, nbytes: int) -> int:
        """Address of a block of at least nbytes; raises MemoryError if the heap cannot grow."""
        if nbytes < 0:
            raise ValueError("size must not be negative")
        nunits = (nbytes + HEADER_SIZE - 1) // HEADER_SIZE + 1
        if self._rover is None:
            self._blocks = [[_BASE_ADDR, 0]]
            self._rover = 0
        prev = self._rover
        p = self._next(prev)
        while True:
            block = self._blocks[p]
            if block[1] >= nunits:
                if block[1] == nunits:
                    del self._blocks[p]
                    if p < prev:
                        prev -= 1
                    addr = block[0]
                else:
                    block[1] -= nunits
                    addr = block[0] + block[1] * HEADER_SIZE
                self._allocated[addr] = nunits
                self._rover = prev
                return addr + HEADER_SIZE
            if p == self._rover:
                p = self._morecore(nunits)
            prev = p
            p = self._next(p)

    def free(self, addr: int) -> None:
        """Return a block from malloc, merging it with free neighbours."""
        bp = addr - HEADER_SIZE
        try:
            size = self._allocated.pop(bp)
        except KeyError:
            raise ValueError(f"address {addr:#x} was not allocated") from None
        keys = [b[0] for b in self._blocks]
        i = bisect.bisect_left(keys, bp) - 1
        nxt = i + 1
        block = [bp, size]
        if nxt < len(self._blocks) and bp + size * HEADER_SIZE == self._blocks[nxt][0]:
            block[1] += self._blocks[nxt][1]
            del self._blocks[nxt]
        p = self._blocks[i]
        if p[0] + p[1] * HEADER_SIZE == bp:
            p[1] += block[1]
        else:
            self._blocks.insert(i + 1, block)
        self._rover = i

    def free_blocks(self) -> List[Tuple[int, int]]:
        """Free blocks as (header address, size in bytes), in address order."""
        return [(a, units * HEADER_SIZE) for a, units in self._blocks[1:]]