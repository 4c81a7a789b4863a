"""ELF executable file and program headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

ELF_MAGIC = 0x464C457F  # "\x7FELF" in little endian

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4

_ELF_FORMAT = struct.Struct("<I12sHHIIIIIHHHHHH")
_PROG_FORMAT = struct.Struct("<8I")


def _check_length(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class ElfHeader:
    """The ELF file header."""

    SIZE: ClassVar[int] = _ELF_FORMAT.size

    magic: int = ELF_MAGIC
    elf: bytes = field(default=bytes(12))
    type: int = 0
    machine: int = 0
    version: int = 0
    entry: int = 0
    phoff: int = 0
    shoff: int = 0
    flags: int = 0
    ehsize: int = 0
    phentsize: int = 0
    phnum: int = 0
    shentsize: int = 0
    shnum: int = 0
    shstrndx: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "ElfHeader":
        data = bytes(data)
        _check_length(data, cls.SIZE, "ELF header")
        return cls(*_ELF_FORMAT.unpack_from(data))

    def to_bytes(self) -> bytes:
        return _ELF_FORMAT.pack(
            self.magic, bytes(self.elf), self.type, self.machine, self.version,
            self.entry, self.phoff, self.shoff, self.flags, self.ehsize,
            self.phentsize, self.phnum, self.shentsize, self.shnum, self.shstrndx,
        )


@dataclass
class ProgramHeader:
    """An ELF program section header."""

    SIZE: ClassVar[int] = _PROG_FORMAT.size

    type: int = 0
    off: int = 0
    vaddr: int = 0
    paddr: int = 0
    filesz: int = 0
    memsz: int = 0
    flags: int = 0
    align: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "ProgramHeader":
        data = bytes(data)
        _check_length(data, cls.SIZE, "program header")
        return cls(*_PROG_FORMAT.unpack_from(data))

    def to_bytes(self) -> bytes:
        return _PROG_FORMAT.pack(
            self.type, self.off, self.vaddr, self.paddr,
            self.filesz, self.memsz, self.flags, self.align,
        )