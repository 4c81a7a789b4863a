"""Reading CPU and I/O APIC identifiers from an ACPI MADT."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Tuple

from .mmu import NCPU

UEFI_MP_LAPIC = 0x0
UEFI_MP_IOAPIC = 0x1
_MP_ISO = 0x2
_MP_NMI = 0x4
_MP_LAPIC_OVERRIDE = 0x5

_HEADER = struct.Struct("<4sIBB6s8sIIIII")
_MIN_RECORD = {UEFI_MP_LAPIC: 4, UEFI_MP_IOAPIC: 3, _MP_ISO: 2, _MP_NMI: 2}


@dataclass
class MadtInfo:
    """What the kernel takes from the MADT."""

    signature: bytes = b""
    revision: int = 0
    oem_id: bytes = b""
    lapic_addr: int = 0
    flags: int = 0
    apic_ids: Tuple[int, ...] = field(default_factory=tuple)
    ioapic_id: int = 0

    @property
    def ncpu(self) -> int:
        """Number of CPUs recorded."""
        return len(self.apic_ids)


def parse_madt(data: bytes, ncpu: int = NCPU) -> MadtInfo:
    """Parse a MADT, recording at most ncpu local APIC ids."""
    data = bytes(data)
    if len(data) < _HEADER.size:
        raise ValueError(f"MADT header needs {_HEADER.size} bytes, got {len(data)}")
    sig, length, rev, _chksum, oem_id, _table, _oem_rev, _cid, _crev, lapic_addr, flags = (
        _HEADER.unpack_from(data)
    )
    if length > len(data):
        raise ValueError(f"MADT claims {length} bytes but only {len(data)} are given")

    apic_ids = []
    ioapic_id = 0
    i = _HEADER.size
    while i < length:
        entry_type = data[i]
        if entry_type == _MP_LAPIC_OVERRIDE:
            i += 0xC
            continue
        if entry_type not in _MIN_RECORD:
            raise ValueError(f"unknown MADT entry type {entry_type} at offset {i}")
        if i + 2 > length:
            raise ValueError(f"truncated MADT entry at offset {i}")
        record_len = data[i + 1]
        if record_len < _MIN_RECORD[entry_type] or i + record_len > length:
            raise ValueError(f"bad MADT record length {record_len} at offset {i}")
        if entry_type == UEFI_MP_LAPIC:
            if len(apic_ids) < ncpu:
                apic_ids.append(data[i + 3])
        elif entry_type == UEFI_MP_IOAPIC:
            ioapic_id = data[i + 2]
        i += record_len

    return MadtInfo(
        signature=sig,
        revision=rev,
        oem_id=oem_id,
        lapic_addr=lapic_addr,
        flags=flags,
        apic_ids=tuple(apic_ids),
        ioapic_id=ioapic_id,
    )