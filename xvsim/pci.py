"""PCI configuration-space access and bus enumeration."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO, Callable, Dict, List, Mapping, Optional, Tuple

PCI_CONFIG_ADDRESS_PORT = 0xCF8
PCI_CONFIG_DATA_PORT = 0xCFC
PCI_CMD_BUS_MASTER = 1 << 2
PCI_CMD_INTR_DISABLE = 1 << 10

_UINT_MASK = 0xFFFFFFFF

Driver = Callable[["PciDevice"], None]


def config_address(bus_num: int, device_num: int, function_num: int, reg_addr: int) -> int:
    """The value written to the configuration address port."""
    return (
        ((bus_num & 0xFF) << 16)
        | ((device_num & 0x1F) << 11)
        | ((function_num & 0x7) << 8)
        | (reg_addr & 0xFC)
        | 0x80000000
    )


@dataclass
class PciDevice:
    """Identification and base addresses of one PCI function."""

    bus_num: int = 0
    device_num: int = 0
    function_num: int = 0
    device_id: int = 0
    vendor_id: int = 0
    base_class: int = 0
    sub_class: int = 0
    interface: int = 0
    revision_id: int = 0
    bar0: int = 0
    bar1: int = 0


class PciBus:
    """A PCI bus reached through config-space read and write callables.

    read_config(address) returns the 32-bit register selected by address.
    Drivers are keyed by (vendor_id, device_id).
    """

    def __init__(
        self,
        read_config: Callable[[int], int],
        write_config: Optional[Callable[[int, int], None]] = None,
        drivers: Optional[Mapping[Tuple[int, int], Driver]] = None,
        log: Optional[IO[str]] = None,
    ) -> None:
        self._read = read_config
        self._write = write_config
        self.drivers: Dict[Tuple[int, int], Driver] = dict(drivers or {})
        self.log = log if log is not None else sys.stdout

    def read_register(self, bus_num: int, device_num: int, function_num: int, reg_addr: int) -> int:
        """Read one 32-bit configuration register."""
        return self._read(config_address(bus_num, device_num, function_num, reg_addr)) & _UINT_MASK

    def write_register(
        self, bus_num: int, device_num: int, function_num: int, reg_addr: int, data: int
    ) -> None:
        """Write one 32-bit configuration register."""
        if self._write is None:
            raise PermissionError("this bus has no configuration writer")
        self._write(config_address(bus_num, device_num, function_num, reg_addr), data & _UINT_MASK)

    def read_device(self, bus_num: int, device_num: int, function_num: int) -> PciDevice:
        """Read a function's identity, report it and start its driver if one is known."""
        write = self.log.write
        dev = PciDevice(bus_num & 0xFF, device_num & 0xFF, function_num & 0xFF)
        write(f"PCI Device Found Bus:0x{bus_num:x} Device:0x{device_num:x} Function:{function_num:x}\n")

        data = self.read_register(bus_num, device_num, function_num, 0)
        dev.device_id = data >> 16
        dev.vendor_id = data & 0xFFFF
        write(f"  Device ID:0x{dev.device_id:x}  Vendor ID:0x{dev.vendor_id:x}\n")

        data = self.read_register(bus_num, device_num, function_num, 0x8)
        dev.base_class = data >> 24
        dev.sub_class = (data >> 16) & 0xFF
        dev.interface = (data >> 8) & 0xFF
        dev.revision_id = data & 0xFF
        write(
            f"  Base Class:0x{dev.base_class:x}  Sub Class:0x{dev.sub_class:x}"
            f"  Interface:0x{dev.interface:x}  Revision ID:0x{dev.revision_id:x}\n"
        )

        dev.bar0 = self.read_register(bus_num, device_num, function_num, 0x10)
        dev.bar1 = self.read_register(bus_num, device_num, function_num, 0x14)

        driver = self.drivers.get((dev.vendor_id, dev.device_id))
        if driver is not None:
            data = self.read_register(bus_num, device_num, function_num, 0xF0)
            write(f"Message Control:{data:x}\n")
            driver(dev)
        return dev

    def scan(self) -> List[PciDevice]:
        """Every present function on every bus, in bus, device, function order."""
        found = []
        for bus in range(256):
            for device in range(32):
                for function in range(8):
                    if self.read_register(bus, device, function, 0) & 0xFFFF != 0xFFFF:
                        found.append(self.read_device(bus, device, function))
        return found