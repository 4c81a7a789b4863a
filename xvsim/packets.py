"""Ethernet, IPv4 and TCP headers, their checksums and a minimal TCP responder."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Callable, ClassVar, List, Optional, Tuple, Union

PKT_SIZE = 1600
ETH_TYPE_ARP = 0x0806
ETH_TYPE_IPV4 = 0x0800
IPV4_TYPE_TCP = 6
TCP_WINDOW = 14480
_UINT_MASK = 0xFFFFFFFF


class TcpFlags(enum.IntFlag):
    """TCP control bits."""

    FIN = 0x1
    SYN = 0x2
    RST = 0x4
    PSH = 0x8
    ACK = 0x10
    URG = 0x20


def _need(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


def _octets(value: bytes, n: int, what: str) -> bytes:
    value = bytes(value)
    if len(value) != n:
        raise ValueError(f"{what} must be {n} bytes, got {len(value)}")
    return value


_ETH = struct.Struct("!6s6sH")
_IPV4 = struct.Struct("!BBHHHBBH4s4s")
_TCP = struct.Struct("!HHIIBBHHH")


@dataclass
class EthHeader:
    """An Ethernet frame header."""

    SIZE: ClassVar[int] = _ETH.size

    dst_mac: bytes = bytes(6)
    src_mac: bytes = bytes(6)
    type: int = ETH_TYPE_IPV4

    def pack(self) -> bytes:
        return _ETH.pack(
            _octets(self.dst_mac, 6, "dst_mac"),
            _octets(self.src_mac, 6, "src_mac"),
            self.type & 0xFFFF,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "EthHeader":
        data = bytes(data)
        _need(data, cls.SIZE, "Ethernet header")
        return cls(*_ETH.unpack_from(data))


@dataclass
class Ipv4Header:
    """An IPv4 header without options; multi-byte fields hold host values."""

    SIZE: ClassVar[int] = _IPV4.size

    ver: int = 0x45
    srv_type: int = 0
    total_len: int = 0
    id: int = 0
    fragment: int = 0
    ttl: int = 0
    protocol: int = 0
    chk_sum: int = 0
    src_ip: bytes = bytes(4)
    dst_ip: bytes = bytes(4)

    @property
    def header_length(self) -> int:
        """Header length in bytes, as given by the IHL nibble."""
        return (self.ver & 0xF) * 4

    def pack(self) -> bytes:
        return _IPV4.pack(
            self.ver & 0xFF, self.srv_type & 0xFF, self.total_len & 0xFFFF,
            self.id & 0xFFFF, self.fragment & 0xFFFF, self.ttl & 0xFF,
            self.protocol & 0xFF, self.chk_sum & 0xFFFF,
            _octets(self.src_ip, 4, "src_ip"), _octets(self.dst_ip, 4, "dst_ip"),
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Ipv4Header":
        data = bytes(data)
        _need(data, cls.SIZE, "IPv4 header")
        return cls(*_IPV4.unpack_from(data))


@dataclass
class TcpHeader:
    """A TCP header without options; multi-byte fields hold host values."""

    SIZE: ClassVar[int] = _TCP.size

    src_port: int = 0
    dst_port: int = 0
    seq_num: int = 0
    ack_num: int = 0
    data_offset: int = 5
    flags: int = 0
    window: int = 0
    chk_sum: int = 0
    urgent_ptr: int = 0

    def pack(self) -> bytes:
        return _TCP.pack(
            self.src_port & 0xFFFF, self.dst_port & 0xFFFF,
            self.seq_num & _UINT_MASK, self.ack_num & _UINT_MASK,
            (self.data_offset & 0xF) << 4, self.flags & 0xFF,
            self.window & 0xFFFF, self.chk_sum & 0xFFFF, self.urgent_ptr & 0xFFFF,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "TcpHeader":
        data = bytes(data)
        _need(data, cls.SIZE, "TCP header")
        src, dst, seq, ack, off, flags, window, chk, urg = _TCP.unpack_from(data)
        return cls(src, dst, seq, ack, off >> 4, flags, window, chk, urg)


def _words(data: bytes) -> int:
    return sum(int.from_bytes(data[i:i + 2], "big") for i in range(0, len(data) - 1, 2))


def ipv4_checksum(header: Union[Ipv4Header, bytes]) -> int:
    """Internet checksum of an IPv4 header as given (zero its checksum field first)."""
    data = header.pack() if isinstance(header, Ipv4Header) else bytes(header)
    if len(data) % 2:
        data += b"\0"
    total = _words(data)
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def tcp_checksum(ip_packet: bytes, my_ip: bytes) -> int:
    """Checksum of the TCP segment after a 20-byte IPv4 header.

    The pseudo header carries my_ip as source and the packet's source
    address as destination; an odd trailing byte is left out and the
    carry is folded only once.
    """
    ip_packet = bytes(ip_packet)
    ip = Ipv4Header.unpack(ip_packet)
    tcp_len = (ip.total_len - Ipv4Header.SIZE) & 0xFFFF
    pseudo = (
        _octets(my_ip, 4, "my_ip") + ip.src_ip + b"\0"
        + bytes([IPV4_TYPE_TCP]) + tcp_len.to_bytes(2, "big")
    )
    segment = ip_packet[Ipv4Header.SIZE:Ipv4Header.SIZE + tcp_len // 2 * 2]
    if len(segment) != tcp_len // 2 * 2:
        raise ValueError("packet is shorter than its total length")
    total = _words(pseudo) + _words(segment)
    total += total >> 16
    return ~total & 0xFFFF


def _next_ack(seq: int) -> int:
    # Only the last byte on the wire is advanced; a carry out of it is lost.
    return (seq & 0xFFFFFF00) | ((seq + 1) & 0xFF)


def _swap16(value: int) -> int:
    return ((value & 0xFF) << 8) | ((value >> 8) & 0xFF)


class TcpResponder:
    """Answers TCP frames addressed to one host with an HTTP payload source."""

    def __init__(
        self,
        mac: bytes,
        ip: bytes,
        http: Optional[Callable[[], bytes]] = None,
    ) -> None:
        self.mac = _octets(mac, 6, "mac")
        self.ip = _octets(ip, 4, "ip")
        self.http = http if http is not None else (lambda: b"")
        self.seq_num = 0
        self.send_id = 0
        self.fin_flag = False

    @staticmethod
    def _parse(frame: bytes) -> Tuple[EthHeader, Ipv4Header, TcpHeader]:
        frame = bytes(frame)
        eth = EthHeader.unpack(frame)
        ip = Ipv4Header.unpack(frame[EthHeader.SIZE:])
        tcp = TcpHeader.unpack(frame[EthHeader.SIZE + ip.header_length:])
        return eth, ip, tcp

    def create_packet(self, frame: bytes, flags: int, payload: bytes = b"") -> bytes:
        """A reply frame to frame carrying flags and payload."""
        eth_r, ip_r, tcp_r = self._parse(frame)
        payload = bytes(payload)
        eth = EthHeader(eth_r.src_mac, self.mac, ETH_TYPE_IPV4)
        ip = Ipv4Header(
            ver=0x45,
            srv_type=0,
            total_len=(Ipv4Header.SIZE + TcpHeader.SIZE + len(payload)) & 0xFFFF,
            id=_swap16(self.send_id),
            fragment=0,
            ttl=255,
            protocol=IPV4_TYPE_TCP,
            chk_sum=0,
            src_ip=self.ip,
            dst_ip=ip_r.src_ip,
        )
        self.send_id = (self.send_id + 1) & 0xFFFF
        ip.chk_sum = ipv4_checksum(ip)
        tcp = TcpHeader(
            src_port=tcp_r.dst_port,
            dst_port=tcp_r.src_port,
            seq_num=self.seq_num & _UINT_MASK,
            ack_num=_next_ack(tcp_r.seq_num),
            data_offset=5,
            flags=int(flags) & 0xFF,
            window=TCP_WINDOW,
            chk_sum=0,
            urgent_ptr=0,
        )
        tcp.chk_sum = (tcp_checksum(ip.pack() + tcp.pack() + payload, self.ip) + 8) & 0xFFFF
        return eth.pack() + ip.pack() + tcp.pack() + payload

    def handle(self, frame: bytes) -> List[bytes]:
        """Frames to send in answer to a received TCP frame."""
        _, _, tcp = self._parse(frame)
        sent: List[bytes] = []
        if tcp.flags & TcpFlags.SYN:
            sent.append(self.create_packet(frame, TcpFlags.ACK | TcpFlags.SYN))
            self.seq_num = (self.seq_num + 1) & _UINT_MASK
        elif tcp.flags == TcpFlags.PSH | TcpFlags.ACK:
            sent.append(self.create_packet(frame, TcpFlags.ACK))
            payload = bytes(self.http())
            sent.append(self.create_packet(frame, TcpFlags.ACK | TcpFlags.PSH, payload))
            self.seq_num = (self.seq_num + 1) & _UINT_MASK
        elif tcp.flags == TcpFlags.ACK and self.fin_flag:
            sent.append(self.create_packet(frame, TcpFlags.FIN))
            self.fin_flag = False
        return sent

    def fin(self) -> None:
        """Send FIN in answer to the next bare ACK."""
        self.fin_flag = True