import pytest

from xvsim.packets import (
    ETH_TYPE_IPV4,
    EthHeader,
    Ipv4Header,
    TcpFlags,
    TcpHeader,
    TcpResponder,
    ipv4_checksum,
    tcp_checksum,
)

CLIENT_MAC = bytes.fromhex("020000000001")
SERVER_MAC = bytes.fromhex("020000000002")
CLIENT_IP = bytes([10, 0, 0, 1])
SERVER_IP = bytes([10, 0, 0, 2])


def make_frame(flags, seq=0x01020304, payload=b"", ihl=5):
    tcp = TcpHeader(40000, 80, seq, 0, 5, int(flags), 1024, 0, 0)
    ip = Ipv4Header(
        ver=0x40 | ihl, total_len=ihl * 4 + 20 + len(payload), ttl=64,
        protocol=6, src_ip=CLIENT_IP, dst_ip=SERVER_IP,
    )
    eth = EthHeader(SERVER_MAC, CLIENT_MAC, ETH_TYPE_IPV4)
    return eth.pack() + ip.pack() + bytes((ihl - 5) * 4) + tcp.pack() + payload


def parse(frame):
    eth = EthHeader.unpack(frame)
    ip = Ipv4Header.unpack(frame[14:])
    tcp = TcpHeader.unpack(frame[34:])
    return eth, ip, tcp, frame[54:]


def test_eth_roundtrip_and_type_bytes():
    eth = EthHeader(CLIENT_MAC, SERVER_MAC, ETH_TYPE_IPV4)
    data = eth.pack()
    assert data[12:] == b"\x08\x00"
    assert EthHeader.unpack(data) == eth


def test_bad_mac_length():
    with pytest.raises(ValueError):
        EthHeader(b"\x01", SERVER_MAC).pack()


def test_ipv4_known_checksum():
    header = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")
    assert ipv4_checksum(header) == 0xB861


def test_ipv4_roundtrip_and_checksum_verifies():
    ip = Ipv4Header(total_len=40, ttl=64, protocol=6, src_ip=CLIENT_IP, dst_ip=SERVER_IP)
    ip.chk_sum = ipv4_checksum(ip)
    assert Ipv4Header.unpack(ip.pack()) == ip
    assert ipv4_checksum(ip.pack()) == 0


def test_tcp_header_roundtrip_and_offset_byte():
    tcp = TcpHeader(1, 2, 3, 4, 5, int(TcpFlags.SYN), 100, 0, 0)
    data = tcp.pack()
    assert data[12] == 5 << 4
    assert TcpHeader.unpack(data) == tcp


def test_short_header_raises():
    with pytest.raises(ValueError):
        TcpHeader.unpack(b"\x00" * 10)


def test_syn_gets_syn_ack():
    r = TcpResponder(SERVER_MAC, SERVER_IP)
    sent = r.handle(make_frame(TcpFlags.SYN))
    assert len(sent) == 1
    eth, ip, tcp, _ = parse(sent[0])
    assert tcp.flags == TcpFlags.SYN | TcpFlags.ACK
    assert (tcp.src_port, tcp.dst_port) == (80, 40000)
    assert tcp.seq_num == 0
    assert tcp.ack_num == 0x01020304 + 1
    assert eth.dst_mac == CLIENT_MAC and eth.src_mac == SERVER_MAC
    assert ip.dst_ip == CLIENT_IP and ip.src_ip == SERVER_IP
    assert ip.ttl == 255
    assert ipv4_checksum(sent[0][14:34]) == 0
    assert r.seq_num == 1


def test_ack_only_advances_last_byte():
    r = TcpResponder(SERVER_MAC, SERVER_IP)
    frame = r.create_packet(make_frame(TcpFlags.SYN, seq=0x010203FF), TcpFlags.ACK)
    assert parse(frame)[2].ack_num == 0x01020300


def test_push_ack_sends_ack_then_payload():
    r = TcpResponder(SERVER_MAC, SERVER_IP, http=lambda: b"hello")
    sent = r.handle(make_frame(TcpFlags.PSH | TcpFlags.ACK, payload=b"GET /"))
    assert len(sent) == 2
    _, ip0, tcp0, body0 = parse(sent[0])
    _, ip1, tcp1, body1 = parse(sent[1])
    assert tcp0.flags == TcpFlags.ACK and body0 == b""
    assert tcp1.flags == TcpFlags.ACK | TcpFlags.PSH and body1 == b"hello"
    assert ip1.total_len == 40 + len(b"hello")
    assert tcp0.seq_num == tcp1.seq_num == 0
    assert sent[1][18:20] == (1).to_bytes(2, "little")
    assert r.seq_num == 1


def test_fin_sent_once_after_ack():
    r = TcpResponder(SERVER_MAC, SERVER_IP)
    assert r.handle(make_frame(TcpFlags.ACK)) == []
    r.fin()
    sent = r.handle(make_frame(TcpFlags.ACK))
    assert [parse(f)[2].flags for f in sent] == [TcpFlags.FIN]
    assert r.handle(make_frame(TcpFlags.ACK)) == []


def test_tcp_checksum_field_matches_function():
    r = TcpResponder(SERVER_MAC, SERVER_IP, http=lambda: b"abc")
    frame = r.handle(make_frame(TcpFlags.PSH | TcpFlags.ACK))[1]
    ip_part = bytearray(frame[14:])
    stored = int.from_bytes(ip_part[36:38], "big")
    ip_part[36:38] = b"\0\0"
    assert stored == (tcp_checksum(bytes(ip_part), SERVER_IP) + 8) & 0xFFFF


def test_tcp_checksum_ignores_odd_trailing_byte():
    def packet(tail):
        ip = Ipv4Header(total_len=43, protocol=6, src_ip=CLIENT_IP, dst_ip=SERVER_IP)
        return ip.pack() + TcpHeader(1, 2).pack() + b"ab" + tail
    assert tcp_checksum(packet(b"c"), SERVER_IP) == tcp_checksum(packet(b"d"), SERVER_IP)


def test_ip_options_are_skipped():
    r = TcpResponder(SERVER_MAC, SERVER_IP)
    sent = r.handle(make_frame(TcpFlags.SYN, ihl=6))
    assert parse(sent[0])[2].dst_port == 40000