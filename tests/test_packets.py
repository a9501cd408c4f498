import dataclasses

import pytest

from softrouter.packets import (
    ETHERTYPE_ARP,
    ETHERTYPE_IPV4,
    ArpFrame,
    EthernetHeader,
    IPv4Header,
    arp_request,
    describe_ip_packet,
    format_ip,
    format_mac,
    ipv4_checksum,
    parse_ip,
)

SRC_MAC = bytes([0x02, 0, 0, 0, 0, 0x01])
DST_MAC = bytes([0x02, 0, 0, 0, 0, 0x02])


def _ip_header(**changes):
    header = IPv4Header(
        version_ihl=0x45,
        tos=0,
        total_length=84,
        identification=0x1C46,
        flags_fragment=0x4000,
        ttl=64,
        protocol=1,
        checksum=0,
        src=parse_ip("192.168.1.10"),
        dst=parse_ip("10.0.0.5"),
    )
    return dataclasses.replace(header, **changes)


def test_ethernet_round_trip():
    header = EthernetHeader(DST_MAC, SRC_MAC, ETHERTYPE_IPV4)
    assert EthernetHeader.unpack(header.pack()) == header


def test_ethernet_layout():
    data = EthernetHeader(DST_MAC, SRC_MAC, ETHERTYPE_IPV4).pack()
    assert data[:6] == DST_MAC
    assert data[6:12] == SRC_MAC
    assert int.from_bytes(data[12:14], "big") == 0x0800
    assert len(data) == EthernetHeader.SIZE


def test_ethernet_rejects_short_data():
    with pytest.raises(ValueError):
        EthernetHeader.unpack(b"\x00" * 5)


def test_ethernet_rejects_bad_mac():
    with pytest.raises(ValueError):
        EthernetHeader(b"\x01", SRC_MAC, ETHERTYPE_IPV4)


def test_ipv4_round_trip():
    header = _ip_header(checksum=0xABCD)
    assert IPv4Header.unpack(header.pack()) == header


def test_ipv4_rejects_short_data():
    with pytest.raises(ValueError):
        IPv4Header.unpack(_ip_header().pack()[:-1])


def test_with_checksum_verifies():
    assert ipv4_checksum(_ip_header().with_checksum().pack()) == 0


def test_with_checksum_keeps_other_fields():
    header = _ip_header()
    assert dataclasses.replace(header.with_checksum(), checksum=header.checksum) == header


def test_with_checksum_ignores_previous_checksum():
    assert _ip_header(checksum=0x1234).with_checksum() == _ip_header().with_checksum()


def test_checksum_known_header():
    data = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")
    assert ipv4_checksum(data) == 0xB861


def test_checksum_odd_length_pads_with_zero():
    assert ipv4_checksum(b"\x12\x34\x56") == ipv4_checksum(b"\x12\x34\x56\x00")


def test_arp_request_fields():
    src_ip = parse_ip("192.168.1.10")
    target_ip = parse_ip("192.168.1.1")
    frame = arp_request(SRC_MAC, src_ip, target_ip)
    assert frame.ethernet.dst == b"\xff" * 6
    assert frame.ethernet.src == SRC_MAC
    assert frame.ethernet.ethertype == ETHERTYPE_ARP == 0x0806
    assert frame.hardware_type == 0x0001
    assert frame.protocol_type == 0x0800
    assert (frame.hardware_len, frame.protocol_len) == (6, 4)
    assert frame.operation == 0x0001
    assert frame.sender_mac == SRC_MAC
    assert frame.target_mac == bytes(6)
    assert (frame.sender_ip, frame.target_ip) == (src_ip, target_ip)


def test_arp_round_trip():
    frame = arp_request(SRC_MAC, parse_ip("10.0.0.2"), parse_ip("10.0.0.1"))
    data = frame.pack()
    assert len(data) == ArpFrame.SIZE
    assert ArpFrame.unpack(data) == frame


def test_arp_rejects_short_data():
    data = arp_request(SRC_MAC, 1, 2).pack()
    with pytest.raises(ValueError):
        ArpFrame.unpack(data[:-1])


@pytest.mark.parametrize("text", ["0.0.0.0", "10.1.2.3", "255.255.255.0", "112.112.112.112"])
def test_ip_round_trip(text):
    assert format_ip(parse_ip(text)) == text


@pytest.mark.parametrize("text", ["", "1.2.3", "256.1.1.1", "a.b.c.d"])
def test_parse_ip_rejects_invalid(text):
    with pytest.raises(ValueError):
        parse_ip(text)


def test_format_mac():
    assert format_mac(bytes([0x66] * 6)) == "66-66-66-66-66-66"


def test_format_mac_has_six_groups():
    assert len(format_mac(SRC_MAC).split("-")) == len(SRC_MAC)


def test_describe_ip_packet():
    header = _ip_header()
    text = describe_ip_packet(header)
    assert "IPv4" in text
    assert format_ip(header.src) in text
    assert format_ip(header.dst) in text