"""Ethernet, IPv4 and ARP frame layouts used by the router."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, replace
from typing import ClassVar

ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_ARP = 0x0806
ARP_HARDWARE_ETHERNET = 0x0001
ARP_OP_REQUEST = 0x0001
ARP_OP_REPLY = 0x0002
BROADCAST_MAC = b"\xff" * 6
ZERO_MAC = bytes(6)


def _as_mac(value: bytes, field: str) -> bytes:
    mac = bytes(value)
    if len(mac) != 6:
        raise ValueError(f"{field} must be 6 bytes, got {len(mac)}")
    return mac


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass(frozen=True)
class EthernetHeader:
    """An Ethernet II frame header."""

    dst: bytes
    src: bytes
    ethertype: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!6s6sH")
    SIZE: ClassVar[int] = _FORMAT.size

    def __post_init__(self) -> None:
        object.__setattr__(self, "dst", _as_mac(self.dst, "dst"))
        object.__setattr__(self, "src", _as_mac(self.src, "src"))

    def pack(self) -> bytes:
        return self._FORMAT.pack(self.dst, self.src, self.ethertype)

    @classmethod
    def unpack(cls, data: bytes) -> EthernetHeader:
        _require(data, cls.SIZE, "Ethernet header")
        dst, src, ethertype = cls._FORMAT.unpack_from(data)
        return cls(dst, src, ethertype)


@dataclass(frozen=True)
class IPv4Header:
    """A fixed 20-byte IPv4 header; addresses are integers in numeric order."""

    version_ihl: int
    tos: int
    total_length: int
    identification: int
    flags_fragment: int
    ttl: int
    protocol: int
    checksum: int
    src: int
    dst: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!BBHHHBBHII")
    SIZE: ClassVar[int] = _FORMAT.size

    @property
    def version(self) -> int:
        return (self.version_ihl & 0xF0) >> 4

    @property
    def header_length(self) -> int:
        return self.version_ihl & 0x0F

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.version_ihl,
            self.tos,
            self.total_length,
            self.identification,
            self.flags_fragment,
            self.ttl,
            self.protocol,
            self.checksum,
            self.src,
            self.dst,
        )

    @classmethod
    def unpack(cls, data: bytes) -> IPv4Header:
        _require(data, cls.SIZE, "IPv4 header")
        return cls(*cls._FORMAT.unpack_from(data))

    def with_checksum(self) -> IPv4Header:
        """Return a copy whose checksum field is computed over the header."""
        zeroed = replace(self, checksum=0)
        return replace(self, checksum=ipv4_checksum(zeroed.pack()))


@dataclass(frozen=True)
class ArpFrame:
    """An Ethernet frame carrying an IPv4-over-Ethernet ARP message."""

    ethernet: EthernetHeader
    hardware_type: int
    protocol_type: int
    hardware_len: int
    protocol_len: int
    operation: int
    sender_mac: bytes
    sender_ip: int
    target_mac: bytes
    target_ip: int

    _BODY: ClassVar[struct.Struct] = struct.Struct("!HHBBH6sI6sI")
    SIZE: ClassVar[int] = EthernetHeader.SIZE + _BODY.size

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender_mac", _as_mac(self.sender_mac, "sender_mac"))
        object.__setattr__(self, "target_mac", _as_mac(self.target_mac, "target_mac"))

    def pack(self) -> bytes:
        return self.ethernet.pack() + self._BODY.pack(
            self.hardware_type,
            self.protocol_type,
            self.hardware_len,
            self.protocol_len,
            self.operation,
            self.sender_mac,
            self.sender_ip,
            self.target_mac,
            self.target_ip,
        )

    @classmethod
    def unpack(cls, data: bytes) -> ArpFrame:
        _require(data, cls.SIZE, "ARP frame")
        ethernet = EthernetHeader.unpack(data)
        fields = cls._BODY.unpack_from(data, EthernetHeader.SIZE)
        return cls(ethernet, *fields)


def arp_request(src_mac: bytes, src_ip: int, target_ip: int) -> ArpFrame:
    """Build a broadcast ARP request asking who has ``target_ip``."""
    return ArpFrame(
        ethernet=EthernetHeader(BROADCAST_MAC, src_mac, ETHERTYPE_ARP),
        hardware_type=ARP_HARDWARE_ETHERNET,
        protocol_type=ETHERTYPE_IPV4,
        hardware_len=6,
        protocol_len=4,
        operation=ARP_OP_REQUEST,
        sender_mac=src_mac,
        sender_ip=src_ip,
        target_mac=ZERO_MAC,
        target_ip=target_ip,
    )


def ipv4_checksum(data: bytes) -> int:
    """Internet checksum (one's complement of the one's complement sum)."""
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def parse_ip(text: str) -> int:
    """Parse dotted-quad text into an integer address."""
    try:
        return int(ipaddress.IPv4Address(text.strip()))
    except ipaddress.AddressValueError:
        raise ValueError(f"invalid IPv4 address: {text!r}") from None


def format_ip(address: int) -> str:
    return str(ipaddress.IPv4Address(address))


def format_mac(mac: bytes) -> str:
    """Format a MAC address as unpadded hex octets joined by dashes."""
    return "-".join(f"{octet:x}" for octet in bytes(mac))


def describe_ip_packet(header: IPv4Header) -> str:
    """Return a human-readable summary of an IPv4 header."""
    lines = [
        "[IP packet]",
        f"  version: IPv{header.version}",
        f"  header length: {header.header_length}",
        f"  type of service: {header.tos}",
        f"  total length: {header.total_length}",
        f"  identification: 0x{header.identification:04x}",
        f"  time to live: {header.ttl}",
        f"  protocol: {header.protocol}",
        f"  source: {format_ip(header.src)}",
        f"  destination: {format_ip(header.dst)}",
    ]
    return "\n".join(lines)