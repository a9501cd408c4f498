"""Pseudo-headers that capture files prepend to Bluetooth, NFLOG and ipnet frames."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Union

IPH_AF_INET = 2
IPH_AF_INET6 = 26

IPNET_OUTBOUND = 1
IPNET_INBOUND = 2

# TLV length and type are in host byte order; everything else is big-endian.
_TLV_HEADER = struct.Struct("=HH")


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


def _align4(value: int) -> int:
    return (value + 3) & ~3


@dataclass(frozen=True)
class BluetoothH4Header:
    """Header before each Bluetooth H4 frame; bit 0 of ``direction`` marks incoming."""

    direction: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!I")
    SIZE: ClassVar[int] = _FORMAT.size

    @property
    def incoming(self) -> bool:
        return bool(self.direction & 1)

    def pack(self) -> bytes:
        return self._FORMAT.pack(self.direction)

    @classmethod
    def unpack(cls, data: bytes) -> BluetoothH4Header:
        _require(data, cls.SIZE, "Bluetooth H4 header")
        return cls(*cls._FORMAT.unpack_from(data))


@dataclass(frozen=True)
class BluetoothMonitorHeader:
    """Header before each Bluetooth Linux monitor frame."""

    adapter_id: int
    opcode: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HH")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(self.adapter_id, self.opcode)

    @classmethod
    def unpack(cls, data: bytes) -> BluetoothMonitorHeader:
        _require(data, cls.SIZE, "Bluetooth monitor header")
        return cls(*cls._FORMAT.unpack_from(data))


class NflogTlvType(enum.IntEnum):
    """Attribute types found in NFLOG TLVs."""

    PACKET_HDR = 1
    MARK = 2
    TIMESTAMP = 3
    IFINDEX_INDEV = 4
    IFINDEX_OUTDEV = 5
    IFINDEX_PHYSINDEV = 6
    IFINDEX_PHYSOUTDEV = 7
    HWADDR = 8
    PAYLOAD = 9
    PREFIX = 10
    UID = 11
    SEQ = 12
    SEQ_GLOBAL = 13
    GID = 14
    HWTYPE = 15
    HWHEADER = 16
    HWLEN = 17


@dataclass(frozen=True)
class NflogHeader:
    """The fixed NFLOG header."""

    family: int
    version: int
    resource_id: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!BBH")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(self.family, self.version, self.resource_id)

    @classmethod
    def unpack(cls, data: bytes) -> NflogHeader:
        _require(data, cls.SIZE, "NFLOG header")
        return cls(*cls._FORMAT.unpack_from(data))


@dataclass(frozen=True)
class NflogTlv:
    """One NFLOG attribute; known types are given as ``NflogTlvType``."""

    tlv_type: Union[NflogTlvType, int]
    value: bytes


@dataclass(frozen=True)
class NflogPacketHeader:
    """Value of a PACKET_HDR attribute."""

    hw_protocol: int
    hook: int
    pad: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HBB")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> NflogPacketHeader:
        _require(data, cls.SIZE, "NFLOG packet header")
        return cls(*cls._FORMAT.unpack_from(data))


@dataclass(frozen=True)
class NflogHwAddr:
    """Value of a HWADDR attribute: up to 8 address bytes."""

    hw_addrlen: int
    hw_addr: bytes

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HH8s")
    SIZE: ClassVar[int] = _FORMAT.size

    @property
    def address(self) -> bytes:
        return self.hw_addr[: min(self.hw_addrlen, len(self.hw_addr))]

    @classmethod
    def unpack(cls, data: bytes) -> NflogHwAddr:
        _require(data, cls.SIZE, "NFLOG hardware address")
        addrlen, _pad, addr = cls._FORMAT.unpack_from(data)
        return cls(addrlen, addr)


@dataclass(frozen=True)
class NflogTimestamp:
    """Value of a TIMESTAMP attribute."""

    sec: int
    usec: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!QQ")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> NflogTimestamp:
        _require(data, cls.SIZE, "NFLOG timestamp")
        return cls(*cls._FORMAT.unpack_from(data))


def _tlv_type(value: int) -> Union[NflogTlvType, int]:
    try:
        return NflogTlvType(value)
    except ValueError:
        return value


def parse_nflog(data: bytes) -> tuple[NflogHeader, list[NflogTlv]]:
    """Split an NFLOG frame into its header and its attributes."""
    data = bytes(data)
    header = NflogHeader.unpack(data)
    tlvs: list[NflogTlv] = []
    offset = NflogHeader.SIZE
    while offset < len(data):
        if len(data) - offset < _TLV_HEADER.size:
            raise ValueError(f"truncated TLV header at offset {offset}")
        length, kind = _TLV_HEADER.unpack_from(data, offset)
        if length < _TLV_HEADER.size:
            raise ValueError(f"TLV length {length} at offset {offset} is too short")
        if offset + length > len(data):
            raise ValueError(f"TLV at offset {offset} runs past the end of the frame")
        value = data[offset + _TLV_HEADER.size: offset + length]
        tlvs.append(NflogTlv(_tlv_type(kind), value))
        offset = min(offset + _align4(length), len(data))
    return header, tlvs