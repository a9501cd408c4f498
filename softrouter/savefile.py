"""Reading and writing libpcap capture files."""

from __future__ import annotations

import argparse
import struct
import subprocess
import sys
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

MAGIC_USEC = 0xA1B2C3D4
MAGIC_NSEC = 0xA1B23C4D
VERSION_MAJOR = 2
VERSION_MINOR = 4
LINKTYPE_ETHERNET = 1
DEFAULT_SNAPLEN = 65535
MAXIMUM_SNAPLEN = 262144
LINE_LEN = 16

_GLOBAL_TAIL = "HHiIII"
_RECORD = "IIII"


class SavefileError(Exception):
    """Raised when a capture file is malformed or cannot be produced."""


@dataclass(frozen=True)
class PacketRecord:
    """One captured packet; ``length`` is the length on the wire."""

    ts_sec: int
    ts_usec: int
    data: bytes
    length: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        if self.length is None:
            object.__setattr__(self, "length", len(self.data))

    @property
    def caplen(self) -> int:
        return len(self.data)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class PcapReader:
    """Iterates over the packets of a capture file read from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        head = _read_exact(stream, 24)
        if len(head) < 24:
            raise SavefileError("file is too short to hold a capture file header")
        for order in ("<", ">"):
            (magic,) = struct.unpack(order + "I", head[:4])
            if magic in (MAGIC_USEC, MAGIC_NSEC):
                break
        else:
            raise SavefileError("unknown file format: bad magic number")
        self.byteorder = order
        self.nanosecond = magic == MAGIC_NSEC
        major, minor, self.thiszone, self.sigfigs, self.snaplen, self.linktype = struct.unpack(
            order + _GLOBAL_TAIL, head[4:]
        )
        self.version = (major, minor)
        self._record = struct.Struct(order + _RECORD)

    def __iter__(self) -> Iterator[PacketRecord]:
        while True:
            head = _read_exact(self._stream, self._record.size)
            if not head:
                return
            if len(head) < self._record.size:
                raise SavefileError("truncated packet header")
            ts_sec, ts_frac, caplen, length = self._record.unpack(head)
            if caplen > MAXIMUM_SNAPLEN and caplen > self.snaplen:
                raise SavefileError(f"bogus capture length {caplen}")
            data = _read_exact(self._stream, caplen)
            if len(data) < caplen:
                raise SavefileError(
                    f"truncated packet: expected {caplen} bytes, got {len(data)}"
                )
            ts_usec = ts_frac // 1000 if self.nanosecond else ts_frac
            yield PacketRecord(ts_sec, ts_usec, data, length)

    def __enter__(self) -> PcapReader:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        self._stream.close()


class PcapWriter:
    """Writes packets to a binary stream in capture file format."""

    def __init__(
        self,
        stream: BinaryIO,
        linktype: int = LINKTYPE_ETHERNET,
        snaplen: int = DEFAULT_SNAPLEN,
    ) -> None:
        if snaplen <= 0:
            raise ValueError("snaplen must be positive")
        self._stream = stream
        self.linktype = linktype
        self.snaplen = snaplen
        self._record = struct.Struct("<" + _RECORD)
        stream.write(
            struct.pack("<I" + _GLOBAL_TAIL, MAGIC_USEC, VERSION_MAJOR, VERSION_MINOR, 0, 0, snaplen, linktype)
        )

    def write(self, record: PacketRecord) -> None:
        """Append a packet, cutting its data to the snapshot length."""
        data = record.data[: self.snaplen]
        self._stream.write(self._record.pack(record.ts_sec, record.ts_usec, len(data), record.length))
        self._stream.write(data)

    def __enter__(self) -> PcapWriter:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        self._stream.close()


def open_reader(path: str) -> PcapReader:
    stream = open(path, "rb")
    try:
        return PcapReader(stream)
    except BaseException:
        stream.close()
        raise


def open_writer(path: str, linktype: int = LINKTYPE_ETHERNET, snaplen: int = DEFAULT_SNAPLEN) -> PcapWriter:
    stream = open(path, "wb")
    try:
        return PcapWriter(stream, linktype, snaplen)
    except BaseException:
        stream.close()
        raise


def iter_converted(tshark_path: str, trace_path: str) -> Iterator[PacketRecord]:
    """Yield the packets of a trace in any format tshark reads, converted on the fly."""
    command = [tshark_path, "-r", trace_path, "-w", "-", "-F", "libpcap"]
    try:
        process = subprocess.Popen(command, stdout=subprocess.PIPE)
    except OSError as exc:
        raise SavefileError(f"failed to run tshark: {exc}") from exc
    try:
        yield from PcapReader(process.stdout)
    finally:
        process.stdout.close()
        returncode = process.wait()
    if returncode:
        raise SavefileError(f"tshark exited with status {returncode}")


def format_timestamp_line(record: PacketRecord) -> str:
    return (
        f"packet: ts: {record.ts_sec}.{record.ts_usec:06d},  "
        f"len: {record.length:4d},  caplen: {record.caplen:4d}"
    )


def _format_dump(record: PacketRecord) -> str:
    parts = [f"{record.ts_sec}:{record.ts_usec} ({record.length})\n"]
    for position, octet in enumerate(record.data, start=1):
        parts.append(f"{octet:02x} ")
        if position % LINE_LEN == 0:
            parts.append("\n")
    parts.append("\n\n")
    return "".join(parts)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="softrouter-savefile", description="Inspect capture files.")
    commands = parser.add_subparsers(dest="command", required=True)
    read = commands.add_parser("read", help="print every packet of a capture file")
    read.add_argument("filename")
    convert = commands.add_parser("convert", help="print packet timestamps of a trace via tshark")
    convert.add_argument("tshark")
    convert.add_argument("trace")
    args = parser.parse_args(argv)

    try:
        if args.command == "read":
            with open_reader(args.filename) as reader:
                for record in reader:
                    sys.stdout.write(_format_dump(record))
        else:
            for record in iter_converted(args.tshark, args.trace):
                print(format_timestamp_line(record))
    except OSError as exc:
        print(f"Unable to open the file: {exc}", file=sys.stderr)
        return 1
    except SavefileError as exc:
        print(f"Error reading the packets: {exc}", file=sys.stderr)
        return 1
    return 0