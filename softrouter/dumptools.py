"""Packet dumping, capture consistency checks, traffic rates and test frames."""

from __future__ import annotations

import argparse
import enum
import struct
import sys
import time
from typing import Optional

from softrouter.savefile import (
    PacketRecord,
    SavefileError,
    open_reader,
    open_writer,
)

LINE_LEN = 16
TEST_PACKET_SIZE = 100
_STAT_SAMPLE = struct.Struct("<QQ")


class LinkType(enum.IntEnum):
    """Data-link types a test packet can be built for."""

    NULL = 0
    EN10MB = 1


def _clock(seconds: int) -> str:
    return time.strftime("%H:%M:%S", time.localtime(seconds))


def hexdump(data: bytes, line_len: int = LINE_LEN) -> str:
    """Render bytes as two-digit hex octets, breaking the line every ``line_len`` octets."""
    if line_len <= 0:
        raise ValueError("line_len must be positive")
    parts = []
    for position, octet in enumerate(bytes(data), start=1):
        parts.append(f"{octet:02x} ")
        if position % line_len == 0:
            parts.append("\n")
    return "".join(parts)


def format_record(record: PacketRecord) -> str:
    """Timestamp and length line followed by the packet bytes in hex."""
    return f"{record.ts_sec}:{record.ts_usec} ({record.length})\n{hexdump(record.data)}\n\n"


def format_time_len(record: PacketRecord) -> str:
    """Local wall-clock time, microseconds and wire length of a packet."""
    return f"{_clock(record.ts_sec)},{record.ts_usec:06d} len:{record.length}"


class ConsistencyChecker:
    """Checks that capture lengths match wire lengths and timestamps never go back."""

    def __init__(self) -> None:
        self.last_sec = 0
        self.last_usec = 0

    def check(self, record: PacketRecord) -> list[str]:
        """Return the inconsistencies found in ``record``, then remember its timestamp."""
        problems = []
        if record.caplen != record.length:
            problems.append(f"Inconsistent header: CapLen {record.caplen}\t Len {record.length}")
        if (self.last_sec, self.last_usec) > (record.ts_sec, record.ts_usec):
            problems.append(
                f"Inconsistent Timestamps! Old was {self.last_sec}.{self.last_usec:06d}"
                f" - New is {record.ts_sec}.{record.ts_usec:06d}"
            )
        self.last_sec = record.ts_sec
        self.last_usec = record.ts_usec
        return problems


class TrafficMeter:
    """Turns statistics samples into bits and packets per second.

    Each sample carries a little-endian 64-bit packet count followed by a
    64-bit byte count; rates are taken over the time since the previous sample.
    """

    def __init__(self, start: Optional[tuple[int, int]] = None) -> None:
        self._previous = start

    def update(self, record: PacketRecord) -> Optional[tuple[int, int]]:
        """Return ``(bps, pps)`` for the sample, or None for the first one."""
        if len(record.data) < _STAT_SAMPLE.size:
            raise ValueError(
                f"statistics sample needs {_STAT_SAMPLE.size} bytes, got {len(record.data)}"
            )
        packets, octets = _STAT_SAMPLE.unpack_from(record.data)
        previous = self._previous
        self._previous = (record.ts_sec, record.ts_usec)
        if previous is None:
            return None
        old_sec, old_usec = previous
        delay = (record.ts_sec - old_sec) * 1_000_000 - old_usec + record.ts_usec
        if delay <= 0:
            raise ValueError("sample timestamp did not advance")
        bps = octets * 8 * 1_000_000 // delay
        pps = packets * 1_000_000 // delay
        return bps, pps


def format_rates(timestamp: int, bps: int, pps: int) -> str:
    return f"{_clock(timestamp)} BPS={bps} PPS={pps}"


def build_test_packet(linktype: int) -> bytes:
    """Build the 100-byte frame sent to exercise an interface of the given link type."""
    try:
        kind = LinkType(linktype)
    except ValueError:
        raise ValueError(f"unknown data-link type {linktype}") from None
    if kind is LinkType.NULL:
        head = b"\x02\x00\x00\x00"  # pretend IPv4
    else:
        head = b"\x01" * 6 + b"\x02" * 6
    return head + bytes(range(len(head), TEST_PACKET_SIZE))


def _run(args: argparse.Namespace) -> int:
    if args.command == "packet":
        frame = build_test_packet(args.linktype)
        now = time.time()
        record = PacketRecord(int(now), int((now % 1) * 1_000_000), frame)
        with open_writer(args.output, args.linktype) as writer:
            writer.write(record)
        return 0

    with open_reader(args.filename) as reader:
        if args.command == "dump":
            for record in reader:
                sys.stdout.write(format_record(record))
        elif args.command == "times":
            for record in reader:
                print(format_time_len(record))
        elif args.command == "check":
            checker = ConsistencyChecker()
            for record in reader:
                for problem in checker.check(record):
                    print(problem)
        else:
            meter = TrafficMeter()
            print("TCP traffic summary:")
            for record in reader:
                rates = meter.update(record)
                if rates is not None:
                    print(format_rates(record.ts_sec, *rates))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="softrouter-dump", description="Packet dumping tools.")
    commands = parser.add_subparsers(dest="command", required=True)
    for name, text in (
        ("dump", "print every packet with its bytes in hex"),
        ("times", "print the time and length of every packet"),
        ("check", "report inconsistent lengths and timestamps"),
        ("top", "print rates from a file of statistics samples"),
    ):
        sub = commands.add_parser(name, help=text)
        sub.add_argument("filename")
    packet = commands.add_parser("packet", help="write a test frame to a capture file")
    packet.add_argument("output")
    packet.add_argument("--linktype", type=int, default=int(LinkType.EN10MB))
    args = parser.parse_args(argv)

    try:
        return _run(args)
    except OSError as exc:
        print(f"Unable to open the file: {exc}", file=sys.stderr)
    except SavefileError as exc:
        print(f"Error reading the packets: {exc}", file=sys.stderr)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    return 1