"""Sending the packets of a capture file out through an interface."""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Callable, Iterable, Iterator, Optional

from softrouter.capture import RawLink
from softrouter.savefile import (
    LINKTYPE_ETHERNET,
    PacketRecord,
    SavefileError,
    open_reader,
)

PACKET_HEADER_SIZE = 16
FILE_HEADER_SIZE = 24


class SendQueue:
    """Packets waiting to be sent, bounded by a byte capacity.

    Every packet takes its data length plus a 16-byte header out of the capacity.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self.size = 0
        self._records: list[PacketRecord] = []

    def append(self, record: PacketRecord) -> None:
        """Queue a packet; raise OverflowError when it does not fit."""
        needed = PACKET_HEADER_SIZE + record.caplen
        if self.size + needed > self.capacity:
            raise OverflowError("send queue is too small for this packet")
        self._records.append(record)
        self.size += needed

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PacketRecord]:
        return iter(list(self._records))


def fill_queue(queue: SendQueue, records: Iterable[PacketRecord]) -> tuple[int, bool]:
    """Queue records until they run out or the queue is full.

    Return the number queued and whether some packets were left out.
    """
    count = 0
    for record in records:
        try:
            queue.append(record)
        except OverflowError:
            return count, True
        count += 1
    return count, False


def transmit(
    queue: SendQueue,
    link,
    sync: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Send every queued packet and return the number of queue bytes sent.

    With ``sync`` the gaps between packet timestamps are kept. Sending stops
    at the first failure, so a result below ``queue.size`` means an error.
    """
    sent = 0
    previous: Optional[PacketRecord] = None
    for record in queue:
        if sync and previous is not None:
            delay = (record.ts_sec - previous.ts_sec) + (record.ts_usec - previous.ts_usec) / 1_000_000
            if delay > 0:
                sleep(delay)
        try:
            link.send(record.data)
        except OSError:
            break
        sent += PACKET_HEADER_SIZE + record.caplen
        previous = record
    return sent


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="softrouter-sendcap",
        description="Send a capture file to the network.",
    )
    parser.add_argument("filename", help="the capture file to send")
    parser.add_argument("adapter", help="the interface to send on")
    parser.add_argument(
        "mode",
        nargs="?",
        help="'s' to send synchronously, respecting the timestamps in the file",
    )
    args = parser.parse_args(argv)
    sync = bool(args.mode) and args.mode.startswith("s")

    try:
        capacity = max(0, os.path.getsize(args.filename) - FILE_HEADER_SIZE)
        reader = open_reader(args.filename)
    except OSError as exc:
        print(f"Error opening the file: {exc}", file=sys.stderr)
        return 1
    except SavefileError as exc:
        print(f"Unable to open the file {args.filename}: {exc}", file=sys.stderr)
        return 1

    with reader:
        try:
            link = RawLink(args.adapter)
        except OSError as exc:
            print(f"Unable to open adapter {args.adapter}: {exc}", file=sys.stderr)
            return 1
        with link:
            if reader.linktype != LINKTYPE_ETHERNET:
                print("Warning: the datalink of the capture differs from the one of the selected interface.")
                try:
                    input("Press Enter to continue, or CTRL+C to stop.")
                except EOFError:
                    pass

            queue = SendQueue(capacity)
            try:
                count, truncated = fill_queue(queue, reader)
            except SavefileError:
                print("Corrupted input file.")
                return 1
            if truncated:
                print("Warning: packet buffer too small, not all the packets will be sent.")

            start = time.perf_counter()
            sent = transmit(queue, link, sync)
            if sent < queue.size:
                print(f"An error occurred sending the packets. Only {sent} bytes were sent")
                return 1
            elapsed = time.perf_counter() - start

    rate = int(count / elapsed) if elapsed > 0 else 0
    print(f"\n\nElapsed time: {elapsed:5.3f}")
    print(f"\nTotal packets generated = {count}")
    print(f"\nAverage packets per second = {rate}")
    return 0