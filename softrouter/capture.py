"""Raw link access and a two-way user-level bridge between interfaces."""

from __future__ import annotations

import argparse
import socket
import struct
import sys
import threading
import time
from typing import Optional, TextIO

from softrouter.savefile import PacketRecord

ETH_P_ALL = 0x0003
SOL_PACKET = 263
PACKET_ADD_MEMBERSHIP = 1
PACKET_MR_PROMISC = 1
PACKET_OUTGOING = 4
SNAPLEN = 65536
DEFAULT_TIMEOUT = 0.5


class RawLink:
    """A promiscuous raw socket bound to one interface.

    Frames this host sends are not captured again, which keeps a bridge
    from looping its own traffic.
    """

    def __init__(self, name: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        family = getattr(socket, "AF_PACKET", None)
        if family is None:
            raise OSError("raw links need AF_PACKET support")
        self.name = name
        self._sock = socket.socket(family, socket.SOCK_RAW, socket.htons(ETH_P_ALL))
        try:
            self._sock.bind((name, 0))
            request = struct.pack("iHH8s", socket.if_nametoindex(name), PACKET_MR_PROMISC, 0, b"")
            self._sock.setsockopt(SOL_PACKET, PACKET_ADD_MEMBERSHIP, request)
            self._sock.settimeout(timeout)
        except BaseException:
            self._sock.close()
            raise

    def send(self, frame: bytes) -> int:
        return self._sock.send(bytes(frame))

    def receive(self) -> Optional[PacketRecord]:
        """Return the next incoming frame, or None when the read timeout elapses."""
        try:
            data, address = self._sock.recvfrom(SNAPLEN)
        except TimeoutError:
            return None
        if len(address) > 2 and address[2] == PACKET_OUTGOING:
            return None
        now = time.time()
        return PacketRecord(int(now), int((now % 1) * 1_000_000), data)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> RawLink:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _say(lock: threading.Lock, output: TextIO, text: str) -> None:
    with lock:
        print(text, file=output, flush=True)


def forward(source, destination, direction: int, stop_event: threading.Event,
            lock: threading.Lock, output: TextIO) -> int:
    """Copy frames from ``source`` to ``destination`` until stopped; return the count forwarded."""
    forwarded = 0
    arrow = ">>" if direction == 0 else "<<"
    while not stop_event.is_set():
        try:
            record = source.receive()
        except OSError as exc:
            _say(lock, output, f"Error capturing the packets: {exc}")
            return forwarded
        if record is None:
            continue
        _say(lock, output, f"{arrow} Len: {record.caplen}")
        try:
            destination.send(record.data)
        except OSError as exc:
            _say(
                lock,
                output,
                f"Error sending a {record.caplen} bytes packets on interface {direction}: {exc}",
            )
        else:
            forwarded += 1
    _say(lock, output, f"End of bridging on interface {direction}. Forwarded packets:{forwarded}")
    return forwarded


class Bridge:
    """Forwards frames both ways between two links, one thread per direction."""

    def __init__(self, first, second, output: Optional[TextIO] = None) -> None:
        self.first = first
        self.second = second
        self.output = output if output is not None else sys.stdout
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._counts = [0, 0]
        self._threads: list[threading.Thread] = []

    def _worker(self, source, destination, direction: int) -> None:
        self._counts[direction] = forward(
            source, destination, direction, self._stop, self._lock, self.output
        )

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("bridge already started")
        self._threads = [
            threading.Thread(target=self._worker, args=(self.first, self.second, 0), daemon=True),
            threading.Thread(target=self._worker, args=(self.second, self.first, 1), daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> tuple[int, int]:
        """Ask both threads to finish, wait for them, and return the forwarded counts."""
        self._stop.set()
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return self._counts[0], self._counts[1]


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="softrouter-bridge", description="Bridge two interfaces.")
    parser.add_argument("first")
    parser.add_argument("second")
    args = parser.parse_args(argv)

    if args.first == args.second:
        print("Cannot bridge packets on the same interface.", file=sys.stderr)
        return 1
    try:
        first = RawLink(args.first)
    except OSError as exc:
        print(f"Unable to open the adapter {args.first}: {exc}", file=sys.stderr)
        return 1
    try:
        second = RawLink(args.second)
    except OSError as exc:
        first.close()
        print(f"Unable to open the adapter {args.second}: {exc}", file=sys.stderr)
        return 1

    with first, second:
        bridge = Bridge(first, second)
        bridge.start()
        print("\nStart bridging the two adapters...", flush=True)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            bridge.stop(5.0)
    return 0