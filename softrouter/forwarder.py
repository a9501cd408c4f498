"""A software IPv4 router: ARP resolution, frame rewriting and forwarding."""

from __future__ import annotations

import argparse
import socket
import sys
from dataclasses import replace
from typing import Iterable, Iterator, Optional, TextIO

import psutil

from softrouter.capture import RawLink
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
    parse_ip,
)
from softrouter.routing import Route, RoutingError, RoutingTable

FORWARD_BATCH = 8
ARP_ATTEMPTS = 1000

_MODIFY_PROMPT = "Modify the routing table?\n  1. yes\n  2. no"
_MENU_PROMPT = (
    "Choose an operation:\n"
    "  1. add a route\n"
    "  2. delete a route\n"
    "  3. print the routing table"
)


def should_forward(frame: bytes, local_ip: int, local_mac: bytes) -> bool:
    """True for IPv4 frames sent to our MAC address but meant for another host."""
    frame = bytes(frame)
    if len(frame) < EthernetHeader.SIZE + IPv4Header.SIZE:
        return False
    ethernet = EthernetHeader.unpack(frame)
    if ethernet.ethertype != ETHERTYPE_IPV4:
        return False
    header = IPv4Header.unpack(frame[EthernetHeader.SIZE:])
    return header.dst != local_ip and ethernet.dst == bytes(local_mac)


def rewrite_frame(frame: bytes, next_mac: bytes) -> bytes:
    """Address the frame to ``next_mac``, decrement the TTL and redo the checksum."""
    frame = bytes(frame)
    ethernet = EthernetHeader.unpack(frame)
    offset = EthernetHeader.SIZE
    header = IPv4Header.unpack(frame[offset:])
    ethernet = replace(ethernet, dst=next_mac)
    header = replace(header, ttl=(header.ttl - 1) & 0xFF).with_checksum()
    return ethernet.pack() + header.pack() + frame[offset + IPv4Header.SIZE:]


def _arp_answer(frame: bytes, target_ip: int, local_ip: int) -> Optional[bytes]:
    if len(frame) < ArpFrame.SIZE:
        return None
    arp = ArpFrame.unpack(frame)
    if arp.ethernet.ethertype != ETHERTYPE_ARP:
        return None
    if arp.sender_ip == target_ip and arp.target_ip == local_ip:
        return arp.sender_mac
    return None


class Router:
    """Forwards IPv4 frames received on a link according to a routing table."""

    def __init__(self, link, table: RoutingTable, local_ip: int, local_mac: bytes) -> None:
        self.link = link
        self.table = table
        self.local_ip = local_ip
        self.local_mac = bytes(local_mac)
        self.output: TextIO = sys.stdout
        self.arp_attempts = ARP_ATTEMPTS
        self.forwarded = 0

    def _say(self, text: str) -> None:
        print(text, file=self.output)

    def resolve_mac(self, ip: int) -> bytes:
        """Ask for the hardware address of ``ip`` over ARP and wait for the reply."""
        self.link.send(arp_request(self.local_mac, self.local_ip, ip).pack())
        for _ in range(self.arp_attempts):
            record = self.link.receive()
            if record is None:
                continue
            mac = _arp_answer(record.data, ip, self.local_ip)
            if mac is not None:
                return mac
        raise LookupError(f"no ARP reply from {format_ip(ip)}")

    def handle_frame(self, frame: bytes) -> Optional[bytes]:
        """Forward ``frame`` if it is ours to route; return the frame sent, or None."""
        frame = bytes(frame)
        if not should_forward(frame, self.local_ip, self.local_mac):
            return None
        header = IPv4Header.unpack(frame[EthernetHeader.SIZE:])
        self._say(describe_ip_packet(header))

        next_hop = self.table.lookup(header.dst)
        if next_hop is None:
            raise RoutingError(f"{format_ip(header.dst)} is unreachable")
        if next_hop == 0:
            next_hop = header.dst

        next_mac = self.resolve_mac(next_hop)
        self._say(f" next hop IP: {format_ip(next_hop)}    next hop MAC: {format_mac(next_mac)}")

        outgoing = rewrite_frame(frame, next_mac)
        self.link.send(outgoing)
        self._say(" [forward] " + describe_ip_packet(IPv4Header.unpack(outgoing[EthernetHeader.SIZE:])))
        self._say("")
        self.forwarded += 1
        return outgoing

    def run(self, limit: Optional[int] = FORWARD_BATCH) -> int:
        """Forward frames until ``limit`` have been sent or routing fails; return the count."""
        count = 0
        while limit is None or count < limit:
            record = self.link.receive()
            if record is None:
                continue
            try:
                sent = self.handle_frame(record.data)
            except (RoutingError, LookupError) as exc:
                self._say(f" [warning] cannot forward the packet: {exc}")
                return count
            if sent is not None:
                count += 1
        return count


class _EndOfInput(Exception):
    pass


def _next_token(tokens: Iterator[str], output: TextIO, prompt: str) -> str:
    print(prompt, file=output)
    token = next(tokens, None)
    if token is None:
        raise _EndOfInput
    return token


def _next_int(tokens: Iterator[str], output: TextIO, prompt: str) -> Optional[int]:
    token = _next_token(tokens, output, prompt)
    try:
        return int(token)
    except ValueError:
        return None


def _show(table: RoutingTable, output: TextIO) -> None:
    print("Current routing table:", file=output)
    print(table.format(), file=output)
    print(file=output)


def _add_route(table: RoutingTable, tokens: Iterator[str], output: TextIO) -> None:
    destination = _next_token(tokens, output, " [add] destination network:")
    netmask = _next_token(tokens, output, " [add] netmask:")
    next_hop = _next_token(tokens, output, " [add] next hop:")
    try:
        route = Route(parse_ip(destination), parse_ip(netmask), parse_ip(next_hop))
    except ValueError as exc:
        print(f" [add] failed: invalid address ({exc})", file=output)
        return
    try:
        table.add(route)
    except RoutingError as exc:
        print(f" [add] failed: {exc}", file=output)
        return
    print(" [add] route added.", file=output)
    _show(table, output)


def _delete_route(table: RoutingTable, tokens: Iterator[str], output: TextIO) -> None:
    index = _next_int(tokens, output, " [delete] index of the route to delete:")
    if index is None:
        print(" [warning] invalid index", file=output)
        return
    if index in (0, 1):
        print(" [warning] the default routes cannot be deleted!", file=output)
        return
    try:
        table.delete(index)
    except RoutingError as exc:
        print(f" [warning] delete failed: {exc}", file=output)
        return
    print(" [delete] route deleted.", file=output)
    _show(table, output)


def edit_table(table: RoutingTable, lines: Iterable[str], output: Optional[TextIO] = None) -> None:
    """Run the interactive table editor, reading answers from ``lines``."""
    output = output if output is not None else sys.stdout
    tokens = (token for line in lines for token in line.split())
    try:
        if _next_int(tokens, output, _MODIFY_PROMPT) == 2:
            _show(table, output)
            return
        while True:
            choice = _next_int(tokens, output, _MENU_PROMPT)
            if choice == 1:
                _add_route(table, tokens, output)
            elif choice == 2:
                _delete_route(table, tokens, output)
            elif choice == 3:
                print(table.format(), file=output)
            elif choice is None or choice < 0 or choice > 4:
                print(" [warning] invalid choice, try again", file=output)
            if _next_int(tokens, output, _MODIFY_PROMPT) == 2:
                _show(table, output)
                return
    except _EndOfInput:
        return


def _parse_mac(text: str) -> bytes:
    parts = text.replace("-", ":").split(":")
    mac = bytes(int(part, 16) for part in parts)
    if len(mac) != 6:
        raise LookupError(f"unusable hardware address {text!r}")
    return mac


def _local_addresses(name: str) -> tuple[list[tuple[int, int]], bytes]:
    entries = psutil.net_if_addrs().get(name)
    if entries is None:
        raise LookupError(f"no interface named {name!r}")
    networks = [
        (parse_ip(entry.address), parse_ip(entry.netmask))
        for entry in entries
        if entry.family == socket.AF_INET and entry.netmask
    ]
    macs = [entry.address for entry in entries if entry.family == psutil.AF_LINK]
    if not networks:
        raise LookupError(f"interface {name!r} has no IPv4 address")
    if not macs:
        raise LookupError(f"interface {name!r} has no hardware address")
    return networks, _parse_mac(macs[0])


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="softrouter", description="Route IPv4 packets between networks.")
    parser.add_argument("interface", help="the interface to route on")
    args = parser.parse_args(argv)

    try:
        networks, local_mac = _local_addresses(args.interface)
    except (LookupError, ValueError) as exc:
        print(f"Unable to use interface {args.interface}: {exc}", file=sys.stderr)
        return 1

    table = RoutingTable()
    for address, netmask in networks:
        try:
            table.add(Route(address & netmask, netmask, 0))
        except RoutingError:
            pass
    local_ip = networks[-1][0]
    print(f" local IP: {format_ip(local_ip)}    local MAC: {format_mac(local_mac)}")

    try:
        link = RawLink(args.interface)
    except OSError as exc:
        print(f"Unable to open the interface {args.interface}: {exc}", file=sys.stderr)
        return 1

    with link:
        router = Router(link, table, local_ip, local_mac)
        try:
            while True:
                edit_table(table, sys.stdin, sys.stdout)
                router.run(FORWARD_BATCH)
        except KeyboardInterrupt:
            pass
    return 0