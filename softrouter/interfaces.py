"""Listing the network interfaces of the local machine."""

from __future__ import annotations

import argparse
import ipaddress
import socket
import sys
from dataclasses import dataclass, field
from typing import Optional

import psutil


@dataclass(frozen=True)
class InterfaceAddress:
    """One address bound to an interface; ``family`` is a socket address family."""

    family: int
    address: Optional[str]
    netmask: Optional[str] = None
    broadcast: Optional[str] = None
    destination: Optional[str] = None


@dataclass(frozen=True)
class Interface:
    """A network interface with the addresses bound to it."""

    name: str
    description: Optional[str] = None
    loopback: bool = False
    addresses: tuple[InterfaceAddress, ...] = field(default_factory=tuple)


def _is_loopback(address: InterfaceAddress) -> bool:
    if address.family not in (socket.AF_INET, socket.AF_INET6) or not address.address:
        return False
    text = address.address.split("%", 1)[0]
    try:
        return ipaddress.ip_address(text).is_loopback
    except ValueError:
        return False


def list_interfaces() -> list[Interface]:
    """Return every interface known to the operating system."""
    interfaces = []
    for name, entries in psutil.net_if_addrs().items():
        addresses = tuple(
            InterfaceAddress(
                family=int(entry.family),
                address=entry.address,
                netmask=entry.netmask,
                broadcast=entry.broadcast,
                destination=entry.ptp,
            )
            for entry in entries
        )
        loopback = any(_is_loopback(address) for address in addresses)
        interfaces.append(Interface(name=name, loopback=loopback, addresses=addresses))
    return interfaces


def describe_interface(interface: Interface) -> str:
    """Render everything known about an interface, one fact per line."""
    lines = [interface.name]
    if interface.description:
        lines.append(f"\tDescription: {interface.description}")
    lines.append(f"\tLoopback: {'yes' if interface.loopback else 'no'}")
    for address in interface.addresses:
        lines.append(f"\tAddress Family: #{address.family}")
        if address.family == socket.AF_INET:
            lines.append("\tAddress Family Name: AF_INET")
            if address.address:
                lines.append(f"\tAddress: {address.address}")
            if address.netmask:
                lines.append(f"\tNetmask: {address.netmask}")
            if address.broadcast:
                lines.append(f"\tBroadcast Address: {address.broadcast}")
            if address.destination:
                lines.append(f"\tDestination Address: {address.destination}")
        elif address.family == socket.AF_INET6:
            lines.append("\tAddress Family Name: AF_INET6")
            if address.address:
                lines.append(f"\tAddress: {address.address}")
        else:
            lines.append("\tAddress Family Name: Unknown")
    lines.append("")
    return "\n".join(lines) + "\n"


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="softrouter-iflist", description="List network interfaces.")
    parser.add_argument("names", nargs="*", help="only show these interfaces")
    args = parser.parse_args(argv)

    try:
        interfaces = list_interfaces()
    except OSError as exc:
        print(f"Error listing the interfaces: {exc}", file=sys.stderr)
        return 1
    if args.names:
        wanted = set(args.names)
        interfaces = [interface for interface in interfaces if interface.name in wanted]
        if not interfaces:
            print("No matching interfaces found.", file=sys.stderr)
            return 1
    for interface in interfaces:
        sys.stdout.write(describe_interface(interface))
    return 0