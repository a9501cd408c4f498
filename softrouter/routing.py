"""Static routing table with longest-prefix lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from softrouter.packets import format_ip

ROUTER_TABLE_SIZE = 128
_RULE = "-" * 85


class RoutingError(Exception):
    """Raised when a routing table operation cannot be carried out."""


def prefix_length(netmask: int) -> int:
    """Number of set bits in a 32-bit netmask."""
    return bin(netmask & 0xFFFFFFFF).count("1")


@dataclass(frozen=True)
class Route:
    """One table entry; a next hop of 0 means the network is directly attached."""

    destination: int
    netmask: int
    next_hop: int = 0


class RoutingTable:
    """Routes kept ordered from the longest prefix to the shortest.

    The first two entries are the default routes and cannot be deleted.
    """

    def __init__(self, capacity: int = ROUTER_TABLE_SIZE) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._routes: list[Route] = []

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(list(self._routes))

    def __getitem__(self, index: int) -> Route:
        return self._routes[index]

    def add(self, route: Route) -> int:
        """Insert a route after all entries of equal or longer prefix; return its index."""
        if len(self._routes) >= self.capacity:
            raise RoutingError("routing table is full; delete unused routes first")
        if route in self._routes:
            raise RoutingError("an identical route already exists")
        length = prefix_length(route.netmask)
        index = next(
            (i for i, existing in enumerate(self._routes) if prefix_length(existing.netmask) < length),
            len(self._routes),
        )
        self._routes.insert(index, route)
        return index

    def delete(self, index: int) -> Route:
        """Remove and return the route at ``index``."""
        if not self._routes:
            raise RoutingError("routing table is empty")
        if index in (0, 1):
            raise RoutingError("default routes cannot be deleted")
        if not 0 <= index < len(self._routes):
            raise RoutingError(f"no route at index {index}")
        return self._routes.pop(index)

    def lookup(self, destination: int) -> Optional[int]:
        """Return the next hop for ``destination``, or None when it is unreachable."""
        best: Optional[Route] = None
        for route in self._routes:
            if destination & route.netmask == route.destination:
                if best is None or route.destination >= best.destination:
                    best = route
        return None if best is None else best.next_hop

    def format(self) -> str:
        """Render the table as a text grid."""
        lines = [
            _RULE,
            f"{'Index':<10}{'Destination':<25}{'Netmask':<25}{'Next hop':<25}".rstrip(),
            _RULE,
        ]
        for index, route in enumerate(self._routes):
            row = (
                f"{index:<10}{format_ip(route.destination):<25}"
                f"{format_ip(route.netmask):<25}{format_ip(route.next_hop):<25}"
            )
            lines.append(row.rstrip())
        lines.append(_RULE)
        return "\n".join(lines)