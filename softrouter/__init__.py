"""User-space IPv4 router, raw-link bridge, pcap savefile tools and a BPF interpreter."""

__version__ = "0.1.0"

__all__ = [
    "bpf",
    "capture",
    "dumptools",
    "forwarder",
    "interfaces",
    "linkheaders",
    "packets",
    "replay",
    "routing",
    "savefile",
]