# softrouter

A small software router that runs in user space, together with the
packet tools it is built from: Ethernet, IPv4 and ARP frame handling, a
routing table with longest-prefix lookup, a BPF filter interpreter,
Bluetooth and NFLOG pseudo-header parsing, readers and writers for pcap
savefiles, and command-line tools to list interfaces, inspect and
replay capture files, and bridge two links.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

Raw links (used by `softrouter`, `softrouter-bridge` and
`softrouter-sendcap`) are `AF_PACKET` sockets, so they work on Linux
only and need root or the `CAP_NET_RAW` capability.

## Commands

| Command               | What it does                                                           |
|-----------------------|------------------------------------------------------------------------|
| `softrouter`          | Run the router on one interface: edit the routing table, then forward. |
| `softrouter-iflist`   | List the network interfaces with their addresses.                      |
| `softrouter-savefile` | Print the packets of a pcap file, or the timestamps of a trace via tshark. |
| `softrouter-dump`     | Dump, time, check or rate the packets of a pcap file; write a test frame. |
| `softrouter-sendcap`  | Send the packets of a pcap file out of an interface.                   |
| `softrouter-bridge`   | Forward every frame between two interfaces, in both directions.        |

Each command prints its usage when started with `--help`.

- `softrouter INTERFACE`
- `softrouter-iflist [NAME ...]`
- `softrouter-savefile read FILE` prints each packet's timestamp, wire
  length and bytes in hex; `softrouter-savefile convert TSHARK TRACE`
  runs `TSHARK -r TRACE -w - -F libpcap` and prints one timestamp line
  per packet.
- `softrouter-dump dump FILE`, `times FILE`, `check FILE` (reports
  capture lengths that differ from wire lengths and timestamps that go
  back), `top FILE` (bits and packets per second from a file of
  statistics samples), and `packet OUTPUT [--linktype N]` (writes one
  100-byte test frame for link type 0 or 1 to a pcap file).
- `softrouter-sendcap FILE ADAPTER [s]`; with `s` the gaps between the
  packet timestamps are kept.
- `softrouter-bridge FIRST SECOND`; stop it with Ctrl+C.

### The router

`softrouter` reads the interface's IPv4 addresses and hardware address
from the operating system and adds a route (next hop `0.0.0.0`) for the
network of each IPv4 address. It then reads answers from standard input:
whether to modify the table (1 yes, 2 no) and, while modifying, whether
to add a route (destination, netmask, next hop), delete one by index,
or print the table. Entries 0 and 1 cannot be deleted. The table holds
at most 128 routes, kept ordered by prefix length, longest first, and
refuses a route that is already present.

After editing it forwards up to 8 packets, then returns to the editor.
A frame is forwarded when it is IPv4, is addressed to the router's MAC
address and is meant for another IP address. Among the routes whose
network matches the destination, the one with the largest destination
network is used; a next hop of `0.0.0.0` means the destination itself.
The router asks for the next hop's MAC address with an ARP request,
rewrites the destination MAC, lowers the TTL by one, recomputes the
header checksum and sends the frame. An unreachable destination or an
unanswered ARP request ends the batch early.

## Using the library

```python
from softrouter.packets import format_ip, parse_ip
from softrouter.routing import Route, RoutingTable, prefix_length

print(prefix_length(parse_ip("255.255.255.0")))   # 24

table = RoutingTable(128)
table.add(Route(parse_ip("192.168.1.0"), parse_ip("255.255.255.0"), 0))
print(format_ip(table.lookup(parse_ip("192.168.1.7"))))   # 0.0.0.0
print(table.lookup(parse_ip("10.0.0.1")))                 # None
print(table.format())
```

Reading and writing a savefile:

```python
from softrouter.savefile import PacketRecord, format_timestamp_line, open_reader, open_writer

with open_writer("capture.pcap") as writer:
    writer.write(PacketRecord(1, 0, bytes(60)))

with open_reader("capture.pcap") as reader:
    for record in reader:
        print(format_timestamp_line(record))
```

Running a BPF program over a packet:

```python
from softrouter.bpf import BPF_K, BPF_RET, bpf_stmt, run_filter, validate

accept_all = [bpf_stmt(BPF_RET | BPF_K, 0xFFFFFFFF)]
print(validate(accept_all))                    # True
packet = bytes(60)
print(run_filter(accept_all, packet, len(packet)))   # 4294967295
```

## Modules

- `softrouter.packets`: `EthernetHeader`, `IPv4Header`, `ArpFrame`, `arp_request`, `ipv4_checksum` and address parsing and formatting.
- `softrouter.routing`: `Route`, `RoutingTable`, `RoutingError`, `prefix_length`.
- `softrouter.bpf`: BPF opcode constants, `BpfInsn`, `validate` and the `run_filter` interpreter.
- `softrouter.linkheaders`: Bluetooth H4 and monitor headers, NFLOG headers and `parse_nflog`.
- `softrouter.savefile`: `PcapReader`, `PcapWriter`, `PacketRecord`, `iter_converted`.
- `softrouter.dumptools`: `hexdump`, `ConsistencyChecker`, `TrafficMeter`, `build_test_packet`.
- `softrouter.interfaces`: `list_interfaces` and `describe_interface`.
- `softrouter.capture`: `RawLink`, `forward` and the two-way `Bridge`.
- `softrouter.replay`: `SendQueue`, `fill_queue` and `transmit`.
- `softrouter.forwarder`: `Router`, `should_forward`, `rewrite_frame`, `edit_table`.

## What it does not do

- There is no filter-expression compiler: BPF programs are built from
  instructions with `bpf_stmt` and `bpf_jump`, and none of the commands
  apply a capture filter.
- `softrouter-dump` works on pcap files only; it does not capture live
  from an interface, and `top` expects a file that already holds
  statistics samples.
- Raw links exist only where `AF_PACKET` sockets do (Linux); there is
  no remote capture.
- The router forwards IPv4 only, keeps no ARP cache and does not answer
  ARP requests itself.