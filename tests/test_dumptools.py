import struct
import time

import pytest

from softrouter.dumptools import (
    ConsistencyChecker,
    LinkType,
    TrafficMeter,
    build_test_packet,
    format_rates,
    format_record,
    format_time_len,
    hexdump,
    main,
)
from softrouter.savefile import PacketRecord, open_reader, open_writer


def _sample(sec, usec, packets, octets):
    return PacketRecord(sec, usec, struct.pack("<QQ", packets, octets))


def _clock(seconds):
    return time.strftime("%H:%M:%S", time.localtime(seconds))


def test_ethernet_test_packet():
    packet = build_test_packet(LinkType.EN10MB)
    assert len(packet) == 100
    assert packet[:12] == b"\x01" * 6 + b"\x02" * 6
    assert packet[12:] == bytes(range(12, 100))


def test_null_test_packet():
    packet = build_test_packet(LinkType.NULL)
    assert len(packet) == 100
    assert packet[:4] == b"\x02\x00\x00\x00"
    assert packet[4:] == bytes(range(4, 100))


def test_unknown_linktype_rejected():
    with pytest.raises(ValueError, match="unknown data-link type"):
        build_test_packet(105)


def test_hexdump_round_trip_and_line_breaks():
    data = bytes(range(40))
    text = hexdump(data)
    assert text.count("\n") == len(data) // 16
    assert bytes(int(token, 16) for token in text.split()) == data


def test_hexdump_custom_line_length():
    data = bytes(range(12))
    text = hexdump(data, 4)
    lines = text.splitlines()
    assert len(lines) == 3
    assert all(len(line.split()) == 4 for line in lines)


def test_hexdump_empty_and_invalid():
    assert hexdump(b"") == ""
    with pytest.raises(ValueError):
        hexdump(b"\x00", 0)


def test_format_record_layout():
    record = PacketRecord(5, 7, bytes(range(20)), 60)
    text = format_record(record)
    assert text.startswith("5:7 (60)\n")
    assert text.endswith("\n\n")
    assert text == "5:7 (60)\n" + hexdump(record.data) + "\n\n"


def test_format_time_len():
    record = PacketRecord(1000, 42, b"\x00" * 60)
    assert format_time_len(record) == _clock(1000) + ",000042 len:60"


def test_checker_accepts_consistent_packets():
    checker = ConsistencyChecker()
    assert checker.check(PacketRecord(1, 0, b"abc")) == []
    assert checker.check(PacketRecord(1, 5, b"abc")) == []


def test_checker_reports_length_mismatch():
    checker = ConsistencyChecker()
    problems = checker.check(PacketRecord(1, 0, b"abc", 10))
    assert problems == ["Inconsistent header: CapLen 3\t Len 10"]


def test_checker_reports_time_going_back():
    checker = ConsistencyChecker()
    checker.check(PacketRecord(10, 500, b"x"))
    problems = checker.check(PacketRecord(9, 100, b"x"))
    assert problems == ["Inconsistent Timestamps! Old was 10.000500 - New is 9.000100"]
    assert checker.check(PacketRecord(9, 200, b"x")) == []


def test_meter_first_sample_sets_baseline():
    meter = TrafficMeter()
    assert meter.update(_sample(100, 0, 5, 100)) is None


def test_meter_rates_over_one_second():
    meter = TrafficMeter()
    meter.update(_sample(100, 0, 0, 0))
    bps, pps = meter.update(_sample(101, 0, 7, 300))
    assert pps == 7
    assert bps == 300 * 8


def test_meter_rates_scale_with_interval():
    meter = TrafficMeter(start=(100, 0))
    bps_long, pps_long = meter.update(_sample(102, 0, 10, 1000))
    other = TrafficMeter(start=(100, 0))
    bps_short, pps_short = other.update(_sample(101, 0, 10, 1000))
    assert bps_short == 2 * bps_long
    assert pps_short == 2 * pps_long


def test_meter_rejects_non_advancing_and_short_samples():
    meter = TrafficMeter(start=(5, 10))
    with pytest.raises(ValueError):
        meter.update(_sample(5, 10, 1, 1))
    with pytest.raises(ValueError):
        TrafficMeter().update(PacketRecord(1, 0, b"\x00" * 8))


def test_format_rates():
    assert format_rates(0, 800, 5) == _clock(0) + " BPS=800 PPS=5"


def _write(path, records):
    with open_writer(str(path)) as writer:
        for record in records:
            writer.write(record)


def test_main_dump(tmp_path, capsys):
    path = tmp_path / "in.pcap"
    record = PacketRecord(3, 4, bytes(range(18)))
    _write(path, [record])
    assert main(["dump", str(path)]) == 0
    assert format_record(record) in capsys.readouterr().out


def test_main_check(tmp_path, capsys):
    path = tmp_path / "in.pcap"
    _write(path, [PacketRecord(10, 0, b"ab"), PacketRecord(9, 0, b"ab")])
    assert main(["check", str(path)]) == 0
    assert "Inconsistent Timestamps!" in capsys.readouterr().out


def test_main_top(tmp_path, capsys):
    path = tmp_path / "stats.pcap"
    _write(path, [_sample(100, 0, 0, 0), _sample(101, 0, 7, 300)])
    assert main(["top", str(path)]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "TCP traffic summary:"
    assert lines[1].endswith("BPS=2400 PPS=7")


def test_main_packet_writes_test_frame(tmp_path):
    path = tmp_path / "out.pcap"
    assert main(["packet", str(path), "--linktype", "0"]) == 0
    with open_reader(str(path)) as reader:
        records = list(reader)
        assert reader.linktype == 0
    assert [r.data for r in records] == [build_test_packet(LinkType.NULL)]


def test_main_missing_file(tmp_path):
    assert main(["dump", str(tmp_path / "absent.pcap")]) == 1