import io

import pytest

from softrouter.replay import (
    PACKET_HEADER_SIZE,
    SendQueue,
    fill_queue,
    main,
    transmit,
)
from softrouter.savefile import PacketRecord, PcapReader, PcapWriter, SavefileError


class FakeLink:
    def __init__(self, fail_at=None):
        self.sent = []
        self.fail_at = fail_at

    def send(self, frame):
        if self.fail_at is not None and len(self.sent) == self.fail_at:
            raise OSError("link down")
        self.sent.append(bytes(frame))
        return len(frame)


def _record(sec, usec, data):
    return PacketRecord(sec, usec, data)


def test_append_tracks_size_and_order():
    queue = SendQueue(1000)
    first = _record(1, 0, b"abc")
    second = _record(2, 0, b"defgh")
    queue.append(first)
    queue.append(second)
    assert len(queue) == 2
    assert list(queue) == [first, second]
    assert queue.size == 2 * PACKET_HEADER_SIZE + 3 + 5


def test_append_overflow_leaves_queue_unchanged():
    queue = SendQueue(PACKET_HEADER_SIZE + 4)
    queue.append(_record(0, 0, b"1234"))
    with pytest.raises(OverflowError):
        queue.append(_record(0, 0, b"x"))
    assert len(queue) == 1
    assert queue.size == PACKET_HEADER_SIZE + 4


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        SendQueue(-1)


def test_fill_queue_all_fit():
    records = [_record(i, 0, bytes([i]) * 10) for i in range(3)]
    queue = SendQueue(3 * (PACKET_HEADER_SIZE + 10))
    assert fill_queue(queue, records) == (3, False)
    assert list(queue) == records


def test_fill_queue_reports_truncation():
    records = [_record(i, 0, bytes(10)) for i in range(5)]
    queue = SendQueue(2 * (PACKET_HEADER_SIZE + 10))
    count, truncated = fill_queue(queue, records)
    assert count == 2
    assert truncated is True
    assert len(queue) == 2


def test_fill_queue_propagates_corruption():
    buffer = io.BytesIO()
    writer = PcapWriter(buffer)
    writer.write(_record(1, 0, b"0123456789"))
    data = buffer.getvalue()[:-4]
    reader = PcapReader(io.BytesIO(data))
    with pytest.raises(SavefileError):
        fill_queue(SendQueue(1000), reader)


def test_transmit_sends_everything_in_order():
    queue = SendQueue(1000)
    frames = [b"first", b"second", b"third"]
    for index, frame in enumerate(frames):
        queue.append(_record(index, 0, frame))
    link = FakeLink()
    sleeps = []
    assert transmit(queue, link, False, sleeps.append) == queue.size
    assert link.sent == frames
    assert sleeps == []


def test_transmit_sync_keeps_gaps():
    queue = SendQueue(1000)
    queue.append(_record(1, 0, b"a"))
    queue.append(_record(1, 250000, b"b"))
    queue.append(_record(2, 250000, b"c"))
    sleeps = []
    transmit(queue, FakeLink(), True, sleeps.append)
    assert sleeps == [pytest.approx(0.25), pytest.approx(1.0)]


def test_transmit_sync_skips_backward_timestamps():
    queue = SendQueue(1000)
    queue.append(_record(5, 0, b"a"))
    queue.append(_record(4, 0, b"b"))
    sleeps = []
    link = FakeLink()
    transmit(queue, link, True, sleeps.append)
    assert sleeps == []
    assert link.sent == [b"a", b"b"]


def test_transmit_stops_at_first_failure():
    queue = SendQueue(1000)
    queue.append(_record(0, 0, b"abcd"))
    queue.append(_record(0, 0, b"efgh"))
    link = FakeLink(fail_at=1)
    sent = transmit(queue, link, False, lambda _: None)
    assert sent == PACKET_HEADER_SIZE + 4
    assert sent < queue.size
    assert link.sent == [b"abcd"]


def test_main_missing_file(tmp_path):
    assert main([str(tmp_path / "missing.pcap"), "eth0"]) == 1


def test_main_bad_adapter(tmp_path):
    path = tmp_path / "capture.pcap"
    with open(path, "wb") as stream:
        writer = PcapWriter(stream)
        writer.write(_record(1, 0, b"payload"))
    assert main([str(path), "no-such-adapter0"]) == 1


def test_main_requires_adapter():
    with pytest.raises(SystemExit):
        main(["only-a-file.pcap"])