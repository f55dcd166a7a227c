from __future__ import annotations

import socket
import threading
import time

import pytest

from conftest import FakeDevice, row_bytes
from dataq.errors import ConfigurationOutOfRange, PeerClosed, ReadFailed, ReadTimeout, ShortRead
from dataq.reader import read_block


def test_read_block_returns_rows_in_wire_order() -> None:
    device = FakeDevice()
    device.feed(row_bytes([1, 2, 3]) + row_bytes([4, 5, 6]))
    device.settimeout(1.0)
    words = read_block(device, 2, 3, timeout=0.2, poll_interval=0.01)
    assert words.shape == (2, 3)
    assert words[0, 0] & 0x0101 == 0x0100
    assert words[1, 2] & 0x0101 == 0x0101
    assert device.gettimeout() == 1.0


def test_read_block_peer_closed() -> None:
    device = FakeDevice(eof=True)
    with pytest.raises(PeerClosed):
        read_block(device, 1, 6, timeout=0.2, poll_interval=0.01)


def test_read_block_partial_row_then_eof_is_short_read() -> None:
    device = FakeDevice(eof=True)
    device.feed(row_bytes([8192] * 6)[:5])
    with pytest.raises(ShortRead) as info:
        read_block(device, 1, 6, timeout=0.2, poll_interval=0.01)
    assert (info.value.expected, info.value.received) == (12, 5)


def test_read_block_partial_row_then_timeout_is_short_read() -> None:
    device = FakeDevice()
    device.feed(b"\x00\x01")
    with pytest.raises(ShortRead):
        read_block(device, 1, 2, timeout=0.05, poll_interval=0.01)


def test_read_block_silent_device_times_out() -> None:
    device = FakeDevice()
    with pytest.raises(ReadTimeout) as info:
        read_block(device, 1, 2, timeout=0.05, poll_interval=0.01)
    assert isinstance(info.value, ReadFailed)
    assert not isinstance(info.value, ShortRead)


def test_read_block_rejects_empty_request() -> None:
    device = FakeDevice()
    device.feed(row_bytes([8192] * 2))
    with pytest.raises(ConfigurationOutOfRange):
        read_block(device, 0, 2, timeout=0.05, poll_interval=0.01)
    assert device.events == []


def test_read_block_cancelled_mid_wait_is_not_short_read() -> None:
    device = FakeDevice()
    device.feed(row_bytes([8192] * 6)[:4])
    cancel = threading.Event()
    device.on_empty_read = cancel.set
    assert read_block(device, 1, 6, cancel=cancel, timeout=1.0, poll_interval=0.01) is None


def test_read_block_cancelled_before_read() -> None:
    device = FakeDevice()
    device.feed(row_bytes([8192] * 2))
    cancel = threading.Event()
    cancel.set()
    assert read_block(device, 1, 2, cancel=cancel) is None


def test_read_block_cancellation_is_prompt_on_real_socket() -> None:
    client, peer = socket.socketpair()
    try:
        client.settimeout(1.0)
        peer.sendall(row_bytes([8192] * 4)[:3])
        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        started = time.monotonic()
        result = read_block(client, 1, 4, cancel=cancel, timeout=5.0, poll_interval=0.05)
        elapsed = time.monotonic() - started
        timer.join()
        assert result is None
        assert elapsed < 1.0
        assert client.gettimeout() == 1.0
    finally:
        client.close()
        peer.close()


class _CancelOnRead(FakeDevice):
    def __init__(self, cancel: threading.Event) -> None:
        super().__init__()
        self.cancel = cancel

    def recv_into(self, buffer, nbytes: int = 0) -> int:
        n = super().recv_into(buffer, nbytes)
        self.cancel.set()
        return n


def test_read_block_keeps_complete_block_when_cancelled_late() -> None:
    cancel = threading.Event()
    device = _CancelOnRead(cancel)
    device.feed(row_bytes([8192] * 3))
    words = read_block(device, 1, 3, cancel=cancel, timeout=0.2, poll_interval=0.01)
    assert cancel.is_set()
    assert words is not None
    assert words.shape == (1, 3)
