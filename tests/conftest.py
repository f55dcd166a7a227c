from __future__ import annotations

import socket
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from dataq.command import STOP_SEQUENCE
from dataq.frames import encode_word


def row_bytes(magnitudes: List[int]) -> bytes:
    words = [encode_word(value, channel) for channel, value in enumerate(magnitudes)]
    return b"".join(word.to_bytes(2, "little") for word in words)


class FakeDevice:
    """In-memory stand-in for a DI-718B socket.

    Echoes every ``0x00``-prefixed command, starts emitting ``stream`` after
    ``S3`` and queues ``tail`` after each stop sequence. ``events`` records the
    order of writes and stream reads.
    """

    def __init__(
        self,
        stream: bytes = b"",
        stale: bytes = b"",
        tail: bytes = b"",
        eof: bool = False,
    ) -> None:
        self.stream = stream
        self.tail = tail
        self.eof = eof
        self.echo_overrides: Dict[bytes, bytes] = {}
        self.events: List[Tuple[str, bytes]] = []
        self.sent: List[bytes] = []
        self.closed = False
        self.address = None
        self.connect_error: Optional[OSError] = None
        self.send_error: Optional[OSError] = None
        self.on_empty_read: Optional[Callable[[], None]] = None
        self._inbox = bytearray(stale)
        self._timeout: Optional[float] = None

    def connect(self, address) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.address = address

    def settimeout(self, value: Optional[float]) -> None:
        self._timeout = value

    def gettimeout(self) -> Optional[float]:
        return self._timeout

    def setblocking(self, flag: bool) -> None:
        self._timeout = None if flag else 0.0

    def send(self, data: bytes) -> int:
        if self.send_error is not None:
            raise self.send_error
        data = bytes(data)
        self.sent.append(data)
        self.events.append(("send", data))
        if data == STOP_SEQUENCE:
            self._inbox.extend(self.tail)
        elif data.startswith(b"\x00"):
            body = data[1:]
            self._inbox.extend(self.echo_overrides.get(body, body))
            if body == b"S3":
                self._inbox.extend(self.stream)
        return len(data)

    def recv(self, bufsize: int) -> bytes:
        if not self._inbox:
            if self._timeout == 0.0:
                raise BlockingIOError("no data")
            if self.on_empty_read is not None:
                self.on_empty_read()
            if self.eof:
                return b""
            raise socket.timeout("timed out")
        chunk = bytes(self._inbox[:bufsize])
        del self._inbox[:bufsize]
        return chunk

    def recv_into(self, buffer, nbytes: int = 0) -> int:
        self.events.append(("read", b""))
        chunk = self.recv(nbytes or len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)

    def close(self) -> None:
        self.closed = True

    def feed(self, data: bytes) -> None:
        self._inbox.extend(data)


@pytest.fixture
def patch_network(monkeypatch):
    """Route `dataq.session` socket creation to the given fake device."""

    def _install(device: FakeDevice) -> FakeDevice:
        monkeypatch.setattr("dataq.session._resolve", lambda host, port: (host, port))
        monkeypatch.setattr("dataq.session._create_socket", lambda: device)
        return device

    return _install
