"""Exception taxonomy for the DATAQ protocol engine.

Every failure carries the ``sysexits`` status the CLI exits with. Cancellation
of a streaming read is not represented here: the reader returns ``None``.
"""
from __future__ import annotations

from typing import Optional

EX_USAGE = 64
EX_DATAERR = 65
EX_NOHOST = 68
EX_UNAVAILABLE = 69
EX_IOERR = 74
EX_PROTOCOL = 76


class DataqError(Exception):
    exit_code: int = EX_UNAVAILABLE


class ConfigurationOutOfRange(DataqError, ValueError):
    exit_code = EX_DATAERR


class CommandTooLong(ConfigurationOutOfRange):
    pass


class HostResolutionFailed(DataqError):
    exit_code = EX_NOHOST


class ConnectionRefused(DataqError):
    exit_code = EX_UNAVAILABLE


class ProtocolError(DataqError):
    """Failure on an established connection."""


class PeerClosed(ProtocolError):
    exit_code = EX_UNAVAILABLE


class WriteFailed(ProtocolError):
    exit_code = EX_IOERR


class ReadFailed(ProtocolError):
    exit_code = EX_IOERR


class ReadTimeout(ReadFailed):
    """Nothing arrived within the read timeout; the stream may just be slow."""


class EchoMismatch(ProtocolError):
    exit_code = EX_PROTOCOL

    def __init__(self, expected: bytes, received: bytes):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected {expected!r}, received {received!r}")


class ShortRead(ProtocolError):
    exit_code = EX_PROTOCOL

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected {expected} bytes, read {received} bytes")


class SyncBitViolation(ProtocolError):
    exit_code = EX_PROTOCOL

    def __init__(self, channel: int, word: int, row: Optional[int] = None):
        self.channel = channel
        self.word = word
        self.row = row
        where = f"row {row} channel {channel}" if row is not None else f"channel {channel}"
        super().__init__(f"LSB mismatch @ {where}: {word:04X}")
