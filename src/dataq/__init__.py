"""Client for the DATAQ DI-718B-E(S) streaming acquisition protocol."""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("dataq-client")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from .command import MAX_COMMAND_LEN, send_command
from .config import MAX_CHANNELS, Calibration, DataqConfig, HostRuntime, SessionConfig, load_config
from .errors import (
    CommandTooLong,
    ConfigurationOutOfRange,
    ConnectionRefused,
    DataqError,
    EchoMismatch,
    HostResolutionFailed,
    PeerClosed,
    ProtocolError,
    ReadFailed,
    ReadTimeout,
    ShortRead,
    SyncBitViolation,
    WriteFailed,
)
from .frames import decode_row, decode_rows
from .reader import read_block
from .session import DataqSession, RowBlock, SessionState, close, connect, read_rows

__all__ = [
    "__version__",
    "MAX_CHANNELS",
    "MAX_COMMAND_LEN",
    "Calibration",
    "DataqConfig",
    "HostRuntime",
    "SessionConfig",
    "load_config",
    "send_command",
    "decode_row",
    "decode_rows",
    "read_block",
    "DataqSession",
    "RowBlock",
    "SessionState",
    "connect",
    "read_rows",
    "close",
    "DataqError",
    "ProtocolError",
    "ConfigurationOutOfRange",
    "CommandTooLong",
    "HostResolutionFailed",
    "ConnectionRefused",
    "PeerClosed",
    "WriteFailed",
    "ReadFailed",
    "ReadTimeout",
    "EchoMismatch",
    "ShortRead",
    "SyncBitViolation",
]
