from __future__ import annotations

import enum
import errno
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .command import STOP_SEQUENCE, START_COMMAND, send_command, write_all
from .config import HostRuntime, SessionConfig, validate_host_runtime, validate_session_config
from .errors import ConnectionRefused, DataqError, HostResolutionFailed, ReadFailed
from .reader import read_block

logger = logging.getLogger(__name__)

DRAIN_CHUNK = 32


class SessionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FLUSHING = "flushing"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    STOPPING = "stopping"
    CLOSED = "closed"


@dataclass
class RowBlock:
    """Raw rows from one read, stamped when they arrived."""

    timestamp: float
    words: np.ndarray

    @property
    def rows(self) -> int:
        return int(self.words.shape[0])


def init_sequence(config: SessionConfig) -> List[Tuple[str, Tuple[Any, ...]]]:
    return [
        ("X%02X", (config.timerscaler,)),
        ("M%04X", (config.rate_divisor,)),
        ("L00%s", (config.scanlist,)),
        ("C%02X", (config.n_chans,)),
        (START_COMMAND, ()),
    ]


def _resolve(hostname: str, port: int) -> Tuple[Any, ...]:
    try:
        infos = socket.getaddrinfo(hostname, port, socket.AF_INET, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise HostResolutionFailed(f"DNS lookup for {hostname} failed, is it plugged in?") from exc
    if not infos:
        raise HostResolutionFailed(f"DNS lookup for {hostname} returned no addresses")
    return infos[0][4]


def _create_socket() -> socket.socket:
    return socket.socket(socket.AF_INET, socket.SOCK_STREAM)


def drain(conn: socket.socket, delay: float) -> int:
    """Wait *delay* seconds, then discard whatever is immediately readable."""
    time.sleep(delay)
    discarded = 0
    previous_timeout = conn.gettimeout()
    conn.setblocking(False)
    try:
        while True:
            try:
                chunk = conn.recv(DRAIN_CHUNK)
            except BlockingIOError:
                break
            if not chunk:
                break
            discarded += len(chunk)
    finally:
        conn.settimeout(previous_timeout)
    if discarded:
        logger.debug("Drained %d stale bytes", discarded)
    return discarded


class DataqSession:
    """Owns one device connection from handshake to teardown."""

    def __init__(
        self,
        config: SessionConfig,
        runtime: Optional[HostRuntime] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.runtime = runtime or HostRuntime()
        self.state = SessionState.DISCONNECTED
        self._clock = clock
        self._sock: Optional[socket.socket] = None

    @property
    def sock(self) -> Optional[socket.socket]:
        return self._sock

    def open(self, hostname: str, port: Optional[int] = None) -> "DataqSession":
        validate_session_config(self.config)
        validate_host_runtime(self.runtime)
        if self.state is not SessionState.DISCONNECTED:
            raise RuntimeError(f"Cannot open a session in state {self.state.value}")
        port = self.runtime.port if port is None else port
        address = _resolve(hostname, port)
        sock = _create_socket()
        try:
            sock.connect(address)
        except OSError as exc:
            sock.close()
            if exc.errno == errno.EHOSTUNREACH:
                raise ConnectionRefused(f"Error connecting to {hostname}:{port}, is it plugged in?") from exc
            raise ConnectionRefused(
                f"Error connecting to {hostname}:{port}, is someone else using it?"
            ) from exc
        sock.settimeout(self.runtime.read_timeout_sec)
        self._sock = sock
        self.state = SessionState.CONNECTED
        logger.info("Connected to %s:%d", hostname, port)
        try:
            self._flush()
            self.state = SessionState.INITIALIZING
            for fmt, args in init_sequence(self.config):
                send_command(sock, fmt, *args)
        except DataqError:
            self._release()
            raise
        self.state = SessionState.STREAMING
        logger.info(
            "Streaming %d channels (timerscaler=%d rate_divisor=%d)",
            self.config.n_chans,
            self.config.timerscaler,
            self.config.rate_divisor,
        )
        return self

    def read_rows(self, count: Optional[int] = None, cancel: Optional[threading.Event] = None) -> Optional[RowBlock]:
        """Read *count* rows; ``None`` means *cancel* fired during the wait."""
        if self.state is not SessionState.STREAMING or self._sock is None:
            raise RuntimeError(f"Cannot read rows in state {self.state.value}")
        words = read_block(
            self._sock,
            count or self.runtime.rows_per_read,
            self.config.n_chans,
            cancel=cancel,
            timeout=self.runtime.read_timeout_sec,
            poll_interval=self.runtime.poll_interval_sec,
        )
        if words is None:
            return None
        return RowBlock(timestamp=self._clock(), words=words)

    def close(self) -> None:
        """Stop the stream, flush and disconnect. Never raises."""
        if self._sock is None:
            self.state = SessionState.CLOSED
            return
        self.state = SessionState.STOPPING
        try:
            write_all(self._sock, STOP_SEQUENCE)
        except DataqError as exc:
            logger.debug("Ignoring error while stopping stream: %s", exc)
        try:
            drain(self._sock, self.runtime.drain_sec)
        except Exception as exc:
            logger.debug("Ignoring error while draining: %s", exc)
        self._release()
        logger.info("Disconnected")

    def _flush(self) -> None:
        assert self._sock is not None
        self.state = SessionState.FLUSHING
        write_all(self._sock, STOP_SEQUENCE)
        try:
            drain(self._sock, self.runtime.drain_sec)
        except OSError as exc:
            raise ReadFailed(f"Error flushing socket: {exc}") from exc

    def _release(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None
        self.state = SessionState.CLOSED

    def __enter__(self) -> "DataqSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def connect(
    hostname: str,
    port: int,
    config: SessionConfig,
    runtime: Optional[HostRuntime] = None,
    clock: Callable[[], float] = time.time,
) -> DataqSession:
    return DataqSession(config, runtime=runtime, clock=clock).open(hostname, port)


def read_rows(
    session: DataqSession, count: Optional[int] = None, cancel: Optional[threading.Event] = None
) -> Optional[RowBlock]:
    return session.read_rows(count, cancel)


def close(session: DataqSession) -> None:
    session.close()
