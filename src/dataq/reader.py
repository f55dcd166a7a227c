from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Optional

import numpy as np

from .errors import ConfigurationOutOfRange, PeerClosed, ReadFailed, ReadTimeout, ShortRead
from .frames import words_from_bytes

logger = logging.getLogger(__name__)


def read_block(
    conn: socket.socket,
    rows_per_read: int,
    n_chans: int,
    cancel: Optional[threading.Event] = None,
    timeout: float = 1.0,
    poll_interval: float = 0.1,
) -> Optional[np.ndarray]:
    """
    Read ``rows_per_read`` complete rows from *conn*.

    Returns a ``(rows_per_read, n_chans)`` uint16 array in wire order, or
    ``None`` when *cancel* was set while waiting. The socket is polled in
    *poll_interval* slices so cancellation is seen long before *timeout*.
    """
    if rows_per_read < 1 or n_chans < 1:
        raise ConfigurationOutOfRange(f"Cannot read {rows_per_read} rows of {n_chans} channels")
    expected = rows_per_read * n_chans * 2
    buf = bytearray(expected)
    view = memoryview(buf)
    received = 0
    deadline = time.monotonic() + timeout
    previous_timeout = conn.gettimeout()
    conn.settimeout(min(poll_interval, timeout))
    try:
        while received < expected:
            if cancel is not None and cancel.is_set():
                break
            try:
                n = conn.recv_into(view[received:], expected - received)
            except socket.timeout:
                if time.monotonic() >= deadline:
                    break
                continue
            except OSError as exc:
                raise ReadFailed(f"Error reading from socket: {exc}") from exc
            if n == 0:
                if received == 0:
                    raise PeerClosed("EOF reading from socket")
                break
            received += n
    finally:
        conn.settimeout(previous_timeout)

    if received == expected:
        return words_from_bytes(bytes(buf), n_chans)
    if cancel is not None and cancel.is_set():
        logger.debug("Read cancelled after %d of %d bytes", received, expected)
        return None
    if received == 0:
        raise ReadTimeout(f"Timed out after {timeout:.1f}s waiting for stream data")
    raise ShortRead(expected=expected, received=received)
