"""ASCII command channel with echo verification.

Commands go out as ``0x00`` followed by the ASCII body. The device answers with
the body alone (no leading zero byte). Anything else is fatal for the session.
"""
from __future__ import annotations

import logging
import socket
from typing import Any

from .errors import CommandTooLong, EchoMismatch, PeerClosed, ReadFailed, ShortRead, WriteFailed

logger = logging.getLogger(__name__)

COMMAND_MARKER = b"\x00"
MAX_COMMAND_LEN = 254
START_COMMAND = "S3"
STOP_SEQUENCE = COMMAND_MARKER + b"T0"


def format_command(fmt: str, *args: Any) -> bytes:
    body = (fmt % args if args else fmt).encode("ascii")
    if not body:
        raise CommandTooLong("Command body may not be empty")
    if len(body) > MAX_COMMAND_LEN:
        raise CommandTooLong(f"Command of {len(body)} bytes exceeds maximum {MAX_COMMAND_LEN}")
    return body


def write_all(conn: socket.socket, payload: bytes) -> None:
    sent = 0
    while sent < len(payload):
        try:
            n = conn.send(payload[sent:])
        except OSError as exc:
            raise WriteFailed(f"Error writing to socket: {exc}") from exc
        if n == 0:
            raise PeerClosed("EOF writing to socket")
        sent += n


def recv_exact(conn: socket.socket, count: int) -> bytes:
    """Read *count* bytes, bounded by the socket timeout."""
    chunks = bytearray()
    while len(chunks) < count:
        try:
            chunk = conn.recv(count - len(chunks))
        except socket.timeout as exc:
            if not chunks:
                raise ReadFailed("Timed out reading from socket") from exc
            break
        except OSError as exc:
            raise ReadFailed(f"Error reading from socket: {exc}") from exc
        if not chunk:
            if not chunks:
                raise PeerClosed("EOF reading from socket")
            break
        chunks.extend(chunk)
    return bytes(chunks)


def send_command(conn: socket.socket, fmt: str, *args: Any) -> None:
    body = format_command(fmt, *args)
    write_all(conn, COMMAND_MARKER + body)
    echo = recv_exact(conn, len(body))
    if len(echo) != len(body):
        raise ShortRead(expected=len(body), received=len(echo))
    if echo != body:
        raise EchoMismatch(expected=body, received=echo)
    logger.debug("CMD: %s", body.decode("ascii"))
