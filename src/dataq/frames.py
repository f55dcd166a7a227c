from __future__ import annotations

from typing import Sequence

import numpy as np

from .config import Calibration
from .errors import ShortRead, SyncBitViolation

SYNC_MASK = 0x0101
SYNC_FIRST = 0x0100  # word 0 of a row
SYNC_NEXT = 0x0101  # every later word
MID_SCALE = 1 << 13
WIRE_DTYPE = np.dtype("<u2")


def sync_pattern(channel: int) -> int:
    return SYNC_FIRST if channel == 0 else SYNC_NEXT


def extract_magnitude(word: int | np.ndarray) -> int | np.ndarray:
    """Drop the sync bits (0 and 8) and repack the other 14 bits."""
    return ((word & 0xFE00) >> 2) | ((word & 0x00FE) >> 1)


def encode_word(magnitude: int, channel: int) -> int:
    """Inverse of `extract_magnitude` with the sync bits for *channel* set."""
    if not 0 <= magnitude < (1 << 14):
        raise ValueError(f"magnitude {magnitude} outside 14-bit range")
    return ((magnitude & 0x3F80) << 2) | ((magnitude & 0x007F) << 1) | sync_pattern(channel)


def words_from_bytes(data: bytes, n_chans: int) -> np.ndarray:
    """View a little-endian byte block as ``(rows, n_chans)`` uint16 words."""
    row_bytes = 2 * n_chans
    if len(data) % row_bytes:
        raise ShortRead(expected=(len(data) // row_bytes + 1) * row_bytes, received=len(data))
    return np.frombuffer(data, dtype=WIRE_DTYPE).reshape(-1, n_chans)


def _scale(v14: np.ndarray, fullscale: float, fudge: float) -> np.ndarray:
    values = fudge * fullscale * ((v14.astype(np.float64) / MID_SCALE) - 1.0)
    return values.astype(np.float32)


def _expected_sync(n_chans: int) -> np.ndarray:
    expected = np.full(n_chans, SYNC_NEXT, dtype=np.uint16)
    expected[0] = SYNC_FIRST
    return expected


def decode_row(
    raw_words: Sequence[int] | np.ndarray,
    n_chans: int,
    fullscale: float,
    fudge: float = 1.0,
) -> np.ndarray:
    """
    Convert one row of raw wire words into calibrated values.

    Raises `SyncBitViolation` naming the first channel whose sync bits do not
    match its position. Only the first *n_chans* words are inspected.
    """
    words = np.asarray(raw_words, dtype=np.uint16)
    if words.ndim != 1 or words.size < n_chans:
        raise ShortRead(expected=2 * n_chans, received=2 * int(words.size))
    words = words[:n_chans]
    bad = np.flatnonzero((words & SYNC_MASK) != _expected_sync(n_chans))
    if bad.size:
        channel = int(bad[0])
        raise SyncBitViolation(channel=channel, word=int(words[channel]))
    return _scale(extract_magnitude(words), fullscale, fudge)


def decode_rows(block: np.ndarray, calibration: Calibration) -> np.ndarray:
    """Vectorised `decode_row` over a ``(rows, n_chans)`` block."""
    words = np.asarray(block, dtype=np.uint16)
    if words.ndim == 1:
        words = words.reshape(1, -1)
    n_chans = words.shape[1]
    mismatch = (words & SYNC_MASK) != _expected_sync(n_chans)
    if mismatch.any():
        row, channel = (int(i) for i in np.argwhere(mismatch)[0])
        raise SyncBitViolation(channel=channel, word=int(words[row, channel]), row=row)
    return _scale(extract_magnitude(words), calibration.fullscale, calibration.fudge)
