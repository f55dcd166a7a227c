from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import Calibration
from .errors import SyncBitViolation
from .frames import decode_row
from .session import RowBlock

logger = logging.getLogger(__name__)


@dataclass
class Sample:
    """One decoded row in engineering units."""

    timestamp: float
    values: np.ndarray


def format_sample(sample: Sample, precision: int = 3) -> str:
    """Render as ``<sec>.<usec> v0 v1 ...``."""
    usec_total = int(round(sample.timestamp * 1e6))
    sec, usec = divmod(usec_total, 1_000_000)
    values = " ".join(f"{value:.{precision}f}" for value in sample.values)
    return f"{sec}.{usec:06d} {values}"


@dataclass
class StreamStats:
    rows: int = 0
    sync_errors: int = 0
    consecutive_sync_errors: int = 0
    blocks: int = 0


class RowDecoder:
    """
    Decodes row blocks into samples, skipping rows whose sync bits are wrong.

    A run of more than ``max_sync_errors`` bad rows re-raises the last
    `SyncBitViolation`; the stream is almost certainly misaligned by then.
    """

    def __init__(self, n_chans: int, calibration: Calibration, max_sync_errors: int = 0):
        self.n_chans = n_chans
        self.calibration = calibration
        self.max_sync_errors = max(max_sync_errors, 0)
        self.stats = StreamStats()
        self._callbacks: List[Callable[[Sample], None]] = []

    def register_callback(self, callback: Callable[[Sample], None]) -> None:
        self._callbacks.append(callback)

    def process(self, block: RowBlock) -> List[Sample]:
        samples: List[Sample] = []
        self.stats.blocks += 1
        for row in block.words:
            try:
                values = decode_row(row, self.n_chans, self.calibration.fullscale, self.calibration.fudge)
            except SyncBitViolation as exc:
                self.stats.sync_errors += 1
                self.stats.consecutive_sync_errors += 1
                if self.stats.consecutive_sync_errors > self.max_sync_errors:
                    raise
                logger.warning("Skipping row: %s", exc)
                continue
            self.stats.consecutive_sync_errors = 0
            self.stats.rows += 1
            sample = Sample(timestamp=block.timestamp, values=values)
            samples.append(sample)
            for callback in self._callbacks:
                callback(sample)
        return samples


def channel_names(n_chans: int) -> List[str]:
    return [f"ch{index}" for index in range(n_chans)]


def samples_to_dataframe(samples: Iterable[Sample], names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    samples = list(samples)
    if not samples:
        return pd.DataFrame(columns=["timestamp", *(names or [])])
    values = np.vstack([sample.values for sample in samples])
    names = list(names) if names is not None else channel_names(values.shape[1])
    df = pd.DataFrame(values.astype(np.float64), columns=names)
    df.insert(0, "timestamp", [sample.timestamp for sample in samples])
    return df


def summarize(samples: Iterable[Sample], names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Per-channel count/mean/std/min/max plus the effective row rate."""
    df = samples_to_dataframe(samples, names)
    channels = df.drop(columns=["timestamp"])
    summary = channels.agg(["count", "mean", "std", "min", "max"]).T
    span = float(df["timestamp"].max() - df["timestamp"].min()) if len(df) > 1 else 0.0
    summary.attrs["rate_hz"] = (len(df) - 1) / span if span > 0 else math.nan
    return summary
