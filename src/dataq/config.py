from __future__ import annotations

import json
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

from .errors import ConfigurationOutOfRange

MAX_CHANNELS = 32
SCANLIST_ENTRY_LEN = 4

DEFAULT_PORT = 10001
DEFAULT_SCANLIST = "E000E001E002E003E004E005E006E007"

# Hex strings such as "0000" must not be coerced to integers.
_STRING_KEYS = {"session.scanlist"}


@dataclass(frozen=True)
class SessionConfig:
    timerscaler: int = 2  # division from the 14400 Hz main timer
    rate_divisor: int = 0  # further division on output rate
    scanlist: str = DEFAULT_SCANLIST
    n_chans: int = 6


@dataclass(frozen=True)
class Calibration:
    fullscale: float = 20.0  # depends on the installed input amplifier module
    fudge: float = 1.0


@dataclass
class HostRuntime:
    port: int = DEFAULT_PORT
    read_timeout_sec: float = 1.0
    poll_interval_sec: float = 0.1
    drain_sec: float = 0.222222
    rows_per_read: int = 1
    stats_log_interval: float = 60.0
    max_sync_errors: int = 10


@dataclass
class DataqConfig:
    session: SessionConfig = field(default_factory=SessionConfig)
    calibration: Calibration = field(default_factory=Calibration)
    host: HostRuntime = field(default_factory=HostRuntime)


def validate_session_config(config: SessionConfig) -> None:
    """Raise `ConfigurationOutOfRange` unless *config* can be sent to a device."""
    if config.n_chans > MAX_CHANNELS:
        raise ConfigurationOutOfRange(
            f"Requested {config.n_chans} channels exceeds maximum {MAX_CHANNELS} channels"
        )
    if config.n_chans < 1:
        raise ConfigurationOutOfRange("At least one channel must be scanned")
    if not 0 <= config.timerscaler <= 0xFF:
        raise ConfigurationOutOfRange(f"timerscaler {config.timerscaler} does not fit in one byte")
    if not 0 <= config.rate_divisor <= 0xFFFF:
        raise ConfigurationOutOfRange(f"rate_divisor {config.rate_divisor} does not fit in two bytes")
    scanlist = config.scanlist
    if not scanlist or any(ch not in string.hexdigits for ch in scanlist):
        raise ConfigurationOutOfRange(f"scanlist '{scanlist}' must be a non-empty hex string")
    if len(scanlist) % SCANLIST_ENTRY_LEN:
        raise ConfigurationOutOfRange(
            f"scanlist length {len(scanlist)} is not a multiple of {SCANLIST_ENTRY_LEN}"
        )
    entries = len(scanlist) // SCANLIST_ENTRY_LEN
    if config.n_chans > entries:
        raise ConfigurationOutOfRange(
            f"Requested {config.n_chans} channels but scanlist only lists {entries}"
        )


def validate_host_runtime(runtime: HostRuntime) -> None:
    """Raise `ConfigurationOutOfRange` for host settings the reader cannot honour."""
    if not 1 <= runtime.port <= 0xFFFF:
        raise ConfigurationOutOfRange(f"port {runtime.port} is not a valid TCP port")
    if runtime.read_timeout_sec <= 0:
        raise ConfigurationOutOfRange(f"read_timeout_sec must be positive, got {runtime.read_timeout_sec}")
    if runtime.poll_interval_sec <= 0:
        raise ConfigurationOutOfRange(f"poll_interval_sec must be positive, got {runtime.poll_interval_sec}")
    if runtime.drain_sec < 0:
        raise ConfigurationOutOfRange(f"drain_sec may not be negative, got {runtime.drain_sec}")
    if runtime.rows_per_read < 1:
        raise ConfigurationOutOfRange(f"rows_per_read must be at least 1, got {runtime.rows_per_read}")
    if runtime.stats_log_interval < 0:
        raise ConfigurationOutOfRange(
            f"stats_log_interval may not be negative, got {runtime.stats_log_interval}"
        )
    if runtime.max_sync_errors < 0:
        raise ConfigurationOutOfRange(f"max_sync_errors may not be negative, got {runtime.max_sync_errors}")


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> DataqConfig:
    """
    Build a `DataqConfig` from an optional JSON file plus dotted overrides.

    Overrides use `key=value` syntax, e.g.:
        ["session.n_chans=8", "host.drain_sec=0.3", "calibration.fudge=1.018"]
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    session = merged.get("session") or {}
    calibration = merged.get("calibration") or {}
    host = merged.get("host") or {}
    defaults = HostRuntime()
    return DataqConfig(
        session=SessionConfig(
            timerscaler=int(session.get("timerscaler", 2)),
            rate_divisor=int(session.get("rate_divisor", 0)),
            scanlist=str(session.get("scanlist", DEFAULT_SCANLIST)),
            n_chans=int(session.get("n_chans", 6)),
        ),
        calibration=Calibration(
            fullscale=float(calibration.get("fullscale", 20.0)),
            fudge=float(calibration.get("fudge", 1.0)),
        ),
        host=HostRuntime(
            port=int(host.get("port", defaults.port)),
            read_timeout_sec=float(host.get("read_timeout_sec", defaults.read_timeout_sec)),
            poll_interval_sec=float(host.get("poll_interval_sec", defaults.poll_interval_sec)),
            drain_sec=float(host.get("drain_sec", defaults.drain_sec)),
            rows_per_read=int(host.get("rows_per_read", defaults.rows_per_read)),
            stats_log_interval=float(host.get("stats_log_interval", defaults.stats_log_interval)),
            max_sync_errors=int(host.get("max_sync_errors", defaults.max_sync_errors)),
        ),
    )


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    if key in _STRING_KEYS:
        return key, raw_value.strip()
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
