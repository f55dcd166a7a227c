from __future__ import annotations

from pathlib import Path

import pytest

from dataq.config import (
    MAX_CHANNELS,
    DataqConfig,
    HostRuntime,
    SessionConfig,
    load_config,
    validate_host_runtime,
    validate_session_config,
)
from dataq.errors import ConfigurationOutOfRange


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        """
        {
          "session": {"timerscaler": 4, "rate_divisor": 16, "n_chans": 4},
          "calibration": {"fullscale": 10.0},
          "host": {"drain_sec": 0.5}
        }
        """,
        encoding="utf-8",
    )
    cfg = load_config(cfg_path, overrides=["session.n_chans=8", "calibration.fudge=1.018"])
    assert isinstance(cfg, DataqConfig)
    assert cfg.session.timerscaler == 4
    assert cfg.session.rate_divisor == 16
    assert cfg.session.n_chans == 8
    assert cfg.calibration.fullscale == 10.0
    assert cfg.calibration.fudge == pytest.approx(1.018)
    assert cfg.host.drain_sec == 0.5
    assert cfg.host.port == 10001


def test_load_config_defaults_without_file() -> None:
    cfg = load_config()
    assert cfg.session == SessionConfig()
    assert cfg.session.n_chans == 6
    assert cfg.calibration.fullscale == 20.0
    assert cfg.host.read_timeout_sec == 1.0
    assert cfg.host.drain_sec == pytest.approx(0.222222)


def test_shipped_config_matches_defaults() -> None:
    cfg = load_config(Path(__file__).resolve().parents[1] / "config" / "di718b.json")
    assert cfg == load_config()


def test_scanlist_override_keeps_hex_digits() -> None:
    cfg = load_config(overrides=["session.scanlist=0000", "session.n_chans=1"])
    assert cfg.session.scanlist == "0000"


def test_override_requires_key_value() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=["session.n_chans"])


def test_session_config_is_immutable() -> None:
    config = SessionConfig()
    with pytest.raises(AttributeError):
        config.n_chans = 7  # type: ignore[misc]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n_chans": MAX_CHANNELS + 1, "scanlist": "E000" * (MAX_CHANNELS + 1)},
        {"n_chans": 0},
        {"timerscaler": 0x100},
        {"rate_divisor": -1},
        {"scanlist": "E00"},
        {"scanlist": "E00G"},
        {"scanlist": "E000", "n_chans": 2},
    ],
)
def test_validate_session_config_rejects(kwargs) -> None:
    with pytest.raises(ConfigurationOutOfRange):
        validate_session_config(SessionConfig(**kwargs))


def test_validate_session_config_accepts_maximum() -> None:
    validate_session_config(SessionConfig(n_chans=MAX_CHANNELS, scanlist="E000" * MAX_CHANNELS))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"port": 0},
        {"port": 0x10000},
        {"read_timeout_sec": 0.0},
        {"poll_interval_sec": 0.0},
        {"drain_sec": -0.1},
        {"rows_per_read": 0},
        {"stats_log_interval": -1.0},
        {"max_sync_errors": -1},
    ],
)
def test_validate_host_runtime_rejects(kwargs) -> None:
    with pytest.raises(ConfigurationOutOfRange):
        validate_host_runtime(HostRuntime(**kwargs))


def test_validate_host_runtime_accepts_defaults_and_zero_drain() -> None:
    validate_host_runtime(HostRuntime())
    validate_host_runtime(HostRuntime(drain_sec=0.0, max_sync_errors=0, stats_log_interval=0.0))


def test_braced_override_stays_a_string() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=['host.port={"value": 1}'])
