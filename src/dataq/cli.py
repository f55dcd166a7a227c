"""Command line interface for the dataq package."""
from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .config import DataqConfig, load_config
from .errors import EX_PROTOCOL, EX_UNAVAILABLE, EX_USAGE, DataqError, ReadTimeout, SyncBitViolation
from .processing import RowDecoder, Sample, channel_names, format_sample, summarize
from .session import DataqSession

logger = logging.getLogger(__name__)

CANCEL_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Simple client for the DATAQ DI-718B-E(S) laboratory data acquisition system.",
)


def autodiscover() -> Optional[str]:
    typer.echo(
        "Sorry, autodiscovery unimplemented.\n"
        "If the unit is on a DHCP network, try its hostname (e.g. 'di718b') and let the DHCP\n"
        "server do the work.  Otherwise, use the 'DATAQ Instruments Hardware Manager'\n"
        "utility provided with WinDAQ, or check your DHCP logs for MAC addresses starting with\n"
        "00:80:A3.",
        err=True,
    )
    return None


@contextmanager
def cancel_on_signals() -> Iterator[threading.Event]:
    """Set the yielded event on SIGINT/SIGTERM/SIGHUP, restoring handlers afterwards."""
    cancel = threading.Event()

    def _trap(_signum, _frame) -> None:
        cancel.set()

    previous = {}
    try:
        for sig in CANCEL_SIGNALS:
            previous[sig] = signal.signal(sig, _trap)
    except ValueError:  # pragma: no cover - not in the main thread
        logger.debug("Signal handlers unavailable outside the main thread")
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: Optional[Path], override: Optional[List[str]]) -> DataqConfig:
    try:
        return load_config(config_path, override or None)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--config/--set") from exc


def _resolve_host(host: Optional[str], auto: bool) -> str:
    if auto:
        discovered = autodiscover()
        if discovered is None:
            raise typer.Exit(code=EX_UNAVAILABLE)
        return discovered
    if not host:
        typer.echo("Specify HOST (hostname or IP address of the DAQ unit) or --auto.", err=True)
        raise typer.Exit(code=EX_USAGE)
    return host


def _fail(exc: DataqError) -> typer.Exit:
    typer.echo(f"[error] {exc}", err=True)
    return typer.Exit(code=exc.exit_code)


def _open_session(cfg: DataqConfig, host: str, port: Optional[int]) -> DataqSession:
    session = DataqSession(cfg.session, runtime=cfg.host)
    try:
        return session.open(host, port)
    except DataqError as exc:
        raise _fail(exc) from exc


@app.command()
def stream(
    host: Optional[str] = typer.Argument(None, help="Hostname or IP address of the DAQ unit."),
    auto: bool = typer.Option(False, "--auto", "-a", help="Autodiscover the DAQ unit."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="TCP port (default from config, 10001)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON configuration file."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set session.n_chans=8 --set calibration.fudge=1.018",
    ),
    rows_per_read: Optional[int] = typer.Option(None, "--rows-per-read", help="Rows fetched per read."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every command echo."),
) -> None:
    """Stream calibrated rows to stdout until interrupted."""

    _configure_logging(verbose)
    cfg = _load(config_path, override)
    if rows_per_read is not None:
        cfg.host.rows_per_read = max(rows_per_read, 1)
    hostname = _resolve_host(host, auto)
    decoder = RowDecoder(cfg.session.n_chans, cfg.calibration, cfg.host.max_sync_errors)
    decoder.register_callback(lambda sample: typer.echo(format_sample(sample)))

    with cancel_on_signals() as cancel:
        session = _open_session(cfg, hostname, port)
        interval_sec = max(cfg.host.stats_log_interval, 1.0)
        next_log = time.monotonic() + interval_sec
        try:
            while not cancel.is_set():
                try:
                    block = session.read_rows(cancel=cancel)
                except ReadTimeout as exc:
                    logger.debug("%s, still waiting", exc)
                    continue
                if block is None:
                    break
                decoder.process(block)
                if time.monotonic() >= next_log:
                    logger.info("rows=%d sync_errors=%d", decoder.stats.rows, decoder.stats.sync_errors)
                    next_log = time.monotonic() + interval_sec
        except SyncBitViolation as exc:
            typer.echo(f"[error] stream desynchronised: {exc}", err=True)
            raise typer.Exit(code=EX_PROTOCOL) from exc
        except DataqError as exc:
            raise _fail(exc) from exc
        finally:
            if cancel.is_set():
                logger.info("Interrupted, stopping")
            session.close()
            logger.info("Final stats: rows=%d sync_errors=%d", decoder.stats.rows, decoder.stats.sync_errors)


@app.command()
def summary(
    host: Optional[str] = typer.Argument(None, help="Hostname or IP address of the DAQ unit."),
    auto: bool = typer.Option(False, "--auto", "-a", help="Autodiscover the DAQ unit."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="TCP port (default from config, 10001)."),
    rows: int = typer.Option(100, "--rows", "-n", min=1, help="Rows to capture."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON configuration file."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set session.n_chans=8 --set calibration.fudge=1.018",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every command echo."),
) -> None:
    """Capture a fixed number of rows and print per-channel statistics."""

    _configure_logging(verbose)
    cfg = _load(config_path, override)
    hostname = _resolve_host(host, auto)
    decoder = RowDecoder(cfg.session.n_chans, cfg.calibration, cfg.host.max_sync_errors)
    samples: List[Sample] = []

    with cancel_on_signals() as cancel:
        session = _open_session(cfg, hostname, port)
        try:
            while len(samples) < rows and not cancel.is_set():
                try:
                    block = session.read_rows(cancel=cancel)
                except ReadTimeout as exc:
                    logger.debug("%s, still waiting", exc)
                    continue
                if block is None:
                    break
                samples.extend(decoder.process(block))
        except DataqError as exc:
            raise _fail(exc) from exc
        finally:
            if cancel.is_set():
                logger.info("Interrupted, stopping")
            session.close()

    if not samples:
        typer.echo("No rows captured.", err=True)
        raise typer.Exit(code=EX_UNAVAILABLE)
    table = summarize(samples[:rows], channel_names(cfg.session.n_chans))
    typer.echo(table.to_string(float_format=lambda value: f"{value:.4f}"))
    typer.echo(f"rate: {table.attrs['rate_hz']:.2f} rows/s")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
