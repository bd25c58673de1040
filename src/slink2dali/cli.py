from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from . import __version__
from .config import build_config, get_settings
from .errors import ConfigError, ConnectError
from .log import configure_logging
from .relay import build_relay

PACKAGE = "slink2dali"

EXIT_CONFIG = 1
EXIT_CONNECT = 2

app = typer.Typer(
    help="Connect to a SeedLink server and forward data to a DataLink server.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

USAGE = f"Usage: {PACKAGE} [options] slhost dlhost"

EPILOG = """\
'streams' = 'stream1[:selectors1],stream2[:selectors2],...', each stream in
NET_STA format, e.g. -S "IU_KONO:BHE BHN,GE_WLF,MN_AQU:HH?.D"

-tw takes year,month,day,hour,min,sec, e.g. 2002,08,05,14,00,00:2002,08,05,14,15,00;
the end time is optional but the colon must be present.

slhost defaults to localhost:18000, dlhost to localhost:16000.
"""


def _version_callback(value: bool):
    if value:
        typer.echo(f"{PACKAGE} version: {__version__}", err=True)
        raise typer.Exit()


def _missing(what: str) -> None:
    typer.echo(f"No {what} server specified\n", err=True)
    typer.echo(f"{PACKAGE} version {__version__}\n", err=True)
    typer.echo(f"{USAGE}\n", err=True)
    typer.echo("Try '-h' for detailed help", err=True)
    raise typer.Exit(code=EXIT_CONFIG)


def install_signal_handlers(terminate: threading.Event) -> None:
    """Termination signals only set the shared flag; the main loop does the rest."""

    def _handler(signum, frame):
        terminate.set()

    for name in ("SIGINT", "SIGQUIT", "SIGTERM"):
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), _handler)
    for name in ("SIGHUP", "SIGPIPE"):
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), signal.SIG_IGN)


@app.command(epilog=EPILOG)
def main(
    slhost: Optional[str] = typer.Argument(None, help="SeedLink server, host:port"),
    dlhost: Optional[str] = typer.Argument(None, help="DataLink server, host:port"),
    verbose: int = typer.Option(0, "-v", count=True, help="Be more verbose, repeat for more"),
    dialup: bool = typer.Option(False, "-d", help="Configure SeedLink connection in dial-up mode"),
    netcode: Optional[str] = typer.Option(
        None, "-N", metavar="netcode", help="Change all SEED network codes to this code"
    ),
    state_file: Optional[str] = typer.Option(
        None, "-x", metavar="sfile[:int]", help="Save/restore stream state to this file"
    ),
    selectors: Optional[str] = typer.Option(
        None, "-s", metavar="selectors", help="Selectors for uni-station or default for multi-station"
    ),
    stream_file: Optional[Path] = typer.Option(
        None, "-l", metavar="listfile", help="Read a stream list from this file"
    ),
    multiselect: Optional[str] = typer.Option(
        None, "-S", metavar="streams", help="Define a stream list for multi-station mode"
    ),
    time_window: Optional[str] = typer.Option(
        None, "-tw", metavar="begin:[end]", help="Time window (requires SeedLink >= 3)"
    ),
    version: bool = typer.Option(
        False, "-V", callback=_version_callback, is_eager=True, help="Report program version"
    ),
):
    """Relay miniSEED records from a SeedLink server to a DataLink server."""
    if not slhost:
        _missing("SeedLink")
    if not dlhost:
        _missing("DataLink")

    configure_logging(verbose)
    logger.info(f"{PACKAGE} version: {__version__}")

    settings = get_settings()
    try:
        config = build_config(
            slhost,
            dlhost,
            selectors=selectors,
            multiselect=multiselect,
            stream_file=stream_file,
            time_window=time_window,
            dialup=dialup,
            netcode=netcode,
            state_file=state_file,
            settings=settings,
        )
    except ConfigError as e:
        logger.error(str(e))
        typer.echo("Try '-h' for detailed help", err=True)
        raise typer.Exit(code=EXIT_CONFIG)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Serving metrics on port {settings.metrics_port}")

    terminate = threading.Event()
    install_signal_handlers(terminate)

    relay = build_relay(config, terminate, settings=settings)
    try:
        relay.run()
    except ConnectError as e:
        logger.error(f"Error connecting: {e}")
        raise typer.Exit(code=EXIT_CONNECT)


def run() -> None:
    """Console-script entry point."""
    app(prog_name=PACKAGE)


if __name__ == "__main__":
    run()
