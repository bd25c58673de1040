from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import Checkpoint
from .utils import parse_address, parse_seedlink_time

SEEDLINK_DEFAULT_HOST = "localhost"
SEEDLINK_DEFAULT_PORT = 18000
DATALINK_DEFAULT_HOST = "localhost"
DATALINK_DEFAULT_PORT = 16000

MAX_STATE_INTERVAL = 1_000_000_000


class RelaySettings(BaseSettings):
    """Tunables read from SLINK2DALI_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="SLINK2DALI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    keepalive: int = 300  # seconds of silence before INFO ID; 0 disables
    reconnect_delay: float = 10.0  # fixed, un-jittered sink reconnect backoff
    poll_interval: float = 0.5  # how often a blocked read checks for termination
    socket_timeout: float = 30.0
    write_ack: bool = False
    client_id: str = "slink2dali"
    metrics_port: Optional[int] = None


@lru_cache()
def get_settings() -> RelaySettings:
    return RelaySettings()


class StreamSpec(BaseModel):
    """One station of a multi-station subscription."""

    network: str
    station: str
    selectors: Optional[str] = None


class SubscriptionConfig(BaseModel):
    selectors: Optional[str] = None
    streams: list[StreamSpec] = []  # empty means uni-station mode
    begin_time: Optional[str] = None
    end_time: Optional[str] = None
    dialup: bool = False
    keepalive: int = 300
    resume: Optional[Checkpoint] = None

    @property
    def multistation(self) -> bool:
        return bool(self.streams)


class RelayConfig(BaseModel):
    source_host: str
    source_port: int
    sink_host: str
    sink_port: int
    subscription: SubscriptionConfig
    override_code: Optional[str] = None
    state_file: Optional[Path] = None
    state_interval: int = 0
    write_ack: bool = False

    @property
    def source_address(self) -> str:
        return f"{self.source_host}:{self.source_port}"

    @property
    def sink_address(self) -> str:
        return f"{self.sink_host}:{self.sink_port}"


# ---------- argument parsing helpers (all raise ConfigError) ----------


def parse_time_window(value: str) -> tuple[str, Optional[str]]:
    """
    Split a 'begin:[end]' time window.

    The colon is mandatory even without an end time; each side must be
    YYYY,MM,DD,HH,MM,SS.
    """
    if ":" not in value:
        raise ConfigError("time window not in begin:[end] format")
    parts = value.split(":")
    if len(parts) > 2:
        raise ConfigError("time window not in begin:[end] format")
    begin, end = parts
    if not begin:
        raise ConfigError("time window must specify a begin time")
    for label, stamp in (("begin", begin), ("end", end)):
        if not stamp:
            continue
        try:
            parse_seedlink_time(stamp)
        except ValueError as e:
            raise ConfigError(f"malformed time window {label} time: {e}") from e
    return begin, end or None


def parse_state_file_arg(value: str) -> tuple[Path, int]:
    """Split 'path[:interval]' into the state file path and save interval."""
    path, sep, interval = value.partition(":")
    if not path:
        raise ConfigError("state file path is empty")
    if not sep:
        return Path(path), 0
    if not interval.isdigit() or int(interval) > MAX_STATE_INTERVAL:
        raise ConfigError("state saving interval specified incorrectly")
    return Path(path), int(interval)


def validate_network_code(code: str) -> str:
    code = code.strip()
    if not 1 <= len(code) <= 2 or not code.isalnum() or not code.isascii():
        raise ConfigError(f"network code '{code}' must be 1 or 2 alphanumeric characters")
    return code.upper()


def parse_multiselect(value: str, default_selectors: Optional[str] = None) -> list[StreamSpec]:
    """Parse 'NET_STA[:selectors],NET_STA[:selectors],...'."""
    streams: list[StreamSpec] = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        name, _, selectors = item.partition(":")
        parts = name.split("_")
        if len(parts) != 2 or not all(parts):
            raise ConfigError(f"'{name}' is not in NET_STA format")
        streams.append(
            StreamSpec(
                network=parts[0],
                station=parts[1],
                selectors=selectors.strip() or default_selectors,
            )
        )
    if not streams:
        raise ConfigError("empty stream list")
    return streams


def read_stream_list(path: Path, default_selectors: Optional[str] = None) -> list[StreamSpec]:
    """Read 'NET STA [selectors...]' lines; '#' and '*' start comments."""
    try:
        lines = path.read_text().splitlines()
    except OSError as e:
        raise ConfigError(f"cannot read stream list file {path}: {e}") from e

    streams: list[StreamSpec] = []
    for lineno, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line[0] in "#*":
            continue
        fields = line.split()
        if len(fields) < 2:
            raise ConfigError(f"{path}:{lineno}: expected 'NET STA [selectors]'")
        streams.append(
            StreamSpec(
                network=fields[0],
                station=fields[1],
                selectors=" ".join(fields[2:]) or default_selectors,
            )
        )
    return streams


def build_config(
    slhost: str,
    dlhost: str,
    *,
    selectors: Optional[str] = None,
    multiselect: Optional[str] = None,
    stream_file: Optional[Path] = None,
    time_window: Optional[str] = None,
    dialup: bool = False,
    netcode: Optional[str] = None,
    state_file: Optional[str] = None,
    settings: Optional[RelaySettings] = None,
) -> RelayConfig:
    """Validate every argument up front so nothing connects on bad input."""
    settings = settings or get_settings()

    try:
        source_host, source_port = parse_address(slhost, SEEDLINK_DEFAULT_HOST, SEEDLINK_DEFAULT_PORT)
        sink_host, sink_port = parse_address(dlhost, DATALINK_DEFAULT_HOST, DATALINK_DEFAULT_PORT)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    streams: list[StreamSpec] = []
    if stream_file is not None:
        streams.extend(read_stream_list(stream_file, selectors))
    if multiselect:
        streams.extend(parse_multiselect(multiselect, selectors))

    begin_time = end_time = None
    if time_window:
        begin_time, end_time = parse_time_window(time_window)

    state_path, state_interval = (None, 0)
    if state_file:
        state_path, state_interval = parse_state_file_arg(state_file)

    return RelayConfig(
        source_host=source_host,
        source_port=source_port,
        sink_host=sink_host,
        sink_port=sink_port,
        subscription=SubscriptionConfig(
            selectors=selectors,
            streams=streams,
            begin_time=begin_time,
            end_time=end_time,
            dialup=dialup,
            keepalive=settings.keepalive,
        ),
        override_code=validate_network_code(netcode) if netcode else None,
        state_file=state_path,
        state_interval=state_interval,
        write_ack=settings.write_ack,
    )
