"""
Data models for the relay pipeline.

Per-record units are frozen dataclasses (they are created for every packet);
persisted stream state uses pydantic for validation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, field_validator

from .utils import to_hptime


class RecordType(IntEnum):
    """SeedLink packet types, numbered in protocol order."""

    DATA = 0
    DETECTION = 1
    CALIBRATION = 2
    TIMING = 3
    MESSAGE = 4
    GENERAL = 5
    REQUEST = 6
    INFO = 7
    INFO_TERMINATED = 8
    KEEPALIVE = 9

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_data_bearing(self) -> bool:
        """True for packets that carry a miniSEED record worth archiving."""
        return self <= RecordType.GENERAL


_LABELS = {
    RecordType.DATA: "Data",
    RecordType.DETECTION: "Detection",
    RecordType.CALIBRATION: "Calibration",
    RecordType.TIMING: "Timing",
    RecordType.MESSAGE: "Message",
    RecordType.GENERAL: "General",
    RecordType.REQUEST: "Request",
    RecordType.INFO: "Info",
    RecordType.INFO_TERMINATED: "Info (terminated)",
    RecordType.KEEPALIVE: "KeepAlive",
}


@dataclass(frozen=True)
class Record:
    """One packet as received from the SeedLink server."""

    raw: bytes
    type: RecordType
    sequence: int = -1  # -1 for INFO/keepalive packets

    @property
    def length(self) -> int:
        return len(self.raw)


@dataclass(frozen=True)
class StreamIdentity:
    """DataLink addressing key: NET_STA_LOC_CHAN/MSEED."""

    network: str
    station: str
    location: str
    channel: str
    suffix: str = "MSEED"

    @property
    def source_name(self) -> str:
        return f"{self.network}_{self.station}_{self.location}_{self.channel}"

    def __str__(self) -> str:
        return f"{self.source_name}/{self.suffix}"


@dataclass(frozen=True)
class TimeSpan:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"TimeSpan end {self.end} precedes start {self.start}")

    @property
    def start_hptime(self) -> int:
        return to_hptime(self.start)

    @property
    def end_hptime(self) -> int:
        return to_hptime(self.end)


@dataclass(frozen=True)
class ForwardUnit:
    """A translated record, ready for the DataLink WRITE command."""

    raw: bytes
    stream: StreamIdentity
    span: TimeSpan

    @property
    def length(self) -> int:
        return len(self.raw)

    @property
    def stream_id(self) -> str:
        return str(self.stream)


@dataclass(frozen=True)
class Ack:
    """Server reply to an acknowledged WRITE."""

    value: int
    message: str = ""


class StreamState(BaseModel):
    """Resume position of one subscribed station."""

    network: str
    station: str
    seqnum: int = -1
    timestamp: Optional[str] = None  # "YYYY,MM,DD,HH,MM,SS" of the last record

    @field_validator("network", "station")
    def _upcase(cls, v):
        return v.strip().upper()

    @field_validator("seqnum")
    def _validate_seqnum(cls, v):
        if v < -1 or v > 0xFFFFFF:
            raise ValueError(f"Invalid SeedLink sequence number: {v}")
        return v

    @property
    def key(self) -> tuple[str, str]:
        return (self.network, self.station)


class Checkpoint(BaseModel):
    """Snapshot of every stream's resume position."""

    streams: list[StreamState] = []

    def get(self, network: str, station: str) -> Optional[StreamState]:
        for s in self.streams:
            if s.key == (network.upper(), station.upper()):
                return s
        return None

    def __len__(self) -> int:
        return len(self.streams)
