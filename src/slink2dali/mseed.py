"""
miniSEED 2 fixed section of data header (FSDH) codec.

Only what the relay needs: header fields for addressing and time span,
blockette families for packet classification, and the in-place network
code rewrite. Sample payloads are never decoded.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ParseError
from .models import RecordType, StreamIdentity, TimeSpan

RECORD_SIZE = 512
FSDH_SIZE = 48

# offsets inside the FSDH
_STATION = slice(8, 13)
_LOCATION = slice(13, 15)
_CHANNEL = slice(15, 18)
_NETWORK = slice(18, 20)

_FSDH = {
    ">": struct.Struct(">6sc1s5s2s3s2sHHBBBBHHhhBBBBiHH"),
    "<": struct.Struct("<6sc1s5s2s3s2sHHBBBBHHhhBBBBiHH"),
}

_MAX_BLOCKETTES = 64
_TIME_CORRECTION_APPLIED = 0x02


@dataclass(frozen=True)
class RecordHeader:
    network: str
    station: str
    location: str
    channel: str
    quality: str
    start: datetime
    sample_count: int
    sample_rate: float
    blockettes: tuple[int, ...]
    byte_order: str
    record_length: int
    end: datetime

    @property
    def stream(self) -> StreamIdentity:
        return StreamIdentity(self.network, self.station, self.location, self.channel)

    @property
    def span(self) -> TimeSpan:
        return TimeSpan(self.start, self.end)


def _text(field: bytes) -> str:
    return field.decode("ascii", "replace").strip(" \x00")


def source_name(raw: bytes) -> str:
    """Best-effort NET_STA_LOC_CHAN straight from the raw header bytes."""
    if len(raw) < 20:
        return "unknown"
    return "_".join(_text(raw[s]) for s in (_NETWORK, _STATION, _LOCATION, _CHANNEL))


def _end_time(start: datetime, nsamples: int, rate: float) -> datetime:
    """Coverage end: start plus nsamples sample intervals."""
    if nsamples <= 0 or rate <= 0:
        return start
    return start + timedelta(microseconds=round(nsamples * 1_000_000 / rate))


def _valid_year_day(year: int, day: int) -> bool:
    return 1900 <= year <= 2100 and 1 <= day <= 366


def detect_byte_order(raw: bytes) -> str:
    """Return '>' or '<' judged by which reading gives a sane BTIME year/day."""
    if len(raw) < FSDH_SIZE:
        raise ParseError(source_name(raw), "record shorter than fixed header")
    year, day = struct.unpack_from(">HH", raw, 20)
    if _valid_year_day(year, day):
        return ">"
    year, day = struct.unpack_from("<HH", raw, 20)
    if _valid_year_day(year, day):
        return "<"
    raise ParseError(source_name(raw), "cannot determine byte order, invalid start time")


def sample_rate(factor: int, multiplier: int) -> float:
    """Nominal sample rate from the SEED factor/multiplier pair."""
    if factor == 0 or multiplier == 0:
        return 0.0
    if factor > 0 and multiplier > 0:
        return float(factor * multiplier)
    if factor > 0 > multiplier:
        return -float(factor) / multiplier
    if factor < 0 < multiplier:
        return -float(multiplier) / factor
    return 1.0 / (factor * multiplier)


def _walk_blockettes(raw: bytes, order: str, first: int) -> tuple[list[int], Optional[float], Optional[int]]:
    types: list[int] = []
    actual_rate: Optional[float] = None
    reclen: Optional[int] = None
    offset = first
    seen = set()
    while offset and len(types) < _MAX_BLOCKETTES:
        if offset < FSDH_SIZE or offset + 4 > len(raw) or offset in seen:
            raise ParseError(source_name(raw), f"invalid blockette offset {offset}")
        seen.add(offset)
        btype, nxt = struct.unpack_from(order + "HH", raw, offset)
        types.append(btype)
        if btype == 100 and offset + 8 <= len(raw):
            (actual_rate,) = struct.unpack_from(order + "f", raw, offset + 4)
        elif btype == 1000 and offset + 7 <= len(raw):
            reclen = 2 ** raw[offset + 6]
        offset = nxt
    return types, actual_rate, reclen


def parse_header(raw: bytes) -> RecordHeader:
    """Parse the FSDH and blockette chain; raises ParseError on malformed headers."""
    order = detect_byte_order(raw)
    (
        seq,
        quality,
        reserved,
        station,
        location,
        channel,
        network,
        year,
        day,
        hour,
        minute,
        second,
        _unused,
        fract,
        nsamples,
        factor,
        multiplier,
        act_flags,
        _io_flags,
        _dq_flags,
        _nblockettes,
        time_correction,
        _data_offset,
        first_blockette,
    ) = _FSDH[order].unpack_from(raw, 0)

    name = source_name(raw)
    if not all(c in b"0123456789 " for c in seq):
        raise ParseError(name, "invalid sequence number in fixed header")
    if quality not in (b"D", b"R", b"Q", b"M"):
        raise ParseError(name, f"invalid data quality indicator {quality!r}")
    if reserved not in (b" ", b"\x00"):
        raise ParseError(name, "invalid reserved byte in fixed header")
    if hour > 23 or minute > 59 or second > 60 or fract > 9999:
        raise ParseError(name, "invalid start time in fixed header")

    types, actual_rate, reclen = _walk_blockettes(raw, order, first_blockette)
    if reclen is not None and reclen > len(raw):
        raise ParseError(name, f"blockette 1000 record length {reclen} exceeds {len(raw)} bytes")

    start = datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(
        days=day - 1, hours=hour, minutes=minute, seconds=second, microseconds=fract * 100
    )
    if time_correction and not act_flags & _TIME_CORRECTION_APPLIED:
        start += timedelta(microseconds=time_correction * 100)

    rate = actual_rate if actual_rate else sample_rate(factor, multiplier)
    if not math.isfinite(rate):
        raise ParseError(name, f"invalid sample rate {rate}")
    rate = max(rate, 0.0)
    try:
        end = _end_time(start, nsamples, rate)
    except (OverflowError, ValueError) as e:
        raise ParseError(name, f"record time span out of range ({e})") from e

    return RecordHeader(
        network=_text(network),
        station=_text(station),
        location=_text(location),
        channel=_text(channel),
        quality=quality.decode("ascii"),
        start=start,
        sample_count=nsamples,
        sample_rate=rate,
        blockettes=tuple(types),
        byte_order=order,
        record_length=reclen or len(raw),
        end=end,
    )


def classify(header: RecordHeader) -> RecordType:
    """Map a parsed record to its SeedLink packet type."""
    for btype in header.blockettes:
        if 200 <= btype <= 299:
            return RecordType.DETECTION
        if 300 <= btype <= 399:
            return RecordType.CALIBRATION
        if 500 <= btype <= 599:
            return RecordType.TIMING
    if header.sample_count > 0 and header.sample_rate > 0:
        return RecordType.DATA
    if header.sample_count > 0:
        return RecordType.MESSAGE
    return RecordType.GENERAL


def rewrite_network(raw: bytes, code: str) -> bytes:
    """Return a copy of raw with the network code replaced, space padded to two bytes."""
    if len(raw) < _NETWORK.stop:
        raise ParseError(source_name(raw), "record shorter than fixed header")
    field = code.encode("ascii")[:2].ljust(2, b" ")
    buf = bytearray(raw)
    buf[_NETWORK] = field
    return bytes(buf)
