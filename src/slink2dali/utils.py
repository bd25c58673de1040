"""
Utility functions for the relay.

Includes time conversions, address parsing and sequence-number helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# SeedLink sequence numbers are 24-bit and wrap
SEQUENCE_MODULUS = 0x1000000


def to_hptime(dt: datetime) -> int:
    """Convert a datetime to integer microseconds since the epoch (DataLink hptime)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(microseconds=1)


def format_seedlink_time(dt: datetime) -> str:
    """Format as the comma-separated 'YYYY,MM,DD,HH,MM,SS' used by SeedLink."""
    return dt.strftime("%Y,%m,%d,%H,%M,%S")


def parse_seedlink_time(value: str) -> datetime:
    """Parse 'YYYY,MM,DD,HH,MM,SS' into a UTC datetime; raises ValueError."""
    parts = value.strip().split(",")
    if len(parts) != 6 or not all(p.strip().isdigit() for p in parts):
        raise ValueError(f"'{value}' is not in YYYY,MM,DD,HH,MM,SS format")
    y, mo, d, h, mi, s = (int(p) for p in parts)
    return datetime(y, mo, d, h, mi, s, tzinfo=timezone.utc)


def next_sequence(seqnum: int) -> int:
    return (seqnum + 1) % SEQUENCE_MODULUS


def parse_address(address: str, default_host: str, default_port: int) -> Tuple[str, int]:
    """
    Split 'host[:port]' into its parts.

    An empty host (e.g. ':18000') means the default host. Raises ValueError
    when the port is not a number in range.
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        host, port = port, ""
    host = host or default_host
    if not port:
        return host, default_port
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid port in address '{address}'")
    return host, int(port)
