"""
Pytest configuration and fixtures for slink2dali.

Provides a miniSEED record builder, socketpair-backed connectors standing in
for real servers, and loguru cleanup between tests.
"""

import socket
import struct
import sys
from datetime import datetime, timezone

import pytest
from loguru import logger

from slink2dali.config import RelaySettings

START = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def build_record(
    network="XX",
    station="ANMO",
    location="00",
    channel="BHZ",
    start=START,
    nsamples=400,
    factor=20,
    multiplier=1,
    quality=b"D",
    blockettes=(1000,),
    b100_rate=None,
    time_correction=0,
    act_flags=0,
    byte_order=">",
    length=512,
) -> bytes:
    """Build a miniSEED 2 record with a valid fixed header and blockette chain."""
    buf = bytearray(length)
    yday = start.timetuple().tm_yday
    first = 48 if blockettes else 0
    struct.pack_into(
        byte_order + "6sc1s5s2s3s2sHHBBBBHHhhBBBBiHH",
        buf,
        0,
        b"000001",
        quality,
        b" ",
        station.encode().ljust(5),
        location.encode().ljust(2),
        channel.encode().ljust(3),
        network.encode().ljust(2),
        start.year,
        yday,
        start.hour,
        start.minute,
        start.second,
        0,
        start.microsecond // 100,
        nsamples,
        factor,
        multiplier,
        act_flags,
        0,
        0,
        len(blockettes),
        time_correction,
        64,
        first,
    )
    for i, btype in enumerate(blockettes):
        offset = 48 + 12 * i
        nxt = offset + 12 if i < len(blockettes) - 1 else 0
        if btype == 1000:
            struct.pack_into(byte_order + "HHBBBB", buf, offset, 1000, nxt, 11, 1, 9, 0)
        elif btype == 100:
            struct.pack_into(byte_order + "HHf", buf, offset, 100, nxt, b100_rate or 0.0)
        else:
            struct.pack_into(byte_order + "HH", buf, offset, btype, nxt)
    return bytes(buf)


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def settings():
    """Fast settings: short polls, no keepalive, no real backoff."""
    return RelaySettings(
        keepalive=0,
        reconnect_delay=10.0,
        poll_interval=0.05,
        socket_timeout=2.0,
        client_id="slink2dali-test",
    )


class PairConnector:
    """Connector handing out one end of a socketpair; the test plays the server."""

    def __init__(self):
        self.client, self.server = socket.socketpair()
        self.server.settimeout(2.0)
        self.addresses = []

    def __call__(self, address, timeout):
        self.addresses.append(address)
        self.client.settimeout(timeout)
        return self.client

    def drain_server(self) -> bytes:
        """Everything the client has sent so far."""
        self.server.settimeout(0.2)
        chunks = []
        try:
            while True:
                chunk = self.server.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        except socket.timeout:
            pass
        return b"".join(chunks)

    def close(self):
        for s in (self.client, self.server):
            try:
                s.close()
            except OSError:
                pass


@pytest.fixture
def pair():
    conn = PairConnector()
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def reset_logging():
    """Tests that configure loguru must not leave handlers pointing at closed streams."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="INFO")
