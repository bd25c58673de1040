"""
SeedLink client session (the relay's source side).

Negotiates a uni-station or multi-station subscription and yields packets
one at a time. Reads poll the socket with a short timeout so a termination
request is honoured promptly; there is no internal reconnection, a lost
connection surfaces as SourceFatalError.
"""

from __future__ import annotations

import re
import socket
import threading
import time
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Callable, Optional

from loguru import logger

from .config import RelaySettings, SubscriptionConfig, get_settings
from .errors import ConnectError, ParseError, SourceFatalError, map_socket_error
from .models import Checkpoint, Record, RecordType, StreamState
from .mseed import RECORD_SIZE, classify, parse_header
from .transport import Connector, SocketStream, tcp_connector
from .utils import format_seedlink_time, next_sequence

HEADER_SIZE = 8
PACKET_SIZE = HEADER_SIZE + RECORD_SIZE

INFO_SIGNATURE = b"SLINFO"
DATA_SIGNATURE = b"SL"
END_SIGNATURE = b"END"
ERROR_SIGNATURE = b"ERROR"

MIN_MULTISTATION_VERSION = 2.5
MIN_TIME_WINDOW_VERSION = 2.92

UNI_NETWORK = "XX"
UNI_STATION = "UNI"

_VERSION_RE = re.compile(r"SeedLink v(\d+(?:\.\d+)?)", re.IGNORECASE)


def _partial_signature(head: bytes) -> bool:
    return END_SIGNATURE.startswith(head) or ERROR_SIGNATURE.startswith(head)


class SourceSession:
    def __init__(
        self,
        host: str,
        port: int,
        subscription: SubscriptionConfig,
        terminate: threading.Event,
        *,
        settings: Optional[RelaySettings] = None,
        connector: Connector = tcp_connector,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.port = port
        self._sub = subscription
        self._terminate = terminate
        self._settings = settings or get_settings()
        self._connector = connector
        self._clock = clock

        self._stream: Optional[SocketStream] = None
        self._last_traffic = 0.0
        self._keepalive_pending = False
        self.server_version: Optional[float] = None

        self._states = self._init_states()
        if subscription.resume is not None:
            self._apply_resume(subscription.resume)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._stream is not None

    # ---------- stream state ----------

    def _init_states(self) -> list[StreamState]:
        if not self._sub.multistation:
            return [StreamState(network=UNI_NETWORK, station=UNI_STATION)]
        return [StreamState(network=s.network, station=s.station) for s in self._sub.streams]

    def _apply_resume(self, checkpoint: Checkpoint) -> None:
        for saved in checkpoint.streams:
            state = self._find_state(saved.network, saved.station, exact=True)
            if state is None:
                logger.warning(f"State for {saved.network}_{saved.station} does not match any stream, ignored")
                continue
            state.seqnum = saved.seqnum
            state.timestamp = saved.timestamp
            logger.debug(f"Resuming {saved.network}_{saved.station} after sequence {saved.seqnum}")

    def _find_state(self, network: str, station: str, exact: bool = False) -> Optional[StreamState]:
        if not self._sub.multistation:
            uni = self._states[0]
            return uni if not exact or uni.key == (network, station) else None
        for state in self._states:
            if exact:
                if state.key == (network, station):
                    return state
            elif fnmatchcase(network, state.network) and fnmatchcase(station, state.station):
                return state
        return None

    def checkpoint(self) -> Checkpoint:
        """Snapshot of the resume position of every subscribed stream."""
        return Checkpoint(streams=[s.model_copy() for s in self._states])

    def _update_state(self, record: Record, start: Optional[datetime]) -> None:
        raw = record.raw
        network = raw[18:20].decode("ascii", "replace").strip()
        station = raw[8:13].decode("ascii", "replace").strip()
        state = self._find_state(network, station)
        if state is None:
            logger.debug(f"Packet for {network}_{station} matches no subscribed stream")
            return
        state.seqnum = record.sequence
        if start is not None:
            state.timestamp = format_seedlink_time(start)

    # ---------- connection ----------

    def open(self) -> None:
        """Connect and negotiate the subscription; raises ConnectError."""
        logger.info(f"Connecting to SeedLink server {self.address}")
        try:
            sock = self._connector((self.host, self.port), self._settings.socket_timeout)
        except OSError as e:
            raise map_socket_error(e, f"SeedLink {self.address}", ConnectError)

        self._stream = SocketStream(sock)
        try:
            self._hello()
            if self._sub.multistation:
                self._negotiate_multi()
            else:
                self._negotiate_uni()
        except OSError as e:
            self.close()
            raise map_socket_error(e, f"SeedLink {self.address}", ConnectError)
        except ConnectError:
            self.close()
            raise

        self._stream.settimeout(self._settings.poll_interval)
        self._last_traffic = self._clock()
        self._keepalive_pending = False
        logger.info(f"SeedLink subscription established with {self.address}")

    def _command(self, cmd: str) -> None:
        logger.trace(f"SeedLink -> {cmd}")
        self._stream.send(cmd.encode("ascii") + b"\r")

    def _request(self, cmd: str) -> bool:
        """Send a command and report whether the server answered OK."""
        self._command(cmd)
        reply = self._stream.readline().strip()
        logger.trace(f"SeedLink <- {reply}")
        if reply.startswith("OK"):
            return True
        if reply.startswith("ERROR"):
            return False
        raise ConnectError(f"unexpected reply to '{cmd}': {reply!r}")

    def _hello(self) -> None:
        self._command("HELLO")
        server = self._stream.readline().strip()
        organization = self._stream.readline().strip()
        m = _VERSION_RE.search(server)
        if not m:
            raise ConnectError(f"unrecognized SeedLink server: {server!r}")
        self.server_version = float(m.group(1))
        logger.info(f"Connected to {server} ({organization})")

    def _require_version(self, minimum: float, feature: str) -> None:
        if self.server_version is None or self.server_version < minimum:
            raise ConnectError(
                f"{feature} requires SeedLink >= {minimum}, server is {self.server_version}"
            )

    def _action_command(self, state: StreamState) -> str:
        verb = "FETCH" if self._sub.dialup else "DATA"
        if state.seqnum != -1:
            cmd = f"{verb} {next_sequence(state.seqnum):06X}"
            if state.timestamp:
                cmd += f" {state.timestamp}"
            return cmd
        if self._sub.begin_time:
            self._require_version(MIN_TIME_WINDOW_VERSION, "time window")
            if self._sub.end_time:
                return f"TIME {self._sub.begin_time} {self._sub.end_time}"
            return f"TIME {self._sub.begin_time}"
        return verb

    def _send_selectors(self, selectors: Optional[str], label: str) -> int:
        accepted = 0
        for sel in (selectors or "").split():
            if self._request(f"SELECT {sel}"):
                accepted += 1
            else:
                logger.error(f"[{label}] selector {sel} not accepted")
        return accepted

    def _negotiate_uni(self) -> None:
        selectors = (self._sub.selectors or "").split()
        if selectors and self._send_selectors(self._sub.selectors, "uni") == 0:
            raise ConnectError("no selectors accepted")
        cmd = self._action_command(self._states[0])
        if not self._request(cmd):
            raise ConnectError(f"'{cmd}' not accepted")

    def _negotiate_multi(self) -> None:
        self._require_version(MIN_MULTISTATION_VERSION, "multi-station mode")
        accepted = 0
        for spec, state in zip(self._sub.streams, self._states):
            label = f"{spec.network}_{spec.station}"
            if not self._request(f"STATION {spec.station} {spec.network}"):
                logger.error(f"[{label}] station not accepted, skipping")
                continue
            self._send_selectors(spec.selectors, label)
            cmd = self._action_command(state)
            if not self._request(cmd):
                logger.error(f"[{label}] '{cmd}' not accepted")
                continue
            accepted += 1
        if accepted == 0:
            raise ConnectError("no stations accepted")
        self._command("END")

    # ---------- collection ----------

    def request_termination(self) -> None:
        self._terminate.set()

    def next_record(self) -> Optional[Record]:
        """
        Block until the next packet arrives.

        Returns None at end of stream (termination requested, or the
        server's END after a dial-up pass). Raises SourceFatalError when the
        connection is lost or the server reports an error.
        """
        if self._stream is None:
            raise SourceFatalError("SeedLink session is not connected")

        while True:
            if self._terminate.is_set():
                return None

            head = self._stream.peek(HEADER_SIZE)
            if head.startswith(END_SIGNATURE):
                logger.info("End of data from SeedLink server")
                return None
            if head.startswith(ERROR_SIGNATURE):
                raise SourceFatalError("SeedLink server reported an error")
            if len(head) >= 2 and not head.startswith(DATA_SIGNATURE) and not _partial_signature(head):
                raise SourceFatalError(f"unexpected data from SeedLink server: {head!r}")
            if self._stream.buffered >= PACKET_SIZE:
                return self._decode(self._stream.take(PACKET_SIZE))

            try:
                self._stream.fill()
            except socket.timeout:
                self._maybe_keepalive()
                continue
            except OSError as e:
                raise map_socket_error(e, f"SeedLink {self.address}", SourceFatalError)
            self._last_traffic = self._clock()

    def _decode(self, packet: bytes) -> Record:
        header, raw = packet[:HEADER_SIZE], packet[HEADER_SIZE:]

        if header.startswith(INFO_SIGNATURE):
            terminated = header[HEADER_SIZE - 1 : HEADER_SIZE] != b"*"
            if self._keepalive_pending:
                ptype = RecordType.KEEPALIVE
                if terminated:
                    self._keepalive_pending = False
            else:
                ptype = RecordType.INFO_TERMINATED if terminated else RecordType.INFO
            return Record(raw=raw, type=ptype)

        try:
            seqnum = int(header[2:].decode("ascii"), 16)
        except ValueError:
            raise SourceFatalError(f"invalid SeedLink sequence number in header {header!r}")

        start = None
        try:
            parsed = parse_header(raw)
            ptype = classify(parsed)
            start = parsed.start
        except ParseError:
            # unparseable records are routed on so the translator reports them
            ptype = RecordType.DATA

        record = Record(raw=raw, type=ptype, sequence=seqnum)
        self._update_state(record, start)
        return record

    def _maybe_keepalive(self) -> None:
        interval = self._sub.keepalive
        if interval <= 0 or self._keepalive_pending:
            return
        if self._clock() - self._last_traffic < interval:
            return
        logger.debug("Sending keepalive request")
        try:
            self._command("INFO ID")
        except OSError as e:
            raise map_socket_error(e, f"SeedLink {self.address}", SourceFatalError)
        self._keepalive_pending = True
        self._last_traffic = self._clock()

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._command("BYE")
        except OSError:
            pass  # already gone
        finally:
            self._stream.close()
            self._stream = None
            logger.debug(f"Disconnected from SeedLink server {self.address}")
