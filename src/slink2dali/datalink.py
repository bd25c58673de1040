"""
DataLink client session (the relay's sink side).

A thin transport: connect/ID exchange, WRITE with optional acknowledgement,
disconnect. No retries here; the delivery controller owns that policy.
"""

from __future__ import annotations

import getpass
import os
import platform
import re
import time
from typing import Optional

from loguru import logger

from .config import RelaySettings, get_settings
from .errors import ConnectError, DeliveryError, map_socket_error
from .metrics import SINK_WRITE_LATENCY
from .models import Ack, ForwardUnit
from .transport import Connector, SocketStream, tcp_connector

SIGNATURE = b"DL"
DEFAULT_PACKET_SIZE = 512
MAX_HEADER_SIZE = 255

_PROTO_RE = re.compile(r"DLPROTO:(\d+(?:\.\d+)?)")
_PKTSIZE_RE = re.compile(r"PACKETSIZE:(\d+)")


def build_client_id(program: str) -> str:
    """DataLink client ID: program:user:pid:arch."""
    try:
        user = getpass.getuser()
    except Exception:
        user = "unknown"
    return f"{program}:{user}:{os.getpid()}:{platform.system() or 'unknown'}"


class SinkSession:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        settings: Optional[RelaySettings] = None,
        connector: Connector = tcp_connector,
        client_id: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self._settings = settings or get_settings()
        self._connector = connector
        self.client_id = client_id or build_client_id(self._settings.client_id)

        self._stream: Optional[SocketStream] = None
        self.server_id: Optional[str] = None
        self.protocol: Optional[float] = None
        self.packet_size = DEFAULT_PACKET_SIZE
        self.write_permitted = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._stream is not None

    # ---------- framing ----------

    def _send_packet(self, header: str, data: bytes = b"") -> None:
        hdr = header.encode("ascii")
        if len(hdr) > MAX_HEADER_SIZE:
            raise DeliveryError(f"DataLink header too long ({len(hdr)} bytes)")
        self._stream.send(SIGNATURE + bytes([len(hdr)]) + hdr + data)

    def _read_packet(self) -> tuple[str, bytes]:
        """Read one server packet; the trailing size field says how much payload follows."""
        pre = self._stream.read_exact(3)
        if pre[:2] != SIGNATURE:
            raise ConnectionResetError(f"invalid DataLink packet signature {pre[:2]!r}")
        header = self._stream.read_exact(pre[2]).decode("ascii", "replace")
        size = 0
        fields = header.split()
        if fields and fields[0] in ("OK", "ERROR") and len(fields) >= 3 and fields[2].isdigit():
            size = int(fields[2])
        payload = self._stream.read_exact(size) if size else b""
        return header, payload

    # ---------- connection ----------

    def connect(self) -> None:
        """Connect and exchange IDs; raises ConnectError."""
        try:
            sock = self._connector((self.host, self.port), self._settings.socket_timeout)
        except OSError as e:
            raise map_socket_error(e, f"DataLink {self.address}", ConnectError)

        self._stream = SocketStream(sock)
        try:
            self._exchange_ids()
        except (OSError, ConnectError) as e:
            self.disconnect()
            raise map_socket_error(e, f"DataLink {self.address}", ConnectError)
        logger.info(f"Connected to DataLink server {self.address} ({self.server_id})")

    def _exchange_ids(self) -> None:
        self._send_packet(f"ID {self.client_id}")
        header, _ = self._read_packet()
        if not header.startswith("ID "):
            raise ConnectError(f"unexpected DataLink ID response: {header!r}")
        self.server_id = header[3:].split("::")[0].strip()
        capabilities = header.split("::", 1)[1] if "::" in header else ""

        m = _PROTO_RE.search(capabilities)
        self.protocol = float(m.group(1)) if m else None
        m = _PKTSIZE_RE.search(capabilities)
        self.packet_size = int(m.group(1)) if m else DEFAULT_PACKET_SIZE
        self.write_permitted = "WRITE" in capabilities.split()

    def disconnect(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.close()
        except OSError:
            pass
        finally:
            self._stream = None
            logger.debug(f"Disconnected from DataLink server {self.address}")

    # ---------- writes ----------

    def deliver(self, unit: ForwardUnit, ack: bool = False) -> Optional[Ack]:
        """
        Send one record with a WRITE command.

        Returns the server acknowledgement when ack is requested, otherwise
        None. Raises DeliveryError on any I/O failure or rejection.
        """
        if self._stream is None:
            raise DeliveryError("DataLink session is not connected")
        if not self.write_permitted:
            raise DeliveryError(f"DataLink server {self.address} does not allow writes")
        if unit.length > self.packet_size:
            raise DeliveryError(
                f"record of {unit.length} bytes exceeds DataLink packet size {self.packet_size}"
            )

        header = (
            f"WRITE {unit.stream_id} {unit.span.start_hptime} {unit.span.end_hptime} "
            f"{'A' if ack else 'N'} {unit.length}"
        )
        start = time.perf_counter()
        try:
            self._send_packet(header, unit.raw)
            if not ack:
                return None
            reply, message = self._read_packet()
        except OSError as e:
            raise map_socket_error(e, f"DataLink {self.address}", DeliveryError)
        finally:
            SINK_WRITE_LATENCY.observe(time.perf_counter() - start)

        text = message.decode("ascii", "replace")
        fields = reply.split()
        if fields and fields[0] == "OK":
            value = int(fields[1]) if len(fields) > 1 and fields[1].lstrip("-").isdigit() else 0
            logger.trace(f"WRITE {unit.stream_id} acknowledged: {value} {text}")
            return Ack(value=value, message=text)
        if fields and fields[0] == "ERROR":
            raise DeliveryError(f"DataLink server rejected {unit.stream_id}: {text or reply}")
        raise DeliveryError(f"unexpected DataLink reply: {reply!r}")
