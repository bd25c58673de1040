from __future__ import annotations

import socket
from typing import Callable, Optional, Tuple

# (host, port), timeout -> connected socket; swapped out in tests
Connector = Callable[[Tuple[str, int], float], socket.socket]


def tcp_connector(address: Tuple[str, int], timeout: float) -> socket.socket:
    return socket.create_connection(address, timeout=timeout)


class SocketStream:
    """
    Blocking socket with a receive buffer.

    Partial reads survive a socket timeout, so callers can poll with a short
    timeout and resume exactly where they left off.
    """

    def __init__(self, sock: socket.socket, chunk_size: int = 8192):
        self._sock = sock
        self._buf = bytearray()
        self._chunk = chunk_size

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def settimeout(self, timeout: Optional[float]) -> None:
        self._sock.settimeout(timeout)

    def send(self, data: bytes) -> None:
        self._sock.sendall(data)

    def fill(self) -> int:
        """Receive one chunk into the buffer; raises socket.timeout or ConnectionError."""
        chunk = self._sock.recv(self._chunk)
        if not chunk:
            raise ConnectionResetError("connection closed by peer")
        self._buf.extend(chunk)
        return len(chunk)

    def peek(self, n: int) -> bytes:
        return bytes(self._buf[:n])

    def take(self, n: int) -> bytes:
        data = bytes(self._buf[:n])
        del self._buf[:n]
        return data

    def read_exact(self, n: int) -> bytes:
        while len(self._buf) < n:
            self.fill()
        return self.take(n)

    def readline(self, terminator: bytes = b"\r\n") -> str:
        while True:
            idx = self._buf.find(terminator)
            if idx >= 0:
                line = self.take(idx + len(terminator))
                return line[: -len(terminator)].decode("ascii", "replace")
            self.fill()

    def close(self) -> None:
        try:
            self._sock.close()
        finally:
            self._buf.clear()
