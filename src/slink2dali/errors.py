"""
Custom exceptions for the SeedLink to DataLink relay.

Provides structured error handling so the delivery controller can tell
recoverable conditions (sink outages, bad records) from fatal ones.
"""

from __future__ import annotations

import socket


class RelayError(Exception):
    """Base error for the relay."""

    pass


class ConfigError(RelayError):
    """Invalid arguments or settings, detected before any connection attempt."""

    pass


class ConnectError(RelayError):
    """A session could not establish (or negotiate) its connection."""

    pass


class DeliveryError(RelayError):
    """Writing a record to the DataLink server failed or was rejected."""

    pass


class SourceFatalError(RelayError):
    """The SeedLink connection was lost or the server reported an error."""

    pass


class CheckpointError(RelayError):
    """State file could not be read or written."""

    pass


class ParseError(RelayError):
    """A miniSEED header could not be parsed; the record must be dropped."""

    def __init__(self, stream_name: str, diagnostic: str):
        super().__init__(f"Error unpacking {stream_name}: {diagnostic}")
        self.stream_name = stream_name
        self.diagnostic = diagnostic


def map_socket_error(e: Exception, where: str, error_cls: type[RelayError]) -> RelayError:
    if isinstance(e, RelayError):
        return e
    if isinstance(e, socket.timeout):
        return error_cls(f"{where}: timed out")
    if isinstance(e, ConnectionRefusedError):
        return error_cls(f"{where}: connection refused")
    if isinstance(e, socket.gaierror):
        return error_cls(f"{where}: cannot resolve host ({e})")
    if isinstance(e, (ConnectionResetError, BrokenPipeError)):
        return error_cls(f"{where}: connection lost ({e})")
    return error_cls(f"{where}: {e}")
