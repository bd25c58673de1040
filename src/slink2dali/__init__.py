"""
SeedLink to DataLink relay.

Subscribes to a SeedLink server and forwards every miniSEED record to a
DataLink server, reconnecting to the DataLink side as often as it takes and
saving SeedLink resume positions to a state file.

Usage:
    from slink2dali import build_config, build_relay

    config = build_config("seedlink.example.org:18000", "localhost:16000", multiselect="IU_KONO")
    relay = build_relay(config, threading.Event())
    relay.run()
"""

__version__ = "0.7.0"

from .checkpoint import CheckpointStore
from .config import RelayConfig, RelaySettings, SubscriptionConfig, build_config, get_settings
from .controller import DeliveryController, RelayState, RelayStats
from .datalink import SinkSession
from .errors import (
    CheckpointError,
    ConfigError,
    ConnectError,
    DeliveryError,
    ParseError,
    RelayError,
    SourceFatalError,
)
from .models import Checkpoint, ForwardUnit, Record, RecordType, StreamIdentity, TimeSpan
from .relay import build_relay
from .seedlink import SourceSession
from .translator import RecordTranslator

__all__ = [
    # configuration
    "RelayConfig",
    "RelaySettings",
    "SubscriptionConfig",
    "build_config",
    "get_settings",
    # pipeline
    "SourceSession",
    "RecordTranslator",
    "SinkSession",
    "DeliveryController",
    "CheckpointStore",
    "RelayState",
    "RelayStats",
    "build_relay",
    # models
    "Checkpoint",
    "ForwardUnit",
    "Record",
    "RecordType",
    "StreamIdentity",
    "TimeSpan",
    # errors
    "RelayError",
    "ConfigError",
    "ConnectError",
    "DeliveryError",
    "ParseError",
    "SourceFatalError",
    "CheckpointError",
]
