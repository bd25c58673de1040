from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from .checkpoint import CheckpointStore
from .config import RelayConfig, RelaySettings, get_settings
from .controller import DeliveryController
from .datalink import SinkSession
from .errors import CheckpointError
from .seedlink import SourceSession
from .transport import Connector, tcp_connector
from .translator import RecordTranslator


def build_relay(
    config: RelayConfig,
    terminate: threading.Event,
    *,
    settings: Optional[RelaySettings] = None,
    connector: Connector = tcp_connector,
) -> DeliveryController:
    """
    Wire the sessions, translator and state store for one relay run.

    The state file is read here, before the SeedLink session subscribes; an
    unreadable file only costs the resume position.
    """
    settings = settings or get_settings()
    logger.info(f"Relaying {config.source_address} (SeedLink) to {config.sink_address} (DataLink)")

    store: Optional[CheckpointStore] = None
    subscription = config.subscription
    if config.state_file is not None:
        store = CheckpointStore(config.state_file)
        try:
            resume = store.load()
        except CheckpointError as e:
            logger.error(f"State recovery failed: {e}")
            resume = None
        if resume is not None:
            subscription = subscription.model_copy(update={"resume": resume})

    source = SourceSession(
        config.source_host,
        config.source_port,
        subscription,
        terminate,
        settings=settings,
        connector=connector,
    )
    sink = SinkSession(config.sink_host, config.sink_port, settings=settings, connector=connector)

    return DeliveryController(
        source,
        sink,
        RecordTranslator(config.override_code),
        terminate,
        checkpoint_store=store,
        checkpoint_interval=config.state_interval,
        write_ack=config.write_ack,
        reconnect_delay=settings.reconnect_delay,
    )
