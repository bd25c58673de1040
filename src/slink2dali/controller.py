"""
Delivery controller: the relay's single synchronous loop.

Pulls packets from the SeedLink session, translates data-bearing records and
writes them to the DataLink session. A failed write switches to RECONNECTING
and retries the same record after every successful reconnect, so a sink
outage never drops a record; only a termination request abandons the one
record in flight.

States:
    RUNNING       fetching and forwarding
    RECONNECTING  sink write failed, re-establishing the DataLink connection
    DRAINING      shutting down: close both sessions, save final state
    STOPPED       terminal
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from loguru import logger

from .checkpoint import CheckpointStore
from .errors import CheckpointError, ConnectError, DeliveryError, ParseError, SourceFatalError
from .metrics import RECORDS_TOTAL, SINK_RECONNECTS_TOTAL
from .models import Ack, Checkpoint, ForwardUnit, Record, RecordType
from .translator import RecordTranslator


class RelayState(str, Enum):
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    DRAINING = "draining"
    STOPPED = "stopped"


class Source(Protocol):
    @property
    def connected(self) -> bool: ...

    def open(self) -> None: ...

    def next_record(self) -> Optional[Record]: ...

    def checkpoint(self) -> Checkpoint: ...

    def close(self) -> None: ...


class Sink(Protocol):
    @property
    def connected(self) -> bool: ...

    def connect(self) -> None: ...

    def deliver(self, unit: ForwardUnit, ack: bool = False) -> Optional[Ack]: ...

    def disconnect(self) -> None: ...


@dataclass
class RelayStats:
    forwarded: int = 0
    discarded: int = 0
    parse_errors: int = 0
    reconnects: int = 0
    checkpoints: int = 0
    abandoned: int = 0


class DeliveryController:
    def __init__(
        self,
        source: Source,
        sink: Sink,
        translator: RecordTranslator,
        terminate: threading.Event,
        *,
        checkpoint_store: Optional[CheckpointStore] = None,
        checkpoint_interval: int = 0,
        write_ack: bool = False,
        reconnect_delay: float = 10.0,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self._source = source
        self._sink = sink
        self._translator = translator
        self._terminate = terminate
        self._store = checkpoint_store
        self._interval = checkpoint_interval
        self._write_ack = write_ack
        self._delay = reconnect_delay
        # returns early once termination is requested
        self._sleep = sleep or terminate.wait

        self._state = RelayState.STOPPED
        self._stats = RelayStats()
        self._since_checkpoint = 0

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def stats(self) -> RelayStats:
        return self._stats

    def _set_state(self, state: RelayState) -> None:
        if state is not self._state:
            logger.debug(f"Relay state {self._state.value} -> {state.value}")
            self._state = state

    # ---------- lifecycle ----------

    def run(self) -> RelayStats:
        """
        Connect both sessions and relay until the source ends or termination
        is requested. Raises ConnectError when the startup connections cannot
        be established.
        """
        self._connect_sink()
        try:
            self._source.open()
        except ConnectError:
            self._sink.disconnect()
            raise

        self._set_state(RelayState.RUNNING)
        try:
            while self._state is RelayState.RUNNING:
                self._step()
        finally:
            self._drain()
        return self._stats

    def _connect_sink(self) -> None:
        while not self._terminate.is_set():
            try:
                self._sink.connect()
                return
            except ConnectError as e:
                logger.error(f"Error connecting to DataLink server, sleeping {self._delay:g} seconds: {e}")
                self._sleep(self._delay)
        raise ConnectError("terminated before a DataLink connection was established")

    def _drain(self) -> None:
        self._set_state(RelayState.DRAINING)
        if self._source.connected:
            self._source.close()
        if self._sink.connected:
            self._sink.disconnect()
        if self._store is not None:
            self._save_checkpoint()
        self._set_state(RelayState.STOPPED)
        logger.info(f"Relay stopped: {asdict(self._stats)}")

    # ---------- main loop ----------

    def _step(self) -> None:
        try:
            record = self._source.next_record()
        except SourceFatalError as e:
            logger.error(f"SeedLink connection failed: {e}")
            self._set_state(RelayState.DRAINING)
            return

        if record is None:
            self._set_state(RelayState.DRAINING)
            return

        ptype = record.type
        if ptype is RecordType.KEEPALIVE:
            logger.trace("Keep alive packet received")
        else:
            logger.trace(f"Received {ptype.label} packet, SeedLink sequence {record.sequence}")

        if not ptype.is_data_bearing:
            self._stats.discarded += 1
            RECORDS_TOTAL.labels(type=ptype.name.lower(), outcome="discarded").inc()
            return

        try:
            unit = self._translator.translate(record)
        except ParseError as e:
            logger.error(str(e))
            self._stats.parse_errors += 1
            RECORDS_TOTAL.labels(type=ptype.name.lower(), outcome="parse_error").inc()
            return

        if self._forward(unit):
            self._stats.forwarded += 1
            RECORDS_TOTAL.labels(type=ptype.name.lower(), outcome="forwarded").inc()
            self._maybe_checkpoint()
        else:
            self._stats.abandoned += 1
            RECORDS_TOTAL.labels(type=ptype.name.lower(), outcome="abandoned").inc()
            logger.warning(f"Termination requested, abandoning {unit.stream_id} record")
            self._set_state(RelayState.DRAINING)

    def _forward(self, unit: ForwardUnit) -> bool:
        """Deliver until it succeeds; False only when termination interrupts the retries."""
        while True:
            try:
                self._sink.deliver(unit, self._write_ack)
                return True
            except DeliveryError as e:
                logger.warning(f"Error writing {unit.stream_id} to DataLink server: {e}")
            if not self._reconnect():
                return False

    def _reconnect(self) -> bool:
        self._set_state(RelayState.RECONNECTING)
        logger.debug("Re-connecting to DataLink server")
        while not self._terminate.is_set():
            if self._sink.connected:
                self._sink.disconnect()
            self._stats.reconnects += 1
            try:
                self._sink.connect()
            except ConnectError as e:
                SINK_RECONNECTS_TOTAL.labels(outcome="failure").inc()
                logger.error(f"Error re-connecting to DataLink server, sleeping {self._delay:g} seconds: {e}")
                self._sleep(self._delay)
                continue
            SINK_RECONNECTS_TOTAL.labels(outcome="success").inc()
            self._set_state(RelayState.RUNNING)
            return True
        return False

    # ---------- checkpoints ----------

    def _maybe_checkpoint(self) -> None:
        if self._store is None or self._interval <= 0:
            return
        self._since_checkpoint += 1
        if self._since_checkpoint >= self._interval:
            self._since_checkpoint = 0
            self._save_checkpoint()

    def _save_checkpoint(self) -> None:
        try:
            self._store.save(self._source.checkpoint())
            self._stats.checkpoints += 1
        except CheckpointError as e:
            logger.error(f"State saving failed: {e}")
