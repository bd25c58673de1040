"""
Unit tests for relay metrics (light sanity checks).
"""

import threading

import pytest

from slink2dali.checkpoint import CheckpointStore
from slink2dali.controller import DeliveryController
from slink2dali.errors import CheckpointError
from slink2dali.metrics import metrics_registry
from slink2dali.models import Checkpoint, Record, RecordType, StreamState
from slink2dali.translator import RecordTranslator


def _value(metric, **labels):
    return metric.labels(**labels)._value.get()


class OneShotSource:
    def __init__(self, records):
        self._records = list(records)
        self.connected = True

    def open(self):
        pass

    def next_record(self):
        return self._records.pop(0) if self._records else None

    def checkpoint(self):
        return Checkpoint()

    def close(self):
        self.connected = False


class NullSink:
    connected = False

    def connect(self):
        self.connected = True

    def deliver(self, unit, ack=False):
        return None

    def disconnect(self):
        self.connected = False


def test_checkpoint_saves_are_counted(tmp_path):
    ok = metrics_registry.checkpoint_saves_total
    before = _value(ok, status="success")

    CheckpointStore(tmp_path / "slink.state").save(
        Checkpoint(streams=[StreamState(network="IU", station="KONO", seqnum=1)])
    )

    assert _value(ok, status="success") == before + 1


def test_failed_checkpoint_save_is_counted(tmp_path):
    before = _value(metrics_registry.checkpoint_saves_total, status="failure")
    store = CheckpointStore(tmp_path / "missing" / "slink.state")

    with pytest.raises(CheckpointError):
        store.save(Checkpoint())

    assert _value(metrics_registry.checkpoint_saves_total, status="failure") == before + 1


def test_record_outcomes_are_counted(make_record):
    records = metrics_registry.records_total
    fwd_before = _value(records, type="data", outcome="forwarded")
    info_before = _value(records, type="info", outcome="discarded")

    source = OneShotSource(
        [
            Record(raw=make_record(), type=RecordType.DATA, sequence=1),
            Record(raw=make_record(), type=RecordType.INFO, sequence=-1),
        ]
    )
    DeliveryController(source, NullSink(), RecordTranslator(), threading.Event(), sleep=lambda s: None).run()

    assert _value(records, type="data", outcome="forwarded") == fwd_before + 1
    assert _value(records, type="info", outcome="discarded") == info_before + 1
