"""
Unit tests for wiring a relay from its configuration.
"""

import threading

from loguru import logger

from slink2dali.config import build_config
from slink2dali.relay import build_relay


def test_build_relay_resumes_from_state_file(settings, tmp_path):
    state = tmp_path / "slink.state"
    state.write_text("IU KONO 41 2024,03,01,12,00,00\n")
    config = build_config(":18000", ":16000", multiselect="IU_KONO", state_file=f"{state}:10", settings=settings)

    relay = build_relay(config, threading.Event(), settings=settings)

    restored = relay._source.checkpoint().get("IU", "KONO")
    assert restored.seqnum == 41
    assert relay._interval == 10


def test_build_relay_ignores_unreadable_state(settings, tmp_path):
    state = tmp_path / "slink.state"
    state.write_text("garbage\n")
    config = build_config(":18000", ":16000", state_file=str(state), settings=settings)

    relay = build_relay(config, threading.Event(), settings=settings)

    assert relay._source.checkpoint().get("XX", "UNI").seqnum == -1
    assert relay._store is not None


def test_build_relay_logs_both_addresses(settings):
    config = build_config("geofon.example.org:18001", "archive:16001", settings=settings)
    messages = []
    handler = logger.add(messages.append, level="INFO", format="{message}")
    try:
        build_relay(config, threading.Event(), settings=settings)
    finally:
        logger.remove(handler)

    assert any("geofon.example.org:18001" in m and "archive:16001" in m for m in messages)
