"""Tests for payload parsing and the ingestion pipeline."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from services.channel import InMemoryChannel, RawMessage
from services.ingestor import Ingestor, PayloadError, parse_payload
from storage.readings import ReadingStore

TOPIC = "energy/consumption"


def _store(tmp_path: Path) -> ReadingStore:
    store = ReadingStore(path=tmp_path / "energy.db")
    store.initialize()
    return store


def _wait_for_count(store: ReadingStore, expected: int, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if store.count() >= expected:
            return
        time.sleep(0.02)
    pytest.fail(f"Expected {expected} readings, found {store.count()}")


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        (b"12.5", 12.5),
        (b" 3 \n", 3.0),
        (b"0", 0.0),
        (b"-0", 0.0),
        (b".5", 0.5),
        (b"1e3", 1000.0),
        (b"+4.", 4.0),
    ],
)
def test_parse_payload_accepts_decimal_numbers(payload: bytes, expected: float) -> None:
    assert parse_payload(payload) == expected


@pytest.mark.parametrize(
    "payload",
    [b"", b"   ", b"abc", b"12kW", b"nan", b"inf", b"-1", b"1_000", b"1e999", b"\xff\xfe", b"0x10"],
)
def test_parse_payload_rejects_invalid_values(payload: bytes) -> None:
    with pytest.raises(PayloadError):
        parse_payload(payload)


def test_parse_payload_enforces_ceiling() -> None:
    assert parse_payload(b"500", max_consumption=500.0) == 500.0
    with pytest.raises(PayloadError):
        parse_payload(b"500.1", max_consumption=500.0)


def test_handle_message_stores_value_with_current_timestamp(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ingestor = Ingestor(store=store, channel=InMemoryChannel(), topic=TOPIC, workers=1)

    before = datetime.now(timezone.utc)
    stored = ingestor.handle_message(RawMessage(topic=TOPIC, payload=b"42.25"))
    after = datetime.now(timezone.utc)

    assert stored is not None
    assert stored.consumption == 42.25
    assert before <= datetime.fromisoformat(stored.timestamp) <= after
    [reading] = store.recent(10)
    assert reading == stored
    ingestor.stop()
    store.dispose()


def test_handle_message_uses_injected_clock(tmp_path: Path) -> None:
    store = _store(tmp_path)
    fixed = datetime(2024, 5, 1, 8, 10, 11, 500000, tzinfo=timezone.utc)
    ingestor = Ingestor(
        store=store, channel=InMemoryChannel(), topic=TOPIC, workers=1, clock=lambda: fixed
    )

    stored = ingestor.handle_message(RawMessage(topic=TOPIC, payload=b"1"))

    assert stored is not None
    assert stored.timestamp == "2024-05-01T08:10:11.500000+00:00"
    ingestor.stop()
    store.dispose()


def test_handle_message_discards_malformed_payload(tmp_path: Path, caplog) -> None:
    store = _store(tmp_path)
    ingestor = Ingestor(store=store, channel=InMemoryChannel(), topic=TOPIC, workers=1)

    with caplog.at_level(logging.WARNING, logger="services.ingestor"):
        result = ingestor.handle_message(RawMessage(topic=TOPIC, payload=b"not-a-number"))

    assert result is None
    assert store.count() == 0
    assert any(getattr(record, "reason", None) == "non-numeric payload" for record in caplog.records)
    ingestor.stop()
    store.dispose()


def test_handle_message_drops_reading_on_store_failure(tmp_path: Path, caplog) -> None:
    store = ReadingStore(path=tmp_path / "uninitialized.db")
    ingestor = Ingestor(store=store, channel=InMemoryChannel(), topic=TOPIC, workers=1)

    with caplog.at_level(logging.ERROR, logger="services.ingestor"):
        result = ingestor.handle_message(RawMessage(topic=TOPIC, payload=b"5"))

    assert result is None
    assert any("store failure" in record.getMessage() for record in caplog.records)
    ingestor.stop()
    store.dispose()


def test_ingestor_keeps_consuming_after_bad_messages(tmp_path: Path) -> None:
    store = _store(tmp_path)
    channel = InMemoryChannel()
    ingestor = Ingestor(store=store, channel=channel, topic=TOPIC, workers=4)
    ingestor.start()

    try:
        for payload in ["1.0", "garbage", "", "2.0", "NaN", "3.0", "3.0"]:
            channel.publish(TOPIC, payload)
        _wait_for_count(store, 4)
        ingestor.drain(timeout=5)
    finally:
        ingestor.stop()

    values = sorted(reading.consumption for reading in store.recent(100))
    assert values == [1.0, 2.0, 3.0, 3.0]
    assert ingestor.running is False
    store.dispose()


def test_ingestor_ignores_other_topics(tmp_path: Path) -> None:
    store = _store(tmp_path)
    channel = InMemoryChannel()
    ingestor = Ingestor(store=store, channel=channel, topic=TOPIC, workers=1)
    ingestor.start()

    try:
        channel.publish("energy/other", "9.0")
        channel.publish(TOPIC, "1.0")
        _wait_for_count(store, 1)
        ingestor.drain(timeout=5)
    finally:
        ingestor.stop()

    assert [reading.consumption for reading in store.recent(10)] == [1.0]
    store.dispose()


def test_ingestor_cannot_start_twice(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ingestor = Ingestor(store=store, channel=InMemoryChannel(), topic=TOPIC, workers=1)
    ingestor.start()

    try:
        with pytest.raises(RuntimeError):
            ingestor.start()
    finally:
        ingestor.stop()
    store.dispose()
