"""Consumes telemetry messages and appends them to the reading store."""

from __future__ import annotations

import logging
import math
import re
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock, Thread
from typing import Callable, Optional, Set

from models.records import Reading
from services.channel import MessageChannel, RawMessage, Subscription, build_default_channel
from settings import get_settings
from storage.readings import ReadingStore, StoreError, build_default_store


logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

DEFAULT_MAX_CONSUMPTION_KW = 1_000_000.0


class PayloadError(ValueError):
    """Raised when a message payload is not a usable consumption value."""


def parse_payload(payload: bytes, max_consumption: float = DEFAULT_MAX_CONSUMPTION_KW) -> float:
    """Parse a UTF-8 numeric payload into a consumption value in kW.

    Only plain decimal notation is accepted (optional sign, fraction and
    exponent). The value must be finite, non-negative and no greater than
    ``max_consumption``.
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PayloadError("payload is not valid UTF-8") from exc

    candidate = text.strip()
    if not candidate:
        raise PayloadError("empty payload")
    if not _NUMBER_PATTERN.fullmatch(candidate):
        raise PayloadError("non-numeric payload")

    value = float(candidate)
    if not math.isfinite(value):
        raise PayloadError("consumption is not finite")
    if value < 0:
        raise PayloadError("negative consumption")
    if value > max_consumption:
        raise PayloadError(f"consumption above {max_consumption} kW")
    # normalizes -0.0
    return value if value else 0.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Ingestor:
    """Subscribes to the telemetry topic and stores every valid reading.

    A dedicated consumer thread reads the subscription and hands each message
    to a worker pool, so messages are handled concurrently and independently.
    Malformed payloads and store failures are logged and the message dropped.
    """

    def __init__(
        self,
        store: ReadingStore,
        channel: MessageChannel,
        topic: str,
        workers: int = 4,
        max_consumption: float = DEFAULT_MAX_CONSUMPTION_KW,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.channel = channel
        self.topic = topic
        self.max_consumption = max_consumption
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        self._clock = clock
        self._started = False
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[Thread] = None
        self._pending: Set[Future[Optional[Reading]]] = set()
        self._pending_lock = Lock()

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        """Subscribe to the topic and start consuming; returns once subscribed."""
        if self._started:
            raise RuntimeError("Ingestor has already been started.")
        self._started = True

        subscription = self.channel.subscribe(self.topic)
        self._subscription = subscription
        self._consumer = Thread(
            target=self._consume,
            args=(subscription,),
            name="ingest-consumer",
            daemon=True,
        )
        self._consumer.start()
        logger.info("Ingestor subscribed", extra={"topic": self.topic})

    def handle_message(self, message: RawMessage) -> Optional[Reading]:
        """Parse, stamp and store one message; return the stored reading or None."""
        try:
            consumption = parse_payload(message.payload, self.max_consumption)
        except PayloadError as exc:
            logger.warning(
                "Discarding malformed payload",
                extra={
                    "topic": message.topic,
                    "payload": repr(message.payload[:64]),
                    "reason": str(exc),
                },
            )
            return None

        reading = Reading(
            timestamp=self._clock().isoformat(timespec="microseconds"),
            consumption=consumption,
        )
        try:
            stored = self.store.append(reading)
        except StoreError as exc:
            logger.error(
                "Dropping reading after store failure",
                extra={
                    "consumption": reading.consumption,
                    "timestamp": reading.timestamp,
                    "reason": str(exc),
                },
            )
            return None

        logger.info(
            "Reading stored",
            extra={
                "reading_id": stored.id,
                "consumption": stored.consumption,
                "timestamp": stored.timestamp,
            },
        )
        return stored

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until messages already handed to the pool are handled."""
        with self._pending_lock:
            pending = set(self._pending)
        wait(pending, timeout=timeout)

    def stop(self) -> None:
        """Close the subscription and release the consumer and worker threads."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.join(timeout=5)
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _consume(self, subscription: Subscription) -> None:
        for message in subscription:
            try:
                future = self.executor.submit(self.handle_message, message)
            except RuntimeError:
                logger.warning("Worker pool closed; stopping consumer", extra={"topic": self.topic})
                return
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._on_done)

    def _on_done(self, future: Future[Optional[Reading]]) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Unexpected failure handling message", exc_info=exc)


@lru_cache
def build_default_ingestor() -> Ingestor:
    settings = get_settings()
    return Ingestor(
        store=build_default_store(),
        channel=build_default_channel(),
        topic=settings.mqtt_topic,
        workers=settings.ingest_workers,
        max_consumption=settings.max_consumption_kw,
    )
