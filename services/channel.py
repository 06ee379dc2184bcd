"""Telemetry channel abstraction: subscribe to a topic, iterate raw messages."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from functools import lru_cache
from threading import Event, Lock
from typing import Any, Callable, Iterator, Optional, Protocol, Union

import paho.mqtt.client as mqtt

from settings import get_settings


logger = logging.getLogger(__name__)

Payload = Union[bytes, str]

_CLOSED = object()


class ChannelError(Exception):
    """Raised when the broker link cannot be established or used."""


@dataclass(frozen=True)
class RawMessage:
    """A message exactly as delivered by the channel."""

    topic: str
    payload: bytes


class Subscription:
    """Blocking stream of messages for one topic filter.

    Iteration waits for the next message and ends once ``close()`` is called;
    messages delivered before the close are still yielded.
    """

    def __init__(self, topic: str, on_close: Optional[Callable[[], None]] = None) -> None:
        self.topic = topic
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._on_close = on_close
        self._closed = False
        self._lock = Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: RawMessage) -> None:
        if self._closed:
            return
        self._queue.put(message)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_CLOSED)
        if self._on_close is not None:
            self._on_close()

    def __iter__(self) -> Iterator[RawMessage]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


class MessageChannel(Protocol):
    def subscribe(self, topic: str) -> Subscription: ...

    def publish(self, topic: str, payload: Payload) -> None: ...


def _as_bytes(payload: Payload) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


class InMemoryChannel:
    """In-process channel with MQTT topic filter semantics."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = Lock()

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic, on_close=lambda: self._remove(subscription))
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, topic: str, payload: Payload) -> None:
        if "+" in topic or "#" in topic:
            raise ChannelError(f"Cannot publish to wildcard topic {topic!r}.")
        message = RawMessage(topic=topic, payload=_as_bytes(payload))
        with self._lock:
            targets = [
                subscription
                for subscription in self._subscriptions
                if mqtt.topic_matches_sub(subscription.topic, topic)
            ]
        for subscription in targets:
            subscription.deliver(message)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


class MqttChannel:
    """paho-mqtt backed channel.

    ``subscribe`` blocks until the broker acknowledges the subscription. The
    network loop runs on paho's background thread, reconnects with backoff
    after a lost connection and re-subscribes on every successful connect.
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: str = "",
        keepalive: int = 60,
        qos: int = 1,
        connect_timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.client_id = client_id
        self.keepalive = keepalive
        self.qos = qos
        self.connect_timeout = connect_timeout
        self._client: Optional[mqtt.Client] = None
        self._lock = Lock()

    def subscribe(self, topic: str) -> Subscription:
        with self._lock:
            if self._client is not None:
                raise ChannelError("MQTT channel already holds an active subscription.")
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
            )
            self._client = client

        subscription = Subscription(topic, on_close=self._disconnect)
        subscribed = Event()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                logger.warning("MQTT connect refused: %s", reason_code, extra={"topic": topic})
                return
            logger.info("MQTT connected to %s:%s", self.host, self.port, extra={"topic": topic})
            c.subscribe(topic, qos=self.qos)

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_code_list: list[Any],
            _properties: Any,
        ) -> None:
            if any(code.is_failure for code in reason_code_list):
                logger.error(
                    "MQTT subscription rejected: %s",
                    reason_code_list,
                    extra={"topic": topic},
                )
                return
            subscribed.set()

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            subscription.deliver(RawMessage(topic=msg.topic, payload=msg.payload))

        def on_disconnect(
            _c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if not subscription.closed:
                logger.warning(
                    "MQTT connection lost: %s; reconnecting",
                    reason_code,
                    extra={"topic": topic},
                )

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect
        client.reconnect_delay_set(min_delay=1, max_delay=60)

        try:
            client.connect(self.host, self.port, keepalive=self.keepalive)
        except OSError as exc:
            with self._lock:
                self._client = None
            raise ChannelError(
                f"Could not connect to MQTT broker {self.host}:{self.port}: {exc}"
            ) from exc
        client.loop_start()

        if not subscribed.wait(self.connect_timeout):
            subscription.close()
            raise ChannelError(
                f"Subscription to {topic!r} on {self.host}:{self.port} was not "
                f"acknowledged within {self.connect_timeout}s."
            )
        return subscription

    def publish(self, topic: str, payload: Payload) -> None:
        client = self._client
        if client is None or not client.is_connected():
            raise ChannelError("MQTT channel is not connected.")
        try:
            info = client.publish(topic, _as_bytes(payload), qos=self.qos)
        except ValueError as exc:
            raise ChannelError(f"MQTT publish to {topic!r} rejected: {exc}") from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ChannelError(f"MQTT publish to {topic!r} failed: {mqtt.error_string(info.rc)}")

    def _disconnect(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()


@lru_cache
def build_default_channel() -> MqttChannel:
    settings = get_settings()
    return MqttChannel(
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        client_id=settings.mqtt_client_id,
        keepalive=settings.mqtt_keepalive,
        qos=settings.mqtt_qos,
        connect_timeout=settings.mqtt_connect_timeout,
    )
