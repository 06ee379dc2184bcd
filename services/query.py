"""Read path over the reading store and alert intake."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from services.channel import ChannelError, build_default_channel
from settings import get_settings
from storage.readings import ReadingStore, build_default_store


logger = logging.getLogger(__name__)

ALERT_ACKNOWLEDGEMENT = "Alerta enviada"


@dataclass(frozen=True)
class AlertAcknowledgement:
    status: str = "success"
    message: str = ALERT_ACKNOWLEDGEMENT


class QueryService:
    """Serves recent readings and accepts operator alerts.

    Holds no state besides the store handle; every call reads through the
    store. ``forward`` optionally relays alert text to another system.
    """

    def __init__(
        self,
        store: ReadingStore,
        recent_limit: int = 100,
        forward: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = store
        self.recent_limit = recent_limit
        self._forward = forward

    def recent_energy(self, limit: Optional[int] = None) -> list[tuple[str, float]]:
        """Return ``[timestamp, consumption]`` pairs, newest first.

        Raises ``StoreError`` when the store cannot be read.
        """
        readings = self.store.recent(self.recent_limit if limit is None else limit)
        return [reading.as_pair() for reading in readings]

    def submit_alert(self, message: str) -> AlertAcknowledgement:
        if self._forward is not None:
            try:
                self._forward(message)
            except ChannelError as exc:
                logger.error("Alert forwarding failed", extra={"reason": str(exc)})
        logger.warning("%s: %s", ALERT_ACKNOWLEDGEMENT, message)
        return AlertAcknowledgement()


@lru_cache
def build_default_query_service() -> QueryService:
    settings = get_settings()
    forward: Optional[Callable[[str], None]] = None
    alert_topic = settings.alert_topic
    if alert_topic:
        channel = build_default_channel()

        def _publish_alert(message: str) -> None:
            channel.publish(alert_topic, message)

        forward = _publish_alert

    return QueryService(
        store=build_default_store(),
        recent_limit=settings.recent_limit,
        forward=forward,
    )
