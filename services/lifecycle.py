"""Startup sequencing: store schema, then ingestion, then HTTP serving."""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from threading import Lock

from services.channel import ChannelError
from services.ingestor import Ingestor, build_default_ingestor
from storage.readings import ReadingStore, StoreError, build_default_store


logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    """Process startup states, traversed once and in order."""

    uninitialized = "uninitialized"
    store_ready = "store_ready"
    ingestor_running = "ingestor_running"
    serving = "serving"


class StartupError(RuntimeError):
    """The process cannot reach the serving state."""


class LifecycleCoordinator:
    def __init__(self, store: ReadingStore, ingestor: Ingestor) -> None:
        self.store = store
        self.ingestor = ingestor
        self._state = LifecycleState.uninitialized
        self._lock = Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    def start(self) -> None:
        """Initialize the store, subscribe the ingestor, then mark serving.

        Any failure leaves the coordinator short of ``serving`` and raises
        ``StartupError``.
        """
        with self._lock:
            if self._state is not LifecycleState.uninitialized:
                raise RuntimeError(f"Lifecycle already started (state={self._state.value}).")

            try:
                self.store.initialize()
            except StoreError as exc:
                raise StartupError(f"Reading store unavailable: {exc}") from exc
            self._advance(LifecycleState.store_ready)

            try:
                self.ingestor.start()
            except ChannelError as exc:
                raise StartupError(f"Telemetry subscription failed: {exc}") from exc
            self._advance(LifecycleState.ingestor_running)

            self._advance(LifecycleState.serving)

    def shutdown(self) -> None:
        """Stop ingestion and release store connections."""
        try:
            self.ingestor.stop()
        finally:
            self.store.dispose()
        logger.info("Shutdown complete", extra={"state": self._state.value})

    def _advance(self, state: LifecycleState) -> None:
        self._state = state
        logger.info("Lifecycle transition", extra={"state": state.value})


@lru_cache
def build_default_coordinator() -> LifecycleCoordinator:
    return LifecycleCoordinator(store=build_default_store(), ingestor=build_default_ingestor())
