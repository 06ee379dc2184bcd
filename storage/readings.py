"""SQLite-backed durable log of energy readings."""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from sqlalchemy import (
    REAL,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateIndex, CreateTable

from models.records import Reading
from settings import get_settings


logger = logging.getLogger(__name__)

metadata = MetaData()

energy_data = Table(
    "energy_data",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("timestamp", Text, nullable=False),
    Column("consumption", REAL, nullable=False),
    sqlite_autoincrement=True,
)

timestamp_index = Index("ix_energy_data_timestamp", energy_data.c.timestamp)


class StoreError(Exception):
    """Raised when the underlying database rejects or fails an operation."""


def _apply_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
    finally:
        cursor.close()


class ReadingStore:
    """Append-only store of readings.

    Every operation checks a connection out of the engine pool for its own
    transaction and returns it before the call completes, so callers never
    need to lock around the store. Appends are serialized in-process; reads
    run concurrently against WAL snapshots. Commits are fsynced
    (``synchronous=FULL``) so an acknowledged append survives power loss.
    """

    def __init__(self, path: Path, busy_timeout: float = 10.0) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: Engine = create_engine(
            f"sqlite:///{path}",
            future=True,
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
        )
        event.listen(self._engine, "connect", _apply_sqlite_pragmas)
        self._write_lock = Lock()

    def initialize(self) -> None:
        """Create the readings table and its index when they are missing."""

        try:
            with self._engine.begin() as connection:
                connection.execute(CreateTable(energy_data, if_not_exists=True))
                connection.execute(CreateIndex(timestamp_index, if_not_exists=True))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to initialize schema at {self.path}: {exc}") from exc
        logger.info("Reading store ready at %s", self.path)

    def append(self, reading: Reading) -> Reading:
        """Persist ``reading`` in its own transaction and return it with its id."""

        statement = energy_data.insert().values(
            timestamp=reading.timestamp,
            consumption=reading.consumption,
        )
        try:
            with self._write_lock, self._engine.begin() as connection:
                result = connection.execute(statement)
                reading_id = result.inserted_primary_key[0]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to append reading: {exc}") from exc
        return replace(reading, id=reading_id)

    def recent(self, limit: int) -> list[Reading]:
        """Return up to ``limit`` readings, newest timestamp first."""

        if limit < 1:
            raise ValueError("limit must be a positive integer.")

        statement = (
            select(energy_data.c.id, energy_data.c.timestamp, energy_data.c.consumption)
            .order_by(energy_data.c.timestamp.desc(), energy_data.c.id.desc())
            .limit(limit)
        )
        try:
            with self._engine.connect() as connection:
                rows = connection.execute(statement).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read recent readings: {exc}") from exc

        return [
            Reading(timestamp=row.timestamp, consumption=row.consumption, id=row.id)
            for row in rows
        ]

    def count(self) -> int:
        statement = select(func.count()).select_from(energy_data)
        try:
            with self._engine.connect() as connection:
                return int(connection.execute(statement).scalar_one())
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to count readings: {exc}") from exc

    def dispose(self) -> None:
        self._engine.dispose()


@lru_cache
def build_default_store(path: Optional[str] = None) -> ReadingStore:
    settings = get_settings()
    db_path = settings.db_path if path is None else path
    return ReadingStore(path=Path(db_path), busy_timeout=settings.db_busy_timeout)
