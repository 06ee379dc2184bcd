from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DB_PATH_ENV = "ENERGY_DB_PATH"
_DB_BUSY_TIMEOUT_ENV = "ENERGY_DB_BUSY_TIMEOUT"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_TOPIC_ENV = "MQTT_TOPIC"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_MQTT_KEEPALIVE_ENV = "MQTT_KEEPALIVE"
_MQTT_QOS_ENV = "MQTT_QOS"
_MQTT_CONNECT_TIMEOUT_ENV = "MQTT_CONNECT_TIMEOUT"
_ALERT_TOPIC_ENV = "ALERT_TOPIC"
_WORKER_COUNT_ENV = "INGEST_WORKER_COUNT"
_MAX_CONSUMPTION_ENV = "MAX_CONSUMPTION_KW"
_RECENT_LIMIT_ENV = "RECENT_LIMIT"
_STATIC_DIR_ENV = "STATIC_DIR"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    db_path: str
    db_busy_timeout: float
    mqtt_host: str
    mqtt_port: int
    mqtt_topic: str
    mqtt_client_id: str
    mqtt_keepalive: int
    mqtt_qos: int
    mqtt_connect_timeout: float
    alert_topic: Optional[str]
    ingest_workers: int
    max_consumption_kw: float
    recent_limit: int
    static_dir: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_publish_topic(name: str) -> Optional[str]:
    candidate = _read_optional_env(name, None)
    if candidate is None or "+" in candidate or "#" in candidate:
        return None
    return candidate


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_qos(default: int) -> int:
    value = os.getenv(_MQTT_QOS_ENV)
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed in (0, 1, 2) else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        db_path=_read_str_env(_DB_PATH_ENV, "energy_monitor.db"),
        db_busy_timeout=_read_positive_float(_DB_BUSY_TIMEOUT_ENV, 10.0),
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "broker.hivemq.com"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_topic=_read_str_env(_MQTT_TOPIC_ENV, "energy/consumption"),
        mqtt_client_id=_read_str_env(
            _MQTT_CLIENT_ID_ENV, f"energy-monitor-{uuid.uuid4().hex[:12]}"
        ),
        mqtt_keepalive=_read_positive_int(_MQTT_KEEPALIVE_ENV, 60),
        mqtt_qos=_read_qos(1),
        mqtt_connect_timeout=_read_positive_float(_MQTT_CONNECT_TIMEOUT_ENV, 10.0),
        alert_topic=_read_publish_topic(_ALERT_TOPIC_ENV),
        ingest_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        max_consumption_kw=_read_positive_float(_MAX_CONSUMPTION_ENV, 1_000_000.0),
        recent_limit=_read_positive_int(_RECENT_LIMIT_ENV, 100),
        static_dir=_read_optional_env(_STATIC_DIR_ENV, None),
        log_level=_read_log_level("INFO"),
    )
