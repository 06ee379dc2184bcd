from __future__ import annotations

from typing import Iterable

from app.main import _reset_factories
from services.channel import build_default_channel
from services.ingestor import build_default_ingestor
from services.query import build_default_query_service
from settings import get_settings
from storage.readings import build_default_store


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "custom.db"

    monkeypatch.setenv("ENERGY_DB_PATH", str(db_path))
    monkeypatch.setenv("MQTT_HOST", "broker.internal")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("MQTT_TOPIC", "plant/energy")
    monkeypatch.setenv("MQTT_CLIENT_ID", "monitor-1")
    monkeypatch.setenv("MQTT_QOS", "2")
    monkeypatch.setenv("INGEST_WORKER_COUNT", "2")
    monkeypatch.setenv("MAX_CONSUMPTION_KW", "250")
    monkeypatch.setenv("RECENT_LIMIT", "20")
    monkeypatch.setenv("ALERT_TOPIC", "plant/alerts")

    _clear_caches((get_settings,))
    _reset_factories()

    store = build_default_store()
    channel = build_default_channel()
    ingestor = build_default_ingestor()
    service = build_default_query_service()

    try:
        assert store.path == db_path
        assert channel.host == "broker.internal"
        assert channel.port == 8883
        assert channel.client_id == "monitor-1"
        assert channel.qos == 2
        assert ingestor.topic == "plant/energy"
        assert ingestor.store is store
        assert ingestor.max_consumption == 250.0
        assert ingestor.executor._max_workers == 2
        assert service.store is store
        assert service.recent_limit == 20
        assert service._forward is not None
    finally:
        ingestor.stop()
        _reset_factories()
        get_settings.cache_clear()


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("MQTT_PORT", "not-a-port")
    monkeypatch.setenv("MQTT_QOS", "5")
    monkeypatch.setenv("INGEST_WORKER_COUNT", "-3")
    monkeypatch.setenv("RECENT_LIMIT", "  ")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("ALERT_TOPIC", raising=False)
    monkeypatch.delenv("MQTT_TOPIC", raising=False)
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.mqtt_port == 1883
        assert settings.mqtt_qos == 1
        assert settings.ingest_workers == 4
        assert settings.recent_limit == 100
        assert settings.log_level == "DEBUG"
        assert settings.alert_topic is None
        assert settings.mqtt_topic == "energy/consumption"
    finally:
        get_settings.cache_clear()


def test_wildcard_alert_topic_is_ignored(monkeypatch) -> None:
    monkeypatch.setenv("ALERT_TOPIC", "alerts/#")
    get_settings.cache_clear()

    try:
        assert get_settings().alert_topic is None
        monkeypatch.setenv("ALERT_TOPIC", "plant/+/alerts")
        get_settings.cache_clear()
        assert get_settings().alert_topic is None
    finally:
        get_settings.cache_clear()
