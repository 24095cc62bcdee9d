from __future__ import annotations

from typing import Iterable

from datastore.ordered_store import build_default_store
from services.ingestion import build_default_pipeline
from settings import get_settings
from transport.mqtt_subscriber import build_default_subscriber


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "telemetry.jsonl"

    monkeypatch.setenv("STORE_PERSISTENCE_PATH", str(store_path))
    monkeypatch.setenv("TOPIC_PREFIX", "/plant/line-2/")
    monkeypatch.setenv("MQTT_HOST", "broker.local")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("INGEST_WORKER_COUNT", "2")
    monkeypatch.setenv("STORE_RETRY_ATTEMPTS", "7")
    monkeypatch.setenv("SEED_STATIONS", "presswerk, ,palettenlager")

    caches = (get_settings, build_default_store, build_default_pipeline)
    _clear_caches(caches)

    settings = get_settings()
    store = build_default_store()
    pipeline = build_default_pipeline()
    subscriber = build_default_subscriber(pipeline)

    try:
        assert settings.topic_prefix == "/plant/line-2"
        assert settings.seed_stations == ("presswerk", "palettenlager")
        assert store.persistence_path == store_path
        assert pipeline.store is store
        assert pipeline.topic_prefix == "/plant/line-2"
        assert pipeline.retry_policy.max_attempts == 7
        assert pipeline.executor._max_workers == 2
        assert subscriber.host == "broker.local"
        assert subscriber.port == 8883
        assert subscriber.subscription == "/plant/line-2/#"
    finally:
        pipeline.shutdown()
        store.close()
        _clear_caches(caches)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("MQTT_PORT", "not-a-port")
    monkeypatch.setenv("INGEST_MAX_IN_FLIGHT", "-3")
    monkeypatch.setenv("STORE_RETRY_BASE_DELAY", "0")
    monkeypatch.setenv("MQTT_ENABLED", "yes")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("STORE_PERSISTENCE_PATH", "  ")
    get_settings.cache_clear()

    try:
        settings = get_settings()

        assert settings.mqtt_port == 1883
        assert settings.ingest_max_in_flight == 64
        assert settings.retry_base_delay == 0.1
        assert settings.mqtt_enabled is True
        assert settings.log_level == "DEBUG"
        assert settings.store_persistence_path is None
    finally:
        get_settings.cache_clear()
