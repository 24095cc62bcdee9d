from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_STORE_PATH_ENV = "STORE_PERSISTENCE_PATH"
_TOPIC_PREFIX_ENV = "TOPIC_PREFIX"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_MQTT_ENABLED_ENV = "MQTT_ENABLED"
_WORKER_COUNT_ENV = "INGEST_WORKER_COUNT"
_MAX_IN_FLIGHT_ENV = "INGEST_MAX_IN_FLIGHT"
_RETRY_ATTEMPTS_ENV = "STORE_RETRY_ATTEMPTS"
_RETRY_BASE_DELAY_ENV = "STORE_RETRY_BASE_DELAY"
_RETRY_MAX_DELAY_ENV = "STORE_RETRY_MAX_DELAY"
_SEED_STATIONS_ENV = "SEED_STATIONS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    store_persistence_path: Optional[str]
    topic_prefix: str
    mqtt_host: str
    mqtt_port: int
    mqtt_client_id: str
    mqtt_enabled: bool
    ingest_workers: int
    ingest_max_in_flight: int
    retry_attempts: int
    retry_base_delay: float
    retry_max_delay: float
    seed_stations: Tuple[str, ...]
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


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _read_names(name: str) -> Tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def _read_topic_prefix(default: str) -> str:
    prefix = _read_str_env(_TOPIC_PREFIX_ENV, default)
    return prefix.rstrip("/") or default


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry.jsonl"),
        topic_prefix=_read_topic_prefix("/i40/fertigungsanlage"),
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "localhost"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_client_id=_read_str_env(_MQTT_CLIENT_ID_ENV, "station-telemetry"),
        mqtt_enabled=_read_bool(_MQTT_ENABLED_ENV, False),
        ingest_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        ingest_max_in_flight=_read_positive_int(_MAX_IN_FLIGHT_ENV, 64),
        retry_attempts=_read_positive_int(_RETRY_ATTEMPTS_ENV, 5),
        retry_base_delay=_read_positive_float(_RETRY_BASE_DELAY_ENV, 0.1),
        retry_max_delay=_read_positive_float(_RETRY_MAX_DELAY_ENV, 5.0),
        seed_stations=_read_names(_SEED_STATIONS_ENV),
        log_level=_read_log_level("INFO"),
    )
