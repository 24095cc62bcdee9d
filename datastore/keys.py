"""Composite key layout for the ordered store.

All keys are plain strings compared lexicographically. Ids are fixed-width
hex, and reading timestamps are zero-padded microseconds since the epoch, so
every reading of one sensor sits in a single contiguous, time-ordered run.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Tuple
from uuid import UUID, uuid5

SEPARATOR = "/"
STATION_PREFIX = "station/"
SENSOR_PREFIX = "sensor/"
STATION_SENSOR_PREFIX = "station-sensor/"
READING_PREFIX = "reading/"

TIMESTAMP_WIDTH = 20
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_STATION_NAMESPACE = UUID("5b0f4a5e-9d3c-4c43-8f5e-0d6a2f1b7c11")


def station_id_for(name: str) -> str:
    return uuid5(_STATION_NAMESPACE, name).hex


def station_key(station_id: str) -> str:
    return f"{STATION_PREFIX}{station_id}"


def sensor_key(sensor_id: str) -> str:
    return f"{SENSOR_PREFIX}{sensor_id}"


def station_sensor_key(station_id: str, display_name: str) -> str:
    """Uniqueness slot for one ``(station, display_name)`` pair."""
    return f"{STATION_SENSOR_PREFIX}{station_id}{SEPARATOR}{display_name}"


def station_sensor_prefix(station_id: str) -> str:
    return f"{STATION_SENSOR_PREFIX}{station_id}{SEPARATOR}"


def reading_prefix(sensor_id: str) -> str:
    return f"{READING_PREFIX}{sensor_id}{SEPARATOR}"


def reading_key(sensor_id: str, recorded_at: datetime) -> str:
    return f"{reading_prefix(sensor_id)}{encode_timestamp(recorded_at)}"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_micros(value: datetime) -> int:
    delta = as_utc(value) - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_micros(micros: int) -> datetime:
    return EPOCH + timedelta(microseconds=micros)


def encode_timestamp(value: datetime) -> str:
    # Pre-epoch instants clamp to zero; nothing is stored before 1970.
    return str(max(to_micros(value), 0)).zfill(TIMESTAMP_WIDTH)


def decode_timestamp(encoded: str) -> datetime:
    return from_micros(int(encoded))


def split_reading_key(key: str) -> Tuple[str, datetime]:
    """Return the ``(sensor_id, recorded_at)`` encoded in a reading key."""
    if not key.startswith(READING_PREFIX):
        raise ValueError(f"Not a reading key: {key!r}.")
    sensor_id, _, encoded = key[len(READING_PREFIX):].partition(SEPARATOR)
    if not sensor_id or len(encoded) != TIMESTAMP_WIDTH or not encoded.isdigit():
        raise ValueError(f"Malformed reading key: {key!r}.")
    try:
        return sensor_id, decode_timestamp(encoded)
    except OverflowError as exc:
        raise ValueError(f"Reading key timestamp out of range: {key!r}.") from exc


def prefix_upper_bound(prefix: str) -> str:
    """Smallest key greater than every key starting with ``prefix``."""
    if not prefix:
        raise ValueError("An empty prefix has no upper bound.")
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)
