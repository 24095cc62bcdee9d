"""Pydantic schemas for stored records and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Station(BaseModel):
    """A site grouping sensors. ``id`` is derived from ``name``."""

    kind: Literal["station"] = "station"
    id: str
    name: str


class Sensor(BaseModel):
    """A named measurement stream attached to exactly one station."""

    kind: Literal["sensor"] = "sensor"
    id: str
    station_id: str
    display_name: str


class Reading(BaseModel):
    """One value sample, keyed by ``(sensor_id, recorded_at)``."""

    kind: Literal["reading"] = "reading"
    sensor_id: str
    recorded_at: datetime = Field(
        ..., description="Server time at write; the time component of the key."
    )
    value: str
    ingested_at: datetime
    transport_time: Optional[datetime] = Field(
        default=None, description="Time reported by the transport, if any. Not part of the key."
    )


StoredRecord = Union[Station, Sensor, Reading]


class SensorWithLatest(BaseModel):
    """Sensor plus its most recent reading."""

    sensor: Sensor
    latest: Optional[Reading] = None


class ReadingPage(BaseModel):
    """Ordered readings with a cursor to resume the scan."""

    readings: List[Reading] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(
        default=None, description="Pass back as ``cursor`` to fetch the next page."
    )


class SensorReadings(BaseModel):
    """HTTP payload for a sensor and a window of its readings."""

    sensor: Sensor
    readings: List[Reading] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class HealthStatus(BaseModel):
    status: Literal["ok", "degraded"]
    consecutive_store_failures: int = Field(..., ge=0)
    subscriber_connected: Optional[bool] = None
