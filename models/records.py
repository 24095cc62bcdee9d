"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from app.schemas import Reading

# A window side: absolute instant, duration before now, or unbounded.
TimeSpec = Union[datetime, timedelta, None]


@dataclass(frozen=True, slots=True)
class TopicParts:
    """Station and sensor names decoded from a transport topic."""

    station_name: str
    sensor_name: str


@dataclass(frozen=True, slots=True)
class Between:
    start: TimeSpec
    end: TimeSpec


@dataclass(frozen=True, slots=True)
class Since:
    """Window from ``start`` up to the moment the window is built.

    The end is exclusive. A reading bumped forward by a same-microsecond
    collision can land at or after that moment, so a query issued right
    after the write may not include it yet.
    """

    start: TimeSpec


WindowSpec = Union[Between, Since]


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Resolved ``[start, end)`` bounds; ``None`` means unbounded."""

    start: Optional[datetime]
    end: Optional[datetime]


class IngestStatus(str, Enum):
    stored = "stored"
    invalid_topic = "invalid_topic"
    unknown_station = "unknown_station"
    store_rejected = "store_rejected"


@dataclass(slots=True)
class IngestResult:
    """Outcome of ingesting one inbound message."""

    status: IngestStatus
    topic: str
    reason: Optional[str] = None
    sensor_id: Optional[str] = None
    reading: Optional[Reading] = None

    @property
    def stored(self) -> bool:
        return self.status is IngestStatus.stored
