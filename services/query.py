"""Read-side orchestration over the ordered store."""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import List, Optional

from app.schemas import Reading, ReadingPage, Sensor, SensorWithLatest, Station
from datastore import keys
from datastore.ordered_store import OrderedStore, build_default_store
from models.records import WindowSpec
from services.errors import InvalidWindowError, SensorNotFoundError, StationNotFoundError
from services.time_window import build_window, window_bounds


class QueryService:
    """Station, sensor and reading lookups.

    Every method reads snapshot copies from the store and takes no lock beyond
    the store's own, so queries run alongside ingestion.
    """

    def __init__(self, store: OrderedStore) -> None:
        self.store = store

    def list_stations(self) -> List[Station]:
        stations = self.store.scan_prefix(keys.STATION_PREFIX)
        return sorted(stations, key=lambda station: station.name)

    def get_station(self, station_id: str) -> Station:
        station = self.store.get(keys.station_key(station_id))
        if station is None:
            raise StationNotFoundError(f"Station {station_id!r} not found.")
        return station

    def get_sensor(self, sensor_id: str) -> SensorWithLatest:
        return self._with_latest(self._load_sensor(sensor_id))

    def list_sensors_by_station(self, station_id: str) -> List[SensorWithLatest]:
        self.get_station(station_id)
        sensors = self.store.scan_prefix(keys.station_sensor_prefix(station_id))
        return [self._with_latest(sensor) for sensor in sensors]

    def get_sensor_readings(self, sensor_id: str) -> List[Reading]:
        self._load_sensor(sensor_id)
        return self.store.scan_prefix(keys.reading_prefix(sensor_id))

    def get_sensor_readings_in_window(
        self,
        sensor_id: str,
        spec: WindowSpec,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReadingPage:
        """Readings of one sensor inside ``[start, end)`` in time order.

        ``cursor`` is the ``next_cursor`` of a previous page for the same
        sensor and window.
        """
        self._load_sensor(sensor_id)
        window = build_window(spec, now=now)
        lower, upper = window_bounds(window, sensor_id)
        if cursor is not None:
            lower = max(lower, self._check_cursor(cursor, sensor_id))
        page = self.store.scan_range(lower, upper, limit=limit)
        return ReadingPage(readings=page.records, next_cursor=page.next_key)

    @staticmethod
    def _check_cursor(cursor: str, sensor_id: str) -> str:
        try:
            owner, _ = keys.split_reading_key(cursor)
        except ValueError as exc:
            raise InvalidWindowError(f"Cursor {cursor!r} is not a reading position.") from exc
        if owner != sensor_id:
            raise InvalidWindowError(f"Cursor {cursor!r} does not belong to this sensor.")
        return cursor

    def _load_sensor(self, sensor_id: str) -> Sensor:
        sensor = self.store.get(keys.sensor_key(sensor_id))
        if sensor is None:
            raise SensorNotFoundError(f"Sensor {sensor_id!r} not found.")
        return sensor

    def _with_latest(self, sensor: Sensor) -> SensorWithLatest:
        latest = self.store.last_in_prefix(keys.reading_prefix(sensor.id))
        return SensorWithLatest(sensor=sensor, latest=latest)


@lru_cache
def build_default_query_service() -> QueryService:
    return QueryService(store=build_default_store())
