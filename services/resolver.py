"""Map (station name, sensor name) pairs to durable sensor ids."""

from __future__ import annotations

import logging
from typing import Callable
from uuid import uuid4

from app.schemas import Sensor
from datastore import keys
from datastore.ordered_store import OrderedStore
from services.errors import UnknownStationError

logger = logging.getLogger(__name__)


def _new_sensor_id() -> str:
    return uuid4().hex


class IdentityResolver:
    """Resolves sensors, creating them the first time a name is seen.

    Creation goes through the store's conditional insert on the
    ``(station, display_name)`` slot, so concurrent first sightings of the
    same sensor all get the id of whichever write landed first.
    """

    def __init__(
        self,
        store: OrderedStore,
        id_factory: Callable[[], str] = _new_sensor_id,
    ) -> None:
        self.store = store
        self._id_factory = id_factory

    def resolve(self, station_name: str, sensor_name: str) -> str:
        station_id = keys.station_id_for(station_name)
        slot = keys.station_sensor_key(station_id, sensor_name)

        existing = self.store.get(slot)
        if existing is not None:
            return existing.id

        if self.store.get(keys.station_key(station_id)) is None:
            raise UnknownStationError(station_name)

        candidate = Sensor(
            id=self._id_factory(),
            station_id=station_id,
            display_name=sensor_name,
        )
        sensor, created = self.store.create_if_absent(
            slot,
            candidate,
            linked={keys.sensor_key(candidate.id): candidate},
        )
        if created:
            logger.info(
                "Created sensor on first sight",
                extra={"station": station_name, "sensor": sensor_name, "sensor_id": sensor.id},
            )
        return sensor.id
