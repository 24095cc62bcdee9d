"""Out-of-band station provisioning."""

from __future__ import annotations

import logging
from typing import Iterable, List

from app.schemas import Station
from datastore import keys
from datastore.ordered_store import OrderedStore

logger = logging.getLogger(__name__)


def provision_stations(store: OrderedStore, names: Iterable[str]) -> List[Station]:
    """Create any missing stations and return all requested ones.

    Safe to run repeatedly; existing stations are left untouched.
    """
    stations: List[Station] = []
    for raw_name in names:
        name = raw_name.strip()
        if not name:
            continue
        station = Station(id=keys.station_id_for(name), name=name)
        stored, created = store.create_if_absent(keys.station_key(station.id), station)
        if created:
            logger.info("Provisioned station", extra={"station": name})
        stations.append(stored)
    return stations
