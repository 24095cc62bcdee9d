"""Publish random values for a fixed set of sensors, for local testing."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SIMULATED_SENSORS = (
    "palettenlager/dosenfuellstand",
    "palettenlager/kugelfuellstand/rot",
    "palettenlager/kugelfuellstand/gruen",
    "palettenlager/kugelfuellstand/blau",
    "palettenlager/deckelfuellstand/rot",
    "palettenlager/deckelfuellstand/gruen",
    "palettenlager/deckelfuellstand/blau",
    "palettenlager/palettenfuellstandrandom",
    "presswerk/arm/motorgeschwindigkeit/x",
    "presswerk/arm/motorgeschwindigkeit/y",
    "presswerk/arm/motorgeschwindigkeit/z",
    "presswerk/presse/pressenstatus",
)

SIMULATED_STATIONS = ("palettenlager", "presswerk")


class SensorSimulator:
    def __init__(
        self,
        publish: Callable[[str, str], None],
        topic_prefix: str,
        sensors: Sequence[str] = SIMULATED_SENSORS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._publish = publish
        self.topics = [f"{topic_prefix.rstrip('/')}/{sensor}" for sensor in sensors]
        self._rng = rng or random.Random()

    def publish_round(self) -> List[str]:
        """Publish one value per sensor and return the payloads sent."""
        payloads = []
        for topic in self.topics:
            payload = str(self._rng.randrange(0, 1000))
            self._publish(topic, payload)
            payloads.append(payload)
        return payloads

    def run(
        self,
        interval: float = 5.0,
        rounds: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Publish every ``interval`` seconds; forever unless ``rounds`` is set."""
        completed = 0
        while rounds is None or completed < rounds:
            self.publish_round()
            completed += 1
            logger.debug("Published simulated round %d", completed)
            if rounds is None or completed < rounds:
                sleep(interval)
        return completed
