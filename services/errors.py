"""Exceptions raised by the ingestion and query services."""

from __future__ import annotations


class TopicParseError(ValueError):
    """The topic does not follow ``<prefix>/<station>/<sensor-path>``."""

    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"{reason}: {topic!r}")
        self.topic = topic
        self.reason = reason


class UnknownPrefixError(TopicParseError):
    pass


class MalformedTopicError(TopicParseError):
    pass


class UnknownStationError(LookupError):
    """A reading names a station that has not been provisioned."""

    def __init__(self, station_name: str) -> None:
        super().__init__(f"Station {station_name!r} does not exist.")
        self.station_name = station_name


class InvalidWindowError(ValueError):
    """The window's start lies after its end."""


class StationNotFoundError(KeyError):
    pass


class SensorNotFoundError(KeyError):
    pass
