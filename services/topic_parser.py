"""Decode transport topics into station and sensor names."""

from __future__ import annotations

from models.records import TopicParts
from services.errors import MalformedTopicError, UnknownPrefixError

TOPIC_SEPARATOR = "/"
SENSOR_SEPARATOR = "_"


def parse_topic(topic: str, prefix: str) -> TopicParts:
    """Split ``<prefix>/<station>/<sensor-path...>`` into its names.

    Multi-segment sensor paths are flattened, so ``kugelfuellstand/rot``
    becomes ``kugelfuellstand_rot``.
    """
    if not isinstance(topic, str):
        raise MalformedTopicError(repr(topic), "topic is not a string")

    head = prefix.rstrip(TOPIC_SEPARATOR) + TOPIC_SEPARATOR
    if not topic.startswith(head):
        raise UnknownPrefixError(topic, f"topic does not start with {head!r}")

    station_name, _, rest = topic[len(head):].partition(TOPIC_SEPARATOR)
    if not station_name:
        raise MalformedTopicError(topic, "missing station segment")
    if not rest:
        raise MalformedTopicError(topic, "missing sensor path")

    return TopicParts(
        station_name=station_name,
        sensor_name=rest.replace(TOPIC_SEPARATOR, SENSOR_SEPARATOR),
    )
