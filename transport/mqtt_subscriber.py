"""MQTT subscription feeding the ingestion pipeline."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from models.records import IngestResult
from services.ingestion import IngestionPipeline, build_default_pipeline
from settings import get_settings

logger = logging.getLogger(__name__)


def build_mqtt_client(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        client_id=client_id,
        protocol=mqtt.MQTTv311,
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
    )


class MQTTSubscriber:
    """Single subscription on ``<prefix>/#`` handing messages to the pipeline.

    paho's network thread only decodes and enqueues; the pipeline's worker
    pool does the rest.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        host: str,
        port: int,
        topic_prefix: str,
        client_id: str,
        qos: int = 1,
        keepalive: int = 60,
        client_factory: Callable[[str], Any] = build_mqtt_client,
    ) -> None:
        self.pipeline = pipeline
        self.host = host
        self.port = port
        self.subscription = f"{topic_prefix.rstrip('/')}/#"
        self.client_id = client_id
        self.qos = qos
        self.keepalive = keepalive
        self._client_factory = client_factory
        self._client: Optional[Any] = None
        self._connected = False
        self.messages_received = 0
        self.messages_undecodable = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        """Connect in the background; paho keeps reconnecting on failure."""
        if self._client is not None:
            return
        client = self._client_factory(self.client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        logger.info("Connecting to MQTT broker %s:%d", self.host, self.port)
        client.connect_async(self.host, self.port, keepalive=self.keepalive)
        client.loop_start()
        self._client = client

    def stop(self, wait: bool = True) -> None:
        """Drop the subscription, then let the pipeline drain."""
        client, self._client = self._client, None
        if client is not None:
            client.disconnect()
            client.loop_stop()
        self._connected = False
        self.pipeline.shutdown(wait=wait)
        logger.info(
            "MQTT subscriber stopped; received=%d undecodable=%d",
            self.messages_received,
            self.messages_undecodable,
        )

    def handle_message(self, topic: str, payload: bytes) -> Optional[Future[IngestResult]]:
        self.messages_received += 1
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            self.messages_undecodable += 1
            logger.warning(
                "Dropping message",
                extra={"topic": topic, "reason": "payload is not valid UTF-8"},
            )
            return None
        return self.pipeline.submit(topic, text, transport_time=datetime.now(timezone.utc))

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code != 0:
            self._connected = False
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self._connected = True
        client.subscribe(self.subscription, qos=self.qos)
        logger.info("Subscribed to %s", self.subscription)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected = False
        logger.warning("Disconnected from MQTT broker: %s", reason_code)

    def _on_message(self, client, userdata, message) -> None:
        self.handle_message(message.topic, message.payload)


def build_default_subscriber(pipeline: Optional[IngestionPipeline] = None) -> MQTTSubscriber:
    settings = get_settings()
    return MQTTSubscriber(
        pipeline=pipeline or build_default_pipeline(),
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        topic_prefix=settings.topic_prefix,
        client_id=settings.mqtt_client_id,
    )
