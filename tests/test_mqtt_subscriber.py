from __future__ import annotations

import random
from concurrent.futures import Future
from types import SimpleNamespace
from typing import List, Tuple

import pytest

from models.records import IngestResult, IngestStatus
from transport.mqtt_subscriber import MQTTSubscriber
from transport.simulator import SIMULATED_SENSORS, SensorSimulator

PREFIX = "/i40/fertigungsanlage"


class FakeClient:
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.subscriptions: List[Tuple[str, int]] = []
        self.calls: List[str] = []

    def reconnect_delay_set(self, min_delay: int, max_delay: int) -> None:
        self.calls.append("reconnect_delay_set")

    def connect_async(self, host: str, port: int, keepalive: int) -> None:
        self.calls.append(f"connect_async:{host}:{port}")

    def loop_start(self) -> None:
        self.calls.append("loop_start")

    def loop_stop(self) -> None:
        self.calls.append("loop_stop")

    def disconnect(self) -> None:
        self.calls.append("disconnect")

    def subscribe(self, topic: str, qos: int) -> None:
        self.subscriptions.append((topic, qos))


class RecordingPipeline:
    def __init__(self) -> None:
        self.submitted: List[Tuple[str, str]] = []
        self.shut_down = False

    def submit(self, topic, payload, transport_time=None):
        self.submitted.append((topic, payload))
        future: Future = Future()
        future.set_result(IngestResult(status=IngestStatus.stored, topic=topic))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True


@pytest.fixture()
def pipeline() -> RecordingPipeline:
    return RecordingPipeline()


@pytest.fixture()
def subscriber(pipeline: RecordingPipeline) -> MQTTSubscriber:
    return MQTTSubscriber(
        pipeline=pipeline,  # type: ignore[arg-type]
        host="broker",
        port=1883,
        topic_prefix=PREFIX + "/",
        client_id="test",
        client_factory=FakeClient,
    )


def test_start_connects_in_background(subscriber: MQTTSubscriber) -> None:
    subscriber.start()
    client = subscriber._client

    assert client.calls == ["reconnect_delay_set", "connect_async:broker:1883", "loop_start"]
    assert client.on_message == subscriber._on_message


def test_subscribes_to_prefix_wildcard_on_connect(subscriber: MQTTSubscriber) -> None:
    subscriber.start()
    client = subscriber._client

    subscriber._on_connect(client, None, {}, 0)

    assert client.subscriptions == [(f"{PREFIX}/#", 1)]
    assert subscriber.connected is True


def test_refused_connection_does_not_subscribe(subscriber: MQTTSubscriber) -> None:
    subscriber.start()
    client = subscriber._client

    subscriber._on_connect(client, None, {}, 5)

    assert client.subscriptions == []
    assert subscriber.connected is False


def test_messages_are_decoded_and_submitted(subscriber: MQTTSubscriber, pipeline: RecordingPipeline) -> None:
    message = SimpleNamespace(topic=f"{PREFIX}/presswerk/arm", payload=b"42")

    subscriber._on_message(None, None, message)

    assert pipeline.submitted == [(f"{PREFIX}/presswerk/arm", "42")]
    assert subscriber.messages_received == 1


def test_undecodable_payload_is_dropped(subscriber: MQTTSubscriber, pipeline: RecordingPipeline) -> None:
    assert subscriber.handle_message(f"{PREFIX}/presswerk/arm", b"\xff\xfe") is None

    assert pipeline.submitted == []
    assert subscriber.messages_undecodable == 1


def test_stop_disconnects_and_drains_pipeline(subscriber: MQTTSubscriber, pipeline: RecordingPipeline) -> None:
    subscriber.start()
    client = subscriber._client
    subscriber._on_connect(client, None, {}, 0)

    subscriber.stop()

    assert client.calls[-2:] == ["disconnect", "loop_stop"]
    assert subscriber.connected is False
    assert pipeline.shut_down is True


def test_simulator_publishes_one_value_per_sensor() -> None:
    published: List[Tuple[str, str]] = []
    simulator = SensorSimulator(
        lambda topic, payload: published.append((topic, payload)),
        PREFIX,
        rng=random.Random(7),
    )

    payloads = simulator.publish_round()

    assert len(published) == len(SIMULATED_SENSORS)
    assert published[0][0] == f"{PREFIX}/palettenlager/dosenfuellstand"
    assert [payload for _, payload in published] == payloads
    assert all(0 <= int(payload) < 1000 for payload in payloads)


def test_simulator_sleeps_only_between_rounds() -> None:
    sleeps: List[float] = []
    simulator = SensorSimulator(lambda topic, payload: None, PREFIX, sensors=["a/b"])

    completed = simulator.run(interval=2.5, rounds=3, sleep=sleeps.append)

    assert completed == 3
    assert sleeps == [2.5, 2.5]
