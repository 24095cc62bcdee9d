"""Unit tests for the ordered store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from app.schemas import Reading, Sensor, Station
from datastore import keys
from datastore.ordered_store import OrderedStore, StoreRejectedError, StoreUnavailableError

SENSOR_ID = "a" * 32
BASE = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _reading(offset_s: int, value: str = "1", sensor_id: str = SENSOR_ID) -> Reading:
    stamp = BASE + timedelta(seconds=offset_s)
    return Reading(sensor_id=sensor_id, recorded_at=stamp, value=value, ingested_at=stamp)


def _put_readings(store: OrderedStore, *offsets: int, sensor_id: str = SENSOR_ID) -> None:
    for offset in offsets:
        reading = _reading(offset, value=str(offset), sensor_id=sensor_id)
        store.put(keys.reading_key(sensor_id, reading.recorded_at), reading)


def test_put_and_get_returns_deep_copy() -> None:
    store = OrderedStore(name="test")
    station = Station(id="s1", name="palettenlager")

    store.put("station/s1", station)
    fetched = store.get("station/s1")

    assert fetched == station
    assert fetched is not station

    fetched.name = "changed"  # type: ignore[union-attr]
    assert store.get("station/s1").name == "palettenlager"  # type: ignore[union-attr]


def test_get_returns_none_when_missing() -> None:
    assert OrderedStore(name="test").get("station/missing") is None


def test_scan_prefix_returns_only_matching_keys_in_order() -> None:
    store = OrderedStore(name="test")
    _put_readings(store, 30, 10, 20)
    _put_readings(store, 5, sensor_id="b" * 32)
    store.put("station/s1", Station(id="s1", name="x"))

    readings = store.scan_prefix(keys.reading_prefix(SENSOR_ID))

    assert [reading.value for reading in readings] == ["10", "20", "30"]


def test_scan_range_is_half_open() -> None:
    store = OrderedStore(name="test")
    _put_readings(store, 0, 10, 20)

    page = store.scan_range(
        keys.reading_key(SENSOR_ID, BASE),
        keys.reading_key(SENSOR_ID, BASE + timedelta(seconds=20)),
    )

    assert [reading.value for reading in page.records] == ["0", "10"]
    assert page.next_key is None


def test_scan_range_limit_returns_resumable_page() -> None:
    store = OrderedStore(name="test")
    _put_readings(store, 0, 10, 20, 30)
    prefix = keys.reading_prefix(SENSOR_ID)
    upper = keys.prefix_upper_bound(prefix)

    first = store.scan_range(prefix, upper, limit=3)
    assert [reading.value for reading in first.records] == ["0", "10", "20"]
    assert first.next_key == keys.reading_key(SENSOR_ID, BASE + timedelta(seconds=30))

    second = store.scan_range(first.next_key, upper, limit=3)  # type: ignore[arg-type]
    assert [reading.value for reading in second.records] == ["30"]
    assert second.next_key is None


def test_scan_range_with_empty_or_inverted_bounds() -> None:
    store = OrderedStore(name="test")
    _put_readings(store, 0)
    key = keys.reading_key(SENSOR_ID, BASE)

    assert store.scan_range(key, key).records == []
    assert store.scan_range(key + "1", key).records == []


def test_scan_range_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        OrderedStore(name="test").scan_range("a", "b", limit=0)


def test_last_in_prefix_returns_greatest_key() -> None:
    store = OrderedStore(name="test")
    _put_readings(store, 10, 30, 20)
    _put_readings(store, 99, sensor_id="b" * 32)

    latest = store.last_in_prefix(keys.reading_prefix(SENSOR_ID))

    assert latest is not None
    assert latest.value == "30"
    assert store.last_in_prefix(keys.reading_prefix("c" * 32)) is None


def test_create_if_absent_keeps_first_record() -> None:
    store = OrderedStore(name="test")
    first = Sensor(id="1" * 32, station_id="s1", display_name="temp")
    second = Sensor(id="2" * 32, station_id="s1", display_name="temp")

    stored, created = store.create_if_absent("slot", first, linked={"sensor/1": first})
    again, created_again = store.create_if_absent("slot", second, linked={"sensor/2": second})

    assert created is True and stored == first
    assert created_again is False and again == first
    assert store.get("sensor/1") == first
    assert store.get("sensor/2") is None


def test_put_rejects_unstorable_records() -> None:
    store = OrderedStore(name="test")

    with pytest.raises(StoreRejectedError):
        store.put("station/x", {"name": "not a model"})  # type: ignore[arg-type]
    with pytest.raises(StoreRejectedError):
        store.put("", Station(id="s1", name="x"))


def test_log_persists_and_reloads(tmp_path) -> None:
    path = tmp_path / "store.jsonl"
    store = OrderedStore(name="test", persistence_path=path)
    station = Station(id="s1", name="palettenlager")
    sensor = Sensor(id="1" * 32, station_id="s1", display_name="temp")

    store.put("station/s1", station)
    store.create_if_absent("slot", sensor, linked={"sensor/1": sensor})
    _put_readings(store, 20, 10)

    lines = path.read_text().splitlines()
    assert len(lines) == 4
    assert len(json.loads(lines[1])["entries"]) == 2

    store.close()
    reloaded = OrderedStore(name="test", persistence_path=path)
    assert reloaded.get("station/s1") == station
    assert reloaded.get("sensor/1") == sensor
    assert [r.value for r in reloaded.scan_prefix(keys.reading_prefix(SENSOR_ID))] == ["10", "20"]


def test_reload_skips_corrupt_lines(tmp_path, caplog) -> None:
    path = tmp_path / "store.jsonl"
    store = OrderedStore(name="test", persistence_path=path)
    store.put("station/s1", Station(id="s1", name="x"))
    store.close()
    with path.open("a") as handle:
        handle.write('{"entries": [{"key": "station/s2", "rec\n')

    reloaded = OrderedStore(name="test", persistence_path=path)

    assert reloaded.get("station/s1") is not None
    assert reloaded.get("station/s2") is None
    assert any("unreadable" in record.getMessage() for record in caplog.records)


def test_failed_log_write_leaves_nothing_visible(tmp_path) -> None:
    store = OrderedStore(name="test", persistence_path=tmp_path / "store.jsonl")
    store.persistence_path = tmp_path / "missing-dir" / "store.jsonl"

    with pytest.raises(StoreUnavailableError):
        store.put("station/s1", Station(id="s1", name="x"))

    assert store.get("station/s1") is None
    assert store.scan_prefix("station/") == []


def test_incomplete_last_line_does_not_swallow_later_writes(tmp_path, caplog) -> None:
    path = tmp_path / "store.jsonl"
    store = OrderedStore(name="test", persistence_path=path)
    store.put("station/s1", Station(id="s1", name="x"))
    store.close()
    with path.open("a") as handle:
        handle.write('{"entries": [{"key": "station/s9", "rec')

    reopened = OrderedStore(name="test", persistence_path=path)
    reopened.put("station/s2", Station(id="s2", name="y"))
    reopened.close()
    reloaded = OrderedStore(name="test", persistence_path=path)

    assert reloaded.get("station/s1") is not None
    assert reloaded.get("station/s2") is not None
    assert reloaded.get("station/s9") is None
    assert path.read_text().endswith("\n")
    assert any("incomplete trailing record" in r.getMessage() for r in caplog.records)
    reloaded.close()


def test_failed_append_is_rolled_back(tmp_path, monkeypatch) -> None:
    path = tmp_path / "store.jsonl"
    store = OrderedStore(name="test", persistence_path=path)
    store.put("station/s1", Station(id="s1", name="x"))
    real_open = type(path).open

    class HalfWritingFile:
        def __init__(self, handle) -> None:
            self._handle = handle

        def __enter__(self):
            return self

        def __exit__(self, *exc_info) -> None:
            self._handle.close()

        def tell(self) -> int:
            return self._handle.tell()

        def truncate(self, size: int) -> int:
            return self._handle.truncate(size)

        def write(self, data: bytes) -> int:
            self._handle.write(data[: len(data) // 2])
            self._handle.flush()
            raise OSError("disk full")

        def flush(self) -> None:
            self._handle.flush()

    def failing_open(self, mode="r", *args, **kwargs):
        handle = real_open(self, mode, *args, **kwargs)
        return HalfWritingFile(handle) if mode == "ab" else handle

    monkeypatch.setattr(type(path), "open", failing_open)
    with pytest.raises(StoreUnavailableError):
        store.put("station/s2", Station(id="s2", name="y"))
    monkeypatch.undo()

    store.put("station/s3", Station(id="s3", name="z"))
    store.close()
    reloaded = OrderedStore(name="test", persistence_path=path)

    assert reloaded.get("station/s2") is None
    assert reloaded.get("station/s3") is not None
    assert len(path.read_text().splitlines()) == 2
    reloaded.close()


def test_second_writer_on_same_file_is_refused(tmp_path) -> None:
    path = tmp_path / "store.jsonl"
    first = OrderedStore(name="test", persistence_path=path)

    with pytest.raises(StoreUnavailableError, match="already open"):
        OrderedStore(name="test", persistence_path=path)

    first.close()
    second = OrderedStore(name="test", persistence_path=path)
    second.close()
