"""Ingestion pipeline: topic parsing, sensor resolution and reading appends."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import BoundedSemaphore, Lock
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from app.schemas import Reading
from datastore import keys
from datastore.ordered_store import OrderedStore, StoreRejectedError, build_default_store
from models.records import IngestResult, IngestStatus
from services.errors import TopicParseError, UnknownStationError
from services.resolver import IdentityResolver
from services.retry import RetriesExhaustedError, RetryPolicy
from services.topic_parser import parse_topic
from settings import get_settings

logger = logging.getLogger(__name__)

_ONE_MICROSECOND = timedelta(microseconds=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionPipeline:
    """Turns inbound ``(topic, payload)`` messages into stored readings.

    Per-message failures never propagate: ``ingest`` always returns an
    ``IngestResult`` describing what happened to the message.
    """

    def __init__(
        self,
        store: OrderedStore,
        resolver: IdentityResolver,
        topic_prefix: str,
        retry_policy: Optional[RetryPolicy] = None,
        workers: int = 4,
        max_in_flight: int = 64,
        unhealthy_after: int = 3,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.topic_prefix = topic_prefix
        self.retry_policy = retry_policy or RetryPolicy()
        self.unhealthy_after = unhealthy_after
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        self._clock = clock
        self._sleep = sleep
        self._slots = BoundedSemaphore(max_in_flight)
        self._stats_lock = Lock()
        self._counts: Dict[IngestStatus, int] = {status: 0 for status in IngestStatus}
        self._consecutive_store_failures = 0

    def submit(
        self,
        topic: str,
        payload: str,
        transport_time: Optional[datetime] = None,
    ) -> Future[IngestResult]:
        """Queue a message on the worker pool.

        Blocks while ``max_in_flight`` messages are already queued or running,
        which pushes back on the transport's receive loop.
        """
        self._slots.acquire()
        try:
            future = self.executor.submit(self.ingest, topic, payload, transport_time)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(lambda _f: self._slots.release())
        return future

    def ingest(
        self,
        topic: str,
        payload: str,
        transport_time: Optional[datetime] = None,
    ) -> IngestResult:
        try:
            parts = parse_topic(topic, self.topic_prefix)
        except TopicParseError as exc:
            return self._drop(IngestStatus.invalid_topic, topic, exc.reason)

        context = {"station": parts.station_name, "sensor": parts.sensor_name}

        try:
            sensor_id = self.retry_policy.call(
                lambda: self.resolver.resolve(parts.station_name, parts.sensor_name),
                sleep=self._sleep,
                topic=topic,
                **context,
            )
        except UnknownStationError as exc:
            return self._drop(IngestStatus.unknown_station, topic, str(exc), **context)
        except RetriesExhaustedError as exc:
            return self._store_unavailable(topic, exc, **context)
        except StoreRejectedError as exc:
            return self._drop(IngestStatus.store_rejected, topic, str(exc), **context)

        context["sensor_id"] = sensor_id
        try:
            reading = self.retry_policy.call(
                lambda: self._append_reading(sensor_id, payload, transport_time),
                sleep=self._sleep,
                topic=topic,
                **context,
            )
        except RetriesExhaustedError as exc:
            return self._store_unavailable(topic, exc, **context)
        except StoreRejectedError as exc:
            return self._drop(IngestStatus.store_rejected, topic, str(exc), **context)

        with self._stats_lock:
            self._counts[IngestStatus.stored] += 1
            self._consecutive_store_failures = 0
        logger.debug("Stored reading", extra={"topic": topic, **context})
        return IngestResult(
            status=IngestStatus.stored,
            topic=topic,
            sensor_id=sensor_id,
            reading=reading,
        )

    @property
    def healthy(self) -> bool:
        with self._stats_lock:
            return self._consecutive_store_failures < self.unhealthy_after

    @property
    def consecutive_store_failures(self) -> int:
        with self._stats_lock:
            return self._consecutive_store_failures

    @property
    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            counts = {status.value: count for status, count in self._counts.items()}
            counts["consecutive_store_failures"] = self._consecutive_store_failures
        return counts

    def shutdown(self, wait: bool = True) -> None:
        """Finish running messages and abandon queued ones."""
        self.executor.shutdown(wait=wait, cancel_futures=True)

    def _append_reading(
        self,
        sensor_id: str,
        payload: str,
        transport_time: Optional[datetime],
    ) -> Reading:
        # Stamped when the write happens, not when the message was received.
        recorded_at = max(keys.as_utc(self._clock()), keys.EPOCH)
        while True:
            try:
                reading = Reading(
                    sensor_id=sensor_id,
                    recorded_at=recorded_at,
                    value=payload,
                    ingested_at=recorded_at,
                    transport_time=transport_time,
                )
            except ValidationError as exc:
                raise StoreRejectedError(f"Reading is not storable: {exc}") from exc
            stored, created = self.store.create_if_absent(
                keys.reading_key(sensor_id, recorded_at), reading
            )
            if created:
                return stored
            # Same sensor, same microsecond: take the next free slot.
            recorded_at += _ONE_MICROSECOND

    def _store_unavailable(
        self, topic: str, exc: RetriesExhaustedError, **context: object
    ) -> IngestResult:
        with self._stats_lock:
            self._consecutive_store_failures += 1
            failures = self._consecutive_store_failures
        if failures == self.unhealthy_after:
            logger.error(
                "Store unavailable for %d consecutive messages; reporting unhealthy",
                failures,
                extra={"topic": topic, **context},
            )
        return self._drop(IngestStatus.store_rejected, topic, str(exc.last_error), **context)

    def _drop(
        self, status: IngestStatus, topic: str, reason: str, **context: object
    ) -> IngestResult:
        with self._stats_lock:
            self._counts[status] += 1
        logger.warning(
            "Dropping message",
            extra={"topic": topic, **context, "status": status.value, "reason": reason},
        )
        return IngestResult(
            status=status,
            topic=topic,
            reason=reason,
            sensor_id=context.get("sensor_id"),  # type: ignore[arg-type]
        )


@lru_cache
def build_default_pipeline() -> IngestionPipeline:
    """Factory that wires the pipeline with the default store and settings."""
    settings = get_settings()
    store = build_default_store()
    return IngestionPipeline(
        store=store,
        resolver=IdentityResolver(store),
        topic_prefix=settings.topic_prefix,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        workers=settings.ingest_workers,
        max_in_flight=settings.ingest_max_in_flight,
    )
