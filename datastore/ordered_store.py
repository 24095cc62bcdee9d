from __future__ import annotations

import fcntl
import json
import logging
from bisect import bisect_left, insort
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Annotated, BinaryIO, Dict, List, Mapping, Optional, Sequence, TextIO, Tuple

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.schemas import StoredRecord
from datastore.keys import prefix_upper_bound
from settings import get_settings

logger = logging.getLogger(__name__)

_RECORD_ADAPTER: TypeAdapter[StoredRecord] = TypeAdapter(
    Annotated[StoredRecord, Field(discriminator="kind")]
)


class StoreError(Exception):
    """Base class for ordered store failures."""


class StoreUnavailableError(StoreError):
    """Transient failure; the same write may succeed if retried."""


class StoreRejectedError(StoreError):
    """Persistent failure; retrying the same write cannot succeed."""


@dataclass
class ScanPage:
    """Records from a bounded range scan, in ascending key order.

    ``next_key`` is the first key that was not returned because of the
    limit; pass it back as ``lower`` to resume. It is ``None`` once the range
    is exhausted.
    """

    records: List[StoredRecord] = field(default_factory=list)
    next_key: Optional[str] = None


class OrderedStore:
    """In-process ordered key-value store with an append-only log.

    Keys are kept sorted so prefix and range scans are a bisect followed by a
    walk. Every mutation is appended to the log as a single JSON line before
    it becomes visible in memory.

    A persisted store has a single writer: opening it takes an exclusive lock
    on a sibling ``.lock`` file, held until ``close``.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._records: Dict[str, StoredRecord] = {}
        self._keys: List[str] = []
        self._lock = Lock()
        self._lock_handle: Optional[TextIO] = None
        self._torn_tail = False
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._acquire_file_lock(persistence_path)
            self._load_from_disk()

    def close(self) -> None:
        """Release the store file for other processes."""
        handle, self._lock_handle = self._lock_handle, None
        if handle is not None:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    def put(self, key: str, record: StoredRecord) -> None:
        with self._lock:
            self._write([(key, record)])

    def get(self, key: str) -> Optional[StoredRecord]:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return record.model_copy(deep=True)

    def create_if_absent(
        self,
        key: str,
        record: StoredRecord,
        linked: Optional[Mapping[str, StoredRecord]] = None,
    ) -> Tuple[StoredRecord, bool]:
        """Insert ``record`` at ``key`` unless the key already holds a record.

        Returns the record now stored at ``key`` and whether this call wrote
        it. When it does, ``linked`` entries are written in the same log line.
        """
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                return existing.model_copy(deep=True), False
            entries = [(key, record)]
            if linked:
                entries.extend(linked.items())
            self._write(entries)
            return self._records[key].model_copy(deep=True), True

    def scan_prefix(self, prefix: str) -> List[StoredRecord]:
        """Return every record whose key starts with ``prefix``."""
        upper = prefix_upper_bound(prefix)
        with self._lock:
            start = bisect_left(self._keys, prefix)
            end = bisect_left(self._keys, upper)
            return [
                self._records[key].model_copy(deep=True) for key in self._keys[start:end]
            ]

    def scan_range(self, lower: str, upper: str, limit: Optional[int] = None) -> ScanPage:
        """Scan the half-open key range ``[lower, upper)``."""
        if limit is not None and limit <= 0:
            raise ValueError("limit must be positive.")
        if upper <= lower:
            return ScanPage()

        with self._lock:
            start = bisect_left(self._keys, lower)
            end = bisect_left(self._keys, upper)
            stop = end if limit is None else min(end, start + limit)
            records = [
                self._records[key].model_copy(deep=True) for key in self._keys[start:stop]
            ]
            next_key = self._keys[stop] if stop < end else None
        return ScanPage(records=records, next_key=next_key)

    def last_in_prefix(self, prefix: str) -> Optional[StoredRecord]:
        """Return the record with the greatest key under ``prefix``."""
        upper = prefix_upper_bound(prefix)
        with self._lock:
            end = bisect_left(self._keys, upper)
            if end == 0:
                return None
            key = self._keys[end - 1]
            if not key.startswith(prefix):
                return None
            return self._records[key].model_copy(deep=True)

    def _write(self, entries: Sequence[Tuple[str, StoredRecord]]) -> None:
        prepared = [self._prepare(key, record) for key, record in entries]
        self._append_to_log(prepared)
        for key, record in prepared:
            if key not in self._records:
                insort(self._keys, key)
            self._records[key] = record

    @staticmethod
    def _prepare(key: str, record: StoredRecord) -> Tuple[str, StoredRecord]:
        if not isinstance(key, str) or not key:
            raise StoreRejectedError(f"Invalid store key {key!r}.")
        if not isinstance(record, BaseModel):
            raise StoreRejectedError(
                f"Cannot store {type(record).__name__!r} at {key!r}."
            )
        try:
            validated = _RECORD_ADAPTER.validate_python(record.model_dump())
        except ValidationError as exc:
            raise StoreRejectedError(f"Record for {key!r} failed validation: {exc}") from exc
        return key, validated

    def _append_to_log(self, entries: Sequence[Tuple[str, StoredRecord]]) -> None:
        if not self.persistence_path:
            return
        line = json.dumps(
            {
                "entries": [
                    {"key": key, "record": record.model_dump(mode="json")}
                    for key, record in entries
                ]
            },
            sort_keys=True,
        )
        data = (line + "\n").encode("utf-8")
        if self._torn_tail:
            # Terminate the fragment left by an earlier failed append.
            data = b"\n" + data
        try:
            with self.persistence_path.open("ab") as handle:
                start = handle.tell()
                try:
                    handle.write(data)
                    handle.flush()
                except OSError:
                    self._rollback_append(handle, start)
                    raise
        except OSError as exc:
            raise StoreUnavailableError(
                f"Could not append to {str(self.persistence_path)!r}: {exc}"
            ) from exc
        self._torn_tail = False

    def _rollback_append(self, handle: BinaryIO, start: int) -> None:
        try:
            handle.truncate(start)
        except OSError:
            logger.error(
                "Could not roll back a partial append to store %r",
                self.name,
                extra={"key": str(self.persistence_path)},
            )
            self._torn_tail = True

    def _acquire_file_lock(self, path: Path) -> None:
        lock_path = path.with_name(path.name + ".lock")
        handle = lock_path.open("a")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            handle.close()
            raise StoreUnavailableError(
                f"Store file {str(path)!r} is already open in another process."
            ) from exc
        self._lock_handle = handle

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        content = self.persistence_path.read_bytes()
        complete = content.rfind(b"\n") + 1
        if complete < len(content):
            # A crash mid-append leaves an unterminated last line; drop it so
            # the next append starts on a fresh line.
            logger.warning(
                "Discarding incomplete trailing record in store %r",
                self.name,
                extra={"key": str(self.persistence_path)},
            )
            with self.persistence_path.open("r+b") as handle:
                handle.truncate(complete)

        skipped = 0
        for raw_line in content[:complete].splitlines():
            if not raw_line.strip():
                continue
            try:
                payload = json.loads(raw_line.decode("utf-8"))
                entries = [
                    (entry["key"], _RECORD_ADAPTER.validate_python(entry["record"]))
                    for entry in payload["entries"]
                ]
            except (
                UnicodeDecodeError,
                json.JSONDecodeError,
                KeyError,
                TypeError,
                ValidationError,
            ):
                skipped += 1
                continue
            for key, record in entries:
                self._records[key] = record

        self._keys = sorted(self._records)
        if skipped:
            logger.warning(
                "Skipped %d unreadable log lines while loading store %r",
                skipped,
                self.name,
            )


@lru_cache
def build_default_store(path: Optional[str] = None) -> OrderedStore:
    settings = get_settings()
    store_path = settings.store_persistence_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return OrderedStore(name="telemetry", persistence_path=persistence)
