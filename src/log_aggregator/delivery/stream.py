"""
Buffered, partitioned delivery stream.

Records are appended to an open batch per partition. A batch is flushed
when its size reaches size_threshold or its age reaches time_threshold,
whichever comes first. Each partition has its own lock, so submitters to
different partitions never wait on each other while a slow flush blocks
submitters to the same partition.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from ..config.constants import (
    DEFAULT_SIZE_THRESHOLD_BYTES,
    DEFAULT_TIME_THRESHOLD_SECONDS,
)
from ..exceptions import DeliveryFailure
from ..parsers.base import ParsedRecord
from .partition import PartitionKey, new_batch_id
from .sink import DeliverySink, WriteResult

logger = logging.getLogger(__name__)


@dataclass
class DeliveryBatch:
    """Open batch of JSON lines for one partition."""

    key: PartitionKey
    created_at: float
    batch_id: str = field(default_factory=new_batch_id)
    lines: list[str] = field(default_factory=list)
    size_bytes: int = 0

    def add(self, line: str) -> None:
        self.lines.append(line)
        # NDJSON newline included
        self.size_bytes += len(line.encode("utf-8")) + 1

    def age(self, now: float) -> float:
        return now - self.created_at

    def __len__(self) -> int:
        return len(self.lines)


@dataclass
class DeliveryStats:
    """Counters of stream activity."""

    records_accepted: int = 0
    error_records_accepted: int = 0
    batches_flushed: int = 0
    error_batches: int = 0
    bytes_written: int = 0
    flush_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "records_accepted": self.records_accepted,
            "error_records_accepted": self.error_records_accepted,
            "batches_flushed": self.batches_flushed,
            "error_batches": self.error_batches,
            "bytes_written": self.bytes_written,
            "flush_failures": self.flush_failures,
        }


class _PartitionSlot:
    def __init__(self, key: PartitionKey):
        self.key = key
        self.lock = threading.Lock()
        self.batch: Optional[DeliveryBatch] = None


class DeliveryStream:
    """
    Buffers records per partition and flushes them to a DeliverySink.

    submit() returns once the record is accepted. Acceptance means the
    record is either written or held in an open batch that the stream will
    flush; a flush failure that could not be redirected to the error
    prefix is raised to the submitter and the batch stays buffered.

    Example:
        stream = DeliveryStream(sink, size_threshold=1 << 20, time_threshold=60)
        stream.start()
        stream.submit(record)
        ...
        stream.close()
    """

    def __init__(
        self,
        sink: DeliverySink,
        size_threshold: int = DEFAULT_SIZE_THRESHOLD_BYTES,
        time_threshold: float = DEFAULT_TIME_THRESHOLD_SECONDS,
        flush_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if size_threshold <= 0:
            raise ValueError("size_threshold must be positive")
        if time_threshold <= 0:
            raise ValueError("time_threshold must be positive")

        self._sink = sink
        self.size_threshold = size_threshold
        self.time_threshold = time_threshold
        self.flush_interval = (
            flush_interval
            if flush_interval is not None
            else min(1.0, time_threshold / 4)
        )
        self._clock = clock

        self._slots: dict[PartitionKey, _PartitionSlot] = {}
        self._slots_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.stats = DeliveryStats()

        self._stop = threading.Event()
        self._flusher: Optional[threading.Thread] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(self, record: ParsedRecord) -> None:
        """
        Accept one parsed record.

        Raises:
            DeliveryFailure: If a triggered flush failed entirely
            RuntimeError: If the stream is closed
        """
        key = PartitionKey.for_record(record.resource_type, record.event_time)
        self._append(key, record.to_json())
        with self._stats_lock:
            self.stats.records_accepted += 1

    def submit_error(
        self, entry: dict[str, Any], error_kind: str, event_time: datetime
    ) -> None:
        """
        Accept one error entry into the partition for its error kind.

        The entry is annotated with error_kind if it does not carry one.

        Raises:
            DeliveryFailure: If a triggered flush failed entirely
            RuntimeError: If the stream is closed
        """
        entry = {"error_kind": error_kind, **entry}
        key = PartitionKey.for_error(
            error_kind, event_time, entry.get("resource_type")
        )
        self._append(
            key, json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)
        )
        with self._stats_lock:
            self.stats.error_records_accepted += 1

    def _append(self, key: PartitionKey, line: str) -> None:
        if self._closed:
            raise RuntimeError("DeliveryStream is closed")

        slot = self._slot(key)
        with slot.lock:
            now = self._clock()
            if slot.batch is None:
                slot.batch = DeliveryBatch(key=key, created_at=now)
            slot.batch.add(line)
            if self._should_flush(slot.batch, now):
                self._flush_slot(slot)

    def _slot(self, key: PartitionKey) -> _PartitionSlot:
        with self._slots_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _PartitionSlot(key)
                self._slots[key] = slot
            return slot

    def _should_flush(self, batch: DeliveryBatch, now: float) -> bool:
        return (
            batch.size_bytes >= self.size_threshold
            or batch.age(now) >= self.time_threshold
        )

    # -------------------------------------------------------------------------
    # Flushing
    # -------------------------------------------------------------------------

    def _flush_slot(self, slot: _PartitionSlot) -> Optional[WriteResult]:
        """Flush the slot's open batch. Caller holds slot.lock."""
        batch = slot.batch
        if batch is None or not batch.lines:
            return None

        try:
            result = self._sink.write(batch.key, batch.lines, batch.batch_id)
        except DeliveryFailure:
            # Batch stays buffered under a new id
            batch.batch_id = new_batch_id()
            with self._stats_lock:
                self.stats.flush_failures += 1
            raise

        slot.batch = None
        with self._stats_lock:
            self.stats.batches_flushed += 1
            self.stats.bytes_written += result.bytes_written
            if batch.key.is_error or result.fell_back:
                self.stats.error_batches += 1

        logger.info(
            json.dumps(
                {
                    "partition": batch.key.name,
                    "path": result.path,
                    "records": result.record_count,
                    "bytes": result.bytes_written,
                    "fell_back": result.fell_back,
                }
            )
        )
        return result

    def flush_expired(self) -> int:
        """
        Flush every batch whose age reached time_threshold.

        Failures are logged and the batch stays buffered for the next pass.

        Returns:
            Number of batches flushed
        """
        flushed = 0
        for slot in self._snapshot_slots():
            with slot.lock:
                batch = slot.batch
                if batch is None or batch.age(self._clock()) < self.time_threshold:
                    continue
                try:
                    if self._flush_slot(slot) is not None:
                        flushed += 1
                except DeliveryFailure as e:
                    logger.error(f"Timed flush of {slot.key.name} failed: {e}")
        return flushed

    def flush_all(self) -> int:
        """
        Flush every open batch regardless of thresholds.

        Every partition is attempted; the first failure is raised afterwards.

        Returns:
            Number of batches flushed

        Raises:
            DeliveryFailure: If any partition could not be flushed
        """
        flushed = 0
        first_error: Optional[DeliveryFailure] = None
        for slot in self._snapshot_slots():
            with slot.lock:
                try:
                    if self._flush_slot(slot) is not None:
                        flushed += 1
                except DeliveryFailure as e:
                    logger.error(f"Flush of {slot.key.name} failed: {e}")
                    if first_error is None:
                        first_error = e
        if first_error is not None:
            raise first_error
        return flushed

    def _snapshot_slots(self) -> list[_PartitionSlot]:
        with self._slots_lock:
            return list(self._slots.values())

    def pending(self) -> dict[str, int]:
        """Return buffered record counts per partition name."""
        result = {}
        for slot in self._snapshot_slots():
            with slot.lock:
                if slot.batch is not None and slot.batch.lines:
                    result[slot.key.name] = len(slot.batch)
        return result

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background thread enforcing time_threshold."""
        if self._flusher is not None:
            return
        self._stop.clear()
        self._flusher = threading.Thread(
            target=self._run_flusher, name="delivery-flusher", daemon=True
        )
        self._flusher.start()
        logger.debug(f"Flusher started (interval {self.flush_interval:.2f}s)")

    def _run_flusher(self) -> None:
        while not self._stop.wait(self.flush_interval):
            self.flush_expired()

    def close(self) -> None:
        """
        Stop the flusher and flush every open batch.

        Raises:
            DeliveryFailure: If an open batch could not be written
        """
        if self._closed:
            return
        self._stop.set()
        if self._flusher is not None:
            self._flusher.join()
            self._flusher = None
        self._closed = True
        self.flush_all()
        logger.info(f"Delivery stream closed: {json.dumps(self.stats.to_dict())}")

    def __enter__(self) -> "DeliveryStream":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
