"""
Delivery sink.

Writes one batch as one gzip NDJSON object. Transient write failures are
retried with bounded backoff; after exhaustion the batch is written under
the error prefix with every line annotated as a DeliveryFailure.

An optional circuit breaker counts batches that could not be written
anywhere. While it is open, batches fail at once without touching the store.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from ..config.constants import (
    DEFAULT_ERROR_TEMPLATE,
    DEFAULT_PARTITION_TEMPLATE,
    ERROR_DELIVERY_FAILURE,
)
from ..exceptions import DeliveryFailure
from ..monitoring.retry_handler import CircuitBreaker, RetryConfig, RetryManager
from ..storage.base import ObjectStore
from ..utils.file_utils import gzip_bytes
from .partition import PartitionKey, validate_template

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of a successful batch write."""

    path: str
    record_count: int
    bytes_written: int
    fell_back: bool = False


def encode_batch(lines: list[str]) -> bytes:
    """Encode JSON lines as a gzip NDJSON payload."""
    text = "".join(f"{line}\n" for line in lines)
    return gzip_bytes(text.encode("utf-8"))


def annotate_failed_lines(
    lines: list[str], error_message: str, resource_type: str
) -> list[str]:
    """Wrap each delivered line in a DeliveryFailure error entry."""
    return [
        json.dumps(
            {
                "error_kind": ERROR_DELIVERY_FAILURE,
                "error_message": error_message,
                "resource_type": resource_type,
                "raw_data": line,
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )
        for line in lines
    ]


class DeliverySink:
    """
    Writes batches to an object store under rendered partition paths.

    Example:
        sink = DeliverySink(LocalObjectStore("/data/sink"))
        result = sink.write(PartitionKey.for_record("alb", now), lines, batch_id)
    """

    def __init__(
        self,
        store: ObjectStore,
        partition_template: str = DEFAULT_PARTITION_TEMPLATE,
        error_template: str = DEFAULT_ERROR_TEMPLATE,
        retry_config: Optional[RetryConfig] = None,
        retry_manager: Optional[RetryManager] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        validate_template(partition_template)
        validate_template(error_template)
        self._store = store
        self._partition_template = partition_template
        self._error_template = error_template
        self._retry = retry_manager or RetryManager(config=retry_config)
        self._breaker = circuit_breaker

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    def path_for(self, key: PartitionKey, batch_id: str) -> str:
        return key.render(batch_id, self._partition_template, self._error_template)

    def write(self, key: PartitionKey, lines: list[str], batch_id: str) -> WriteResult:
        """
        Write a batch atomically.

        Args:
            key: Partition the batch belongs to
            lines: JSON lines in submission order
            batch_id: Unique batch identifier

        Returns:
            WriteResult describing where the batch landed

        Raises:
            DeliveryFailure: If neither the partition nor the error prefix
                accepted the batch, or the circuit is open
        """
        if self._breaker is not None and not self._breaker.allow_request():
            raise DeliveryFailure(
                "Sink circuit open, write not attempted",
                partition=key.name,
                batch_id=batch_id,
            )

        try:
            result = self._write(key, lines, batch_id)
        except DeliveryFailure:
            if self._breaker is not None:
                self._breaker.record_failure()
            raise
        if self._breaker is not None:
            self._breaker.record_success()
        return result

    def _write(self, key: PartitionKey, lines: list[str], batch_id: str) -> WriteResult:
        path = self.path_for(key, batch_id)
        payload = encode_batch(lines)
        result = self._retry.execute_with_retry(self._store.put_object, path, payload)
        if result.success:
            logger.debug(f"Wrote {len(lines)} records to {path}")
            return WriteResult(path, len(lines), len(payload))

        error_message = str(result.last_error)
        logger.error(
            f"Delivery of batch {batch_id} to {path} failed after "
            f"{result.attempts} attempts: {error_message}"
        )

        # Error partitions have no further fallback
        if key.is_error:
            raise DeliveryFailure(
                f"Error batch write failed: {error_message}",
                partition=key.name,
                batch_id=batch_id,
            ) from result.last_error

        return self._write_fallback(key, lines, batch_id, error_message)

    def _write_fallback(
        self, key: PartitionKey, lines: list[str], batch_id: str, error_message: str
    ) -> WriteResult:
        error_key = PartitionKey(
            resource_type=key.resource_type,
            day=key.day,
            error_kind=ERROR_DELIVERY_FAILURE,
        )
        error_path = self.path_for(error_key, batch_id)
        payload = encode_batch(
            annotate_failed_lines(lines, error_message, key.resource_type)
        )
        result = self._retry.execute_with_retry(
            self._store.put_object, error_path, payload
        )
        if not result.success:
            raise DeliveryFailure(
                f"Delivery and error fallback both failed: {result.last_error}",
                partition=key.name,
                batch_id=batch_id,
            ) from result.last_error

        logger.warning(f"Batch {batch_id} of {key.name} written to {error_path}")
        return WriteResult(error_path, len(lines), len(payload), fell_back=True)
