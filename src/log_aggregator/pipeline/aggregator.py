"""
Log aggregator wiring.

Builds the queue, notifier, resolver, dispatcher, worker pool and delivery
stream from Settings and runs them together.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..config.settings import Settings
from ..delivery import DeliverySink, DeliveryStream
from ..dispatch import (
    FormatDispatcher,
    MessageOutcome,
    ResourceTypeMap,
    ResourceTypeResolver,
    WorkerPool,
)
from ..exceptions import ConfigurationError
from ..ingestion import (
    IngestionNotifier,
    IngestionQueue,
    MemoryQueueBackend,
    SqliteQueueBackend,
)
from ..monitoring.retry_handler import CircuitBreaker, RetryConfig
from ..storage import ObjectStore, get_store
from ..utils.time_utils import utc_now

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging for scripts."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass
class RunResult:
    """Result of a synchronous aggregation run."""

    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    outcomes: list[MessageOutcome] = field(default_factory=list)
    batches_flushed: int = 0

    @property
    def acked(self) -> int:
        return sum(1 for o in self.outcomes if o.acked)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.acked)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "messages": len(self.outcomes),
            "acked": self.acked,
            "failed": self.failed,
            "records": sum(o.records for o in self.outcomes),
            "batches_flushed": self.batches_flushed,
        }


class LogAggregator:
    """
    Complete aggregation pipeline.

    Stages:
    1. Notifier: creation events -> queue messages
    2. Dispatcher: queue messages -> parsed records (W workers x B messages)
    3. Delivery: parsed records -> gzip batches per (resource_type, day)

    Example:
        aggregator = LogAggregator(get_settings())
        aggregator.start()
        aggregator.notifier.handle_event(event)
        ...
        aggregator.close()
    """

    def __init__(
        self,
        settings: Settings,
        landing_store: Optional[ObjectStore] = None,
        sink_store: Optional[ObjectStore] = None,
        queue: Optional[IngestionQueue] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            settings: Validated runtime settings
            landing_store: Store holding raw objects (default: local landing_root)
            sink_store: Store receiving batches (default: local sink_root)
            queue: Preconfigured ingestion queue (default: built from settings)

        Raises:
            ConfigurationError: If settings are invalid
        """
        errors = settings.validate()
        if errors:
            raise ConfigurationError(f"Invalid settings: {'; '.join(errors)}")

        self.settings = settings
        self.landing_store = landing_store or get_store(
            "local", root=settings.landing_root
        )
        self.sink_store = sink_store or get_store("local", root=settings.sink_root)
        self.queue = queue or self._build_queue(settings)

        resource_map = ResourceTypeMap.from_pairs(settings.resource_pairs())
        self.resolver = ResourceTypeResolver(resource_map)

        delivery = settings.delivery
        self.sink = DeliverySink(
            self.sink_store,
            partition_template=delivery.partition_template,
            error_template=delivery.error_template,
            retry_config=RetryConfig(
                max_retries=delivery.max_retries,
                base_delay_seconds=delivery.base_delay_seconds,
                max_delay_seconds=delivery.max_delay_seconds,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=delivery.circuit_failure_threshold,
                recovery_timeout_seconds=delivery.circuit_recovery_seconds,
                name="sink",
            ),
        )
        self.stream = DeliveryStream(
            self.sink,
            size_threshold=delivery.size_threshold_bytes,
            time_threshold=delivery.time_threshold_seconds,
        )

        dispatch = settings.dispatcher
        self.dispatcher = FormatDispatcher(
            self.landing_store,
            self.queue,
            self.resolver,
            self.stream,
            max_line_failure_ratio=dispatch.max_line_failure_ratio,
        )
        self.pool = WorkerPool(
            self.queue,
            self.dispatcher,
            workers=dispatch.workers,
            batch_size=dispatch.batch_size,
            poll_interval=dispatch.poll_interval_seconds,
        )
        self.notifier = IngestionNotifier(self.queue)
        self._closed = False

        logger.info(
            f"LogAggregator initialized: {len(resource_map)} resources, "
            f"{dispatch.workers} workers x {dispatch.batch_size} messages, "
            f"{self.queue.backend_type} queue"
        )

    @staticmethod
    def _build_queue(settings: Settings) -> IngestionQueue:
        queue_settings = settings.queue
        if queue_settings.backend == "sqlite":
            backend = SqliteQueueBackend(queue_settings.sqlite_path)
        else:
            backend = MemoryQueueBackend()
        return IngestionQueue(
            backend=backend,
            visibility_timeout=queue_settings.visibility_timeout_seconds,
            retention_period=queue_settings.retention_period_seconds,
            max_receives=queue_settings.max_receives,
        )

    def start(self) -> None:
        """Start the delivery flusher and the worker pool."""
        self.stream.start()
        self.pool.start()

    def stop(self, drain: bool = True) -> None:
        """Stop workers, then flush every open batch."""
        self.pool.stop(drain=drain)
        self.stream.close()

    def run_until_empty(self) -> RunResult:
        """
        Process every visible message on the calling thread and flush.

        Used by one-shot CLI runs and tests.
        """
        result = RunResult()
        result.outcomes = self.pool.run_until_empty()
        result.batches_flushed = self.stream.flush_all()
        result.completed_at = utc_now()
        logger.info(f"Run complete: {json.dumps(result.to_dict())}")
        return result

    def status(self) -> dict:
        """Return queue depth, stream and dispatcher counters, and the sink circuit."""
        return {
            "queue": self.queue.depth(),
            "dispatcher": self.dispatcher.stats.to_dict(),
            "delivery": self.stream.stats.to_dict(),
            "pending": self.stream.pending(),
            "sink_circuit": self.sink.circuit_breaker.get_state(),
        }

    def close(self) -> None:
        """Stop processing and release every resource."""
        if self._closed:
            return
        self._closed = True
        try:
            self.stop(drain=True)
        finally:
            self.queue.close()
            self.landing_store.close()
            self.sink_store.close()

    def __enter__(self) -> "LogAggregator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
