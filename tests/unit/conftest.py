"""
Pytest configuration and shared fixtures for unit tests.
"""

import pytest

from log_aggregator.delivery import DeliverySink, DeliveryStream
from log_aggregator.dispatch import ResourceTypeMap, ResourceTypeResolver
from log_aggregator.exceptions import TransientIOError
from log_aggregator.ingestion import IngestionQueue, MemoryQueueBackend
from log_aggregator.storage import RawLogObject
from log_aggregator.utils import parse_timestamp


@pytest.fixture
def queue(clock):
    """In-memory queue: 30s visibility, 3 receives before dead-letter."""
    return IngestionQueue(visibility_timeout=30, max_receives=3, clock=clock)


class LockedQueueBackend(MemoryQueueBackend):
    """
    Memory backend whose updates into one state fail a number of times.

    Mimics a SQLite database reporting "database is locked".
    """

    def __init__(self, fail_state, failures: int = 1):
        super().__init__()
        self.fail_state = fail_state
        self.failures_remaining = failures

    def update(self, message) -> None:
        if message.state == self.fail_state and self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise TransientIOError("database is locked", operation="update")
        super().update(message)


@pytest.fixture
def locked_queue_factory(clock):
    """Build a queue whose backend fails updates into a given state."""

    def _factory(fail_state, failures: int = 1, **kwargs):
        kwargs.setdefault("visibility_timeout", 30)
        kwargs.setdefault("max_receives", 3)
        backend = LockedQueueBackend(fail_state, failures)
        return IngestionQueue(backend=backend, clock=clock, **kwargs)

    return _factory


@pytest.fixture
def make_object_ref():
    """Factory for landing object references."""

    def _make(key: str = "my-alb/2024/03/02/log-0001.gz", size: int = 100):
        return RawLogObject(
            source_id="landing",
            object_key=key,
            size=size,
            created_at=parse_timestamp("2024-03-02T10:05:00Z"),
        )

    return _make


@pytest.fixture
def resolver():
    """Resolver for one resource of every format."""
    return ResourceTypeResolver(
        ResourceTypeMap.from_pairs(
            [
                ("my-alb", "alb"),
                ("my-nlb", "nlb"),
                ("my-instance", "clf"),
                ("my-distribution", "cf"),
            ]
        )
    )


@pytest.fixture
def stream_factory(clock, fast_retry):
    """Build a delivery stream over a given sink store."""

    def _factory(store, size_threshold: int = 1 << 20, time_threshold: float = 60.0):
        sink = DeliverySink(store, retry_manager=fast_retry)
        return DeliveryStream(
            sink,
            size_threshold=size_threshold,
            time_threshold=time_threshold,
            clock=clock,
        )

    return _factory
