"""
Shared fixtures for integration tests.

Provides settings pointing at temporary landing and sink directories.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from log_aggregator.config import Settings
from log_aggregator.config.settings import DeliverySettings, DispatcherSettings, QueueSettings


@pytest.fixture
def aggregator_settings(tmp_path: Path) -> Settings:
    """Settings over temporary directories with every format mapped."""
    return Settings(
        landing_root=str(tmp_path / "landing"),
        sink_root=str(tmp_path / "sink"),
        resource_map=[
            ("my-alb", "alb"),
            ("my-nlb", "nlb"),
            ("my-instance", "clf"),
            ("my-distribution", "cf"),
        ],
        queue=QueueSettings(visibility_timeout_seconds=600, max_receives=3),
        dispatcher=DispatcherSettings(workers=2, batch_size=4, poll_interval_seconds=0.01),
        delivery=DeliverySettings(
            size_threshold_bytes=1 << 20,
            time_threshold_seconds=300,
            base_delay_seconds=0.0,
            max_retries=1,
        ),
    )


@pytest.fixture
def start_time() -> datetime:
    return datetime(2024, 3, 2, 10, 0, 0, tzinfo=timezone.utc)
