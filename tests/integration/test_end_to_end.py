"""
End-to-end tests: landing objects through the queue, dispatcher and
delivery stream to partitioned gzip batches on disk.
"""

import gzip
import json
import random
import time
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from log_aggregator.config.settings import DeliverySettings, QueueSettings
from log_aggregator.exceptions import ConfigurationError
from log_aggregator.ingestion import IngestionQueue
from log_aggregator.pipeline import LogAggregator

pytestmark = pytest.mark.integration


def generate_alb_lines(
    num_lines: int, start: datetime, make_line, seed: int = 42
) -> list[str]:
    """
    Generate ALB log lines spread over consecutive seconds.

    Args:
        num_lines: Number of lines to generate
        start: Time of the first request (UTC)
        make_line: ALB line factory fixture
        seed: Random seed for reproducible paths and statuses
    """
    rng = random.Random(seed)
    paths = ["/", "/products", "/cart", "/api/v1/orders", "/static/app.js"]
    statuses = ["200", "200", "200", "301", "404", "503"]

    lines = []
    for i in range(num_lines):
        time_field = (start + timedelta(seconds=i)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        lines.append(
            make_line(time=time_field, status=rng.choice(statuses), path=rng.choice(paths))
        )
    return lines


def read_delivered(root: Path) -> dict[str, list[dict]]:
    """Return every delivered record keyed by its path relative to root."""
    delivered = {}
    for path in sorted(root.rglob("*.gz")):
        with gzip.open(path, "rt", encoding="utf-8") as f:
            delivered[path.relative_to(root).as_posix()] = [
                json.loads(line) for line in f if line.strip()
            ]
    return delivered


def wait_until_drained(aggregator: LogAggregator, timeout: float = 10.0) -> None:
    """Poll the queue until no message is visible or in flight."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        depth = aggregator.queue.depth()
        if depth["visible"] == 0 and depth["in_flight"] == 0:
            return
        time.sleep(0.01)
    raise AssertionError(f"Queue not drained: {aggregator.queue.depth()}")


class TestSynchronousRun:
    """Tests running the pipeline on the calling thread."""

    def test_alb_objects_delivered_exactly(
        self, aggregator_settings, tmp_path: Path, start_time, make_alb_line, gzip_lines
    ) -> None:
        """Test 1000 lines over three objects become exactly 1000 alb records."""
        lines = generate_alb_lines(1000, start_time, make_alb_line)
        with LogAggregator(aggregator_settings) as aggregator:
            for i, chunk in enumerate((lines[:334], lines[334:667], lines[667:])):
                aggregator.landing_store.put_object(
                    f"my-alb/2024/03/02/log-{i}.gz", gzip_lines(chunk)
                )
            assert aggregator.notifier.enqueue_existing(aggregator.landing_store) == 3

            result = aggregator.run_until_empty()

            assert result.acked == 3
            assert result.failed == 0
            assert aggregator.dispatcher.stats.lines_skipped == 0

        delivered = read_delivered(tmp_path / "sink")
        records = [r for batch in delivered.values() for r in batch]
        assert len(records) == 1000
        assert all(r["resource_type"] == "alb" for r in records)
        assert all(key.startswith("alb/2024/03/02/") for key in delivered)
        assert not any(key.startswith("errors/") for key in delivered)

    def test_mixed_formats_and_unmapped(
        self,
        aggregator_settings,
        tmp_path: Path,
        gzip_lines,
        make_alb_line,
        make_nlb_line,
        make_clf_line,
        make_cf_line,
    ) -> None:
        """Test each format lands in its partition and unmapped objects in errors."""
        with LogAggregator(aggregator_settings) as aggregator:
            store = aggregator.landing_store
            store.put_object("my-alb/a.gz", gzip_lines([make_alb_line()] * 2))
            store.put_object("my-nlb/a.gz", gzip_lines([make_nlb_line()]))
            store.put_object(
                "my-instance/access.log",
                "\n".join(
                    [make_clf_line(), make_clf_line(user_agent="ELB-HealthChecker/2.0")]
                ).encode(),
            )
            store.put_object(
                "my-distribution/a.gz", gzip_lines(["#Version: 1.0", make_cf_line()])
            )
            store.put_object("legacy-app/a.log", b"anything at all\n")
            aggregator.notifier.enqueue_existing(store)

            result = aggregator.run_until_empty()
            status = aggregator.status()

        assert result.failed == 0
        assert status["dispatcher"]["format_unknown"] == 1
        assert status["dispatcher"]["lines_filtered"] == 1

        delivered = read_delivered(tmp_path / "sink")
        by_partition = {}
        for key, batch in delivered.items():
            if key.startswith("errors/"):
                continue
            partition = key.rsplit("/", 1)[0]
            by_partition[partition] = by_partition.get(partition, 0) + len(batch)

        assert by_partition == {
            "alb/2024/03/02": 2,
            "nlb/2024/03/02": 1,
            "clf/2024/03/02": 1,
            "cf/2024/03/02": 1,
        }
        [error_entry] = [
            entry
            for key, batch in delivered.items()
            if key.startswith("errors/FormatUnknown/")
            for entry in batch
        ]
        assert error_entry["resource_name"] == "legacy-app"
        assert error_entry["object"]["object_key"] == "legacy-app/a.log"

    def test_malformed_object_retried_then_dead_lettered(
        self, aggregator_settings, tmp_path: Path, clock
    ) -> None:
        """Test an unparsable object is redelivered, then dead-lettered."""
        queue = IngestionQueue(visibility_timeout=30, max_receives=2, clock=clock)
        with LogAggregator(aggregator_settings, queue=queue) as aggregator:
            aggregator.landing_store.put_object("my-alb/bad.log", b"x\ny\nz\n")
            aggregator.notifier.enqueue_existing(aggregator.landing_store)

            assert aggregator.run_until_empty().failed == 1
            assert aggregator.run_until_empty().outcomes == []

            clock.advance(30)
            assert aggregator.run_until_empty().failed == 1

            clock.advance(30)
            assert aggregator.run_until_empty().outcomes == []
            [entry] = queue.dead_letters()
            assert entry.receive_count == 2
            assert "ObjectParseFailure" in entry.last_error

        assert read_delivered(tmp_path / "sink") == {}

    def test_delivery_failure_falls_back_to_error_prefix(
        self, aggregator_settings, flaky_store_factory, start_time, make_alb_line,
        gzip_lines,
    ) -> None:
        """Test a sink rejecting a partition diverts batches to DeliveryFailure."""
        sink = flaky_store_factory(fail_prefixes=("alb/",))
        with LogAggregator(aggregator_settings, sink_store=sink) as aggregator:
            aggregator.landing_store.put_object(
                "my-alb/a.gz", gzip_lines(generate_alb_lines(10, start_time, make_alb_line))
            )
            aggregator.notifier.enqueue_existing(aggregator.landing_store)

            result = aggregator.run_until_empty()

            assert result.acked == 1
            assert aggregator.stream.stats.error_batches == 1
            assert aggregator.status()["sink_circuit"]["state"] == "closed"

        [key] = sink.keys()
        assert key.startswith("errors/DeliveryFailure/2024/03/02/")
        assert len(gzip.decompress(sink.get_object(key)).splitlines()) == 10

    def test_invalid_settings_rejected(self, aggregator_settings) -> None:
        """Test construction fails fast on invalid settings."""
        settings = replace(
            aggregator_settings,
            delivery=DeliverySettings(partition_template="static.gz"),
        )

        with pytest.raises(ConfigurationError, match="Invalid settings"):
            LogAggregator(settings)


class TestThreadedRun:
    """Tests running the worker pool and background flusher."""

    def test_workers_drain_notifications(
        self, aggregator_settings, tmp_path: Path, start_time, make_alb_line, gzip_lines
    ) -> None:
        """Test events handled while workers run are all delivered on stop."""
        aggregator = LogAggregator(aggregator_settings)
        aggregator.start()
        try:
            for i in range(8):
                key = f"my-alb/2024/03/02/log-{i}.gz"
                lines = generate_alb_lines(25, start_time, make_alb_line, seed=i)
                aggregator.landing_store.put_object(key, gzip_lines(lines))
                aggregator.notifier.handle_event(
                    {"source_id": "landing", "object_key": key, "size": 1}
                )
            wait_until_drained(aggregator)
        finally:
            aggregator.close()

        delivered = read_delivered(tmp_path / "sink")
        assert sum(len(batch) for batch in delivered.values()) == 200
        assert aggregator.dispatcher.stats.messages_acked == 8


class TestDurableQueue:
    """Tests the SQLite queue across aggregator restarts."""

    def test_messages_survive_restart(
        self, aggregator_settings, tmp_path: Path, make_nlb_line, gzip_lines
    ) -> None:
        """Test objects enqueued before a restart are processed after it."""
        settings = replace(
            aggregator_settings,
            queue=QueueSettings(
                backend="sqlite",
                sqlite_path=str(tmp_path / "queue.db"),
                visibility_timeout_seconds=600,
            ),
        )

        with LogAggregator(settings) as first:
            first.landing_store.put_object("my-nlb/a.gz", gzip_lines([make_nlb_line()] * 4))
            first.notifier.enqueue_existing(first.landing_store)

        with LogAggregator(settings) as second:
            result = second.run_until_empty()

        assert result.acked == 1
        records = [r for b in read_delivered(tmp_path / "sink").values() for r in b]
        assert len(records) == 4
        assert {r["resource_type"] for r in records} == {"nlb"}
