"""
Shared fixtures for unit and integration tests.

Provides:
- A controllable clock for visibility timeouts and flush ages
- Object stores, including one that fails on demand
- Sample log lines for every supported format
"""

import gzip
from datetime import datetime, timezone
from typing import Optional

import pytest

from log_aggregator.exceptions import TransientIOError
from log_aggregator.monitoring import RetryConfig, RetryManager
from log_aggregator.storage import MemoryObjectStore

# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Manually advanced time source returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Controllable clock starting at a fixed epoch."""
    return FakeClock()


# =============================================================================
# STORES
# =============================================================================


class FlakyObjectStore(MemoryObjectStore):
    """
    Memory store whose writes fail on demand.

    Attributes:
        failures_remaining: Number of upcoming put_object calls to fail
        fail_prefixes: Keys starting with any of these always fail
    """

    def __init__(self, failures: int = 0, fail_prefixes: tuple[str, ...] = ()):
        super().__init__(source_id="flaky")
        self.failures_remaining = failures
        self.fail_prefixes = fail_prefixes
        self.put_attempts: list[str] = []

    def put_object(self, key: str, data: bytes, created_at=None) -> None:
        self.put_attempts.append(key)
        if any(key.startswith(prefix) for prefix in self.fail_prefixes):
            raise TransientIOError("sink unavailable", operation="put_object", key=key)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise TransientIOError("sink unavailable", operation="put_object", key=key)
        super().put_object(key, data, created_at)


@pytest.fixture
def memory_store():
    """Empty in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def landing_store():
    """In-memory landing store."""
    return MemoryObjectStore(source_id="landing")


@pytest.fixture
def sink_store():
    """In-memory sink store."""
    return MemoryObjectStore(source_id="sink")


@pytest.fixture
def flaky_store_factory():
    """Factory building stores that fail a number of writes."""

    def _factory(failures: int = 0, fail_prefixes: tuple[str, ...] = ()):
        return FlakyObjectStore(failures=failures, fail_prefixes=fail_prefixes)

    return _factory


@pytest.fixture
def fast_retry():
    """Retry manager with two retries and no real sleeping."""
    return RetryManager(
        config=RetryConfig(max_retries=2, base_delay_seconds=0.0, jitter=False),
        sleep=lambda seconds: None,
    )


# =============================================================================
# SAMPLE LINES
# =============================================================================


@pytest.fixture
def make_alb_line():
    """Factory for application load balancer log lines."""

    def _make(
        time: str = "2024-03-02T10:00:00.123456Z",
        status: str = "200",
        path: str = "/",
        user_agent: str = "curl/7.46.0",
    ) -> str:
        return (
            f"https {time} app/my-alb/50dc6c495c0c9188 "
            f"192.168.131.39:2817 10.0.0.1:80 0.000 0.001 0.000 {status} {status} 34 366 "
            f'"GET https://www.example.com:443{path} HTTP/1.1" "{user_agent}" '
            f"ECDHE-RSA-AES128-GCM-SHA256 TLSv1.2 "
            f"arn:aws:elasticloadbalancing:us-east-2:123456789012:targetgroup/my-targets/73e2d6bc24d8a067 "
            f'"Root=1-58337262-36d228ad5d99923122bbe354" "www.example.com" '
            f'"arn:aws:acm:us-east-2:123456789012:certificate/12345678-1234-1234-1234-123456789012" '
            f'1 2024-03-02T09:59:59.999000Z "forward" "-" "-" "10.0.0.1:80" "200" "-" "-"'
        )

    return _make


@pytest.fixture
def make_nlb_line():
    """Factory for network load balancer log lines."""

    def _make(time: str = "2024-03-02T10:00:00") -> str:
        return (
            f"tls 2.0 {time} net/my-nlb/c6e77e28c25b2234 g3d4b5e8bb8464cd "
            f"72.21.218.154:51341 172.100.100.185:443 5 2 98 246 - "
            f"arn:aws:acm:us-east-2:671290407336:certificate/2a108f19-aded-46b0-8493-c63eb1ef4a99 "
            f"- ECDHE-RSA-AES128-SHA tlsv12 - "
            f"my-nlb-c6e77e28c25b2234.elb.us-east-2.amazonaws.com h2 h2 "
            f'"h2","http/1.1" 2024-03-02T09:59:58'
        )

    return _make


@pytest.fixture
def make_clf_line():
    """Factory for Apache combined log lines."""

    def _make(
        time: str = "02/Mar/2024:10:00:00 +0000",
        user_agent: Optional[str] = "Mozilla/5.0",
        status: str = "200",
    ) -> str:
        line = f'10.0.0.5 - - [{time}] "GET /index.html HTTP/1.1" {status} 512'
        if user_agent is not None:
            line += f' "-" "{user_agent}"'
        return line

    return _make


@pytest.fixture
def make_cf_line():
    """Factory for distribution (W3C, tab-separated) log lines."""

    def _make(date: str = "2024-03-02", time: str = "10:00:00", status: str = "200") -> str:
        fields = [
            date,
            time,
            "SEA19-C1",
            "2390",
            "192.0.2.10",
            "GET",
            "d111111abcdef8.cloudfront.net",
            "/index.html",
            status,
            "-",
            "Mozilla/5.0%20(Windows%20NT%2010.0)",
            "-",
            "-",
            "Hit",
            "SOX4xwn4XV6Q4rgb7XiVGOHms_BGlTAC4KyHmureZmBNrjGdRLiNIQ==",
            "d111111abcdef8.cloudfront.net",
            "https",
            "23",
            "0.001",
            "-",
            "TLSv1.2",
            "ECDHE-RSA-AES128-GCM-SHA256",
            "Hit",
            "HTTP/2.0",
            "-",
            "-",
            "11040",
            "0.001",
            "Hit",
            "text/html",
            "78",
            "-",
            "-",
        ]
        return "\t".join(fields)

    return _make


@pytest.fixture
def gzip_lines():
    """Encode lines as a gzip object payload."""

    def _encode(lines: list[str]) -> bytes:
        return gzip.compress(("\n".join(lines) + "\n").encode("utf-8"))

    return _encode


@pytest.fixture
def event_time():
    """Fixed UTC event time used across delivery tests."""
    return datetime(2024, 3, 2, 10, 0, 0, tzinfo=timezone.utc)
