"""
Unit tests for compression and timestamp helpers.
"""

import gzip
from datetime import datetime, timedelta, timezone

import pytest

from log_aggregator.utils import (
    decompress_auto,
    ensure_utc,
    gzip_bytes,
    is_gzip,
    iter_text_lines,
    parse_timestamp,
)


class TestGzipDetection:
    """Tests for gzip detection and decompression."""

    def test_detect_by_extension(self) -> None:
        """Test .gz keys are treated as gzip."""
        assert is_gzip(b"anything", "my-alb/log.gz")
        assert is_gzip(b"anything", "my-alb/LOG.GZ")

    def test_detect_by_magic_bytes(self) -> None:
        """Test gzip content is detected without a .gz suffix."""
        assert is_gzip(gzip.compress(b"data"), "my-alb/log")

    def test_plain_text(self) -> None:
        """Test plain content without suffix is not gzip."""
        assert not is_gzip(b"plain text", "web/access.log")

    def test_decompress_auto(self) -> None:
        """Test gzip payloads are decompressed and plain ones returned as-is."""
        assert decompress_auto(gzip.compress(b"hello"), "x.gz") == b"hello"
        assert decompress_auto(b"hello", "x.log") == b"hello"

    def test_bad_gzip_with_extension(self) -> None:
        """Test a .gz key with non-gzip content raises."""
        with pytest.raises(gzip.BadGzipFile):
            decompress_auto(b"This is not gzip content", "corrupt.gz")

    def test_gzip_bytes(self) -> None:
        """Test compression output is valid gzip."""
        assert gzip.decompress(gzip_bytes(b"payload")) == b"payload"


class TestIterTextLines:
    """Tests for line iteration over object payloads."""

    def test_strips_newlines(self) -> None:
        """Test LF and CRLF endings are removed."""
        lines = list(iter_text_lines(b"one\r\ntwo\nthree", "x.log"))

        assert lines == ["one", "two", "three"]

    def test_gzip_payload(self) -> None:
        """Test compressed objects are read transparently."""
        data = gzip.compress(b"a\nb\n")

        assert list(iter_text_lines(data, "x.gz")) == ["a", "b"]

    def test_invalid_utf8_replaced(self) -> None:
        """Test undecodable bytes only affect their own line."""
        lines = list(iter_text_lines(b"ok\nbad \xff byte\nok", "x.log"))

        assert lines[0] == "ok"
        assert "�" in lines[1]
        assert lines[2] == "ok"


class TestTimestamps:
    """Tests for timestamp parsing."""

    def test_iso_with_z(self) -> None:
        """Test ISO 8601 with Z suffix."""
        assert parse_timestamp("2024-03-02T10:00:00Z") == datetime(
            2024, 3, 2, 10, tzinfo=timezone.utc
        )

    def test_naive_assumed_utc(self) -> None:
        """Test naive timestamps are treated as UTC."""
        assert parse_timestamp("2024-03-02T10:00:00").tzinfo == timezone.utc

    def test_offset_converted(self) -> None:
        """Test offsets are converted to UTC."""
        assert parse_timestamp("2024-03-02T12:00:00+02:00").hour == 10

    def test_epoch_seconds(self) -> None:
        """Test numeric epoch seconds."""
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_nanosecond_fraction_fallback(self) -> None:
        """Test more than six fractional digits parse via the fallback."""
        dt = parse_timestamp("2024-03-02T10:00:00.123456789Z")

        assert dt.year == 2024
        assert dt.tzinfo is not None

    @pytest.mark.parametrize("value", ["", "yesterday", None, True])
    def test_invalid(self, value) -> None:
        """Test invalid values raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp(value)

    def test_ensure_utc(self) -> None:
        """Test aware datetimes are converted and naive ones tagged."""
        local = datetime(2024, 3, 2, 12, tzinfo=timezone(timedelta(hours=2)))

        assert ensure_utc(local).hour == 10
        assert ensure_utc(datetime(2024, 3, 2)).tzinfo == timezone.utc
