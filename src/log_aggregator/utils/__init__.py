"""Utility modules for the aggregation pipeline."""

from .file_utils import decompress_auto, gzip_bytes, is_gzip, iter_text_lines
from .time_utils import ensure_utc, parse_timestamp, utc_now

__all__ = [
    "decompress_auto",
    "gzip_bytes",
    "is_gzip",
    "iter_text_lines",
    "ensure_utc",
    "parse_timestamp",
    "utc_now",
]
