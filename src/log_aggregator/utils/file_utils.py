"""
Shared compression utilities.

Raw objects arrive gzip-compressed from most producers; delivered batches
are always written gzip-compressed.
"""

import gzip
import io
from typing import Iterator

GZIP_MAGIC = b"\x1f\x8b"


def is_gzip(data: bytes, key: str = "") -> bool:
    """
    Detect gzip content.

    Gzip detection is performed by:
    1. Checking for .gz key suffix
    2. Checking for gzip magic bytes (0x1f 0x8b) even without .gz suffix
    """
    return key.lower().endswith(".gz") or data[:2] == GZIP_MAGIC


def decompress_auto(data: bytes, key: str = "") -> bytes:
    """
    Return the payload of an object, decompressing it when gzip.

    Raises:
        gzip.BadGzipFile: If the key has a .gz suffix but is not valid gzip
    """
    if is_gzip(data, key):
        return gzip.decompress(data)
    return data


def iter_text_lines(data: bytes, key: str = "", encoding: str = "utf-8") -> Iterator[str]:
    """
    Yield the lines of an object without trailing newlines.

    Undecodable bytes are replaced so one bad byte only breaks its own line.
    """
    payload = decompress_auto(data, key)
    with io.TextIOWrapper(io.BytesIO(payload), encoding=encoding, errors="replace") as f:
        for line in f:
            yield line.rstrip("\r\n")


def gzip_bytes(data: bytes) -> bytes:
    """Compress a payload with gzip."""
    return gzip.compress(data)
