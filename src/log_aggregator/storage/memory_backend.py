"""
In-memory object store for tests and single-process runs.
"""

import threading
from datetime import datetime
from typing import Iterator, Optional

from ..exceptions import ObjectNotFoundError
from ..utils.time_utils import utc_now
from .base import ObjectStore, RawLogObject, normalize_key


class MemoryObjectStore(ObjectStore):
    """Thread-safe dictionary-backed object store."""

    def __init__(self, source_id: str = "memory"):
        self._source_id = source_id
        self._objects: dict[str, tuple[bytes, datetime]] = {}
        self._lock = threading.Lock()

    @property
    def backend_type(self) -> str:
        return "memory"

    @property
    def source_id(self) -> str:
        return self._source_id

    def get_object(self, key: str) -> bytes:
        key = normalize_key(key)
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            return self._objects[key][0]

    def put_object(
        self, key: str, data: bytes, created_at: Optional[datetime] = None
    ) -> None:
        key = normalize_key(key)
        with self._lock:
            self._objects[key] = (bytes(data), created_at or utc_now())

    def head_object(self, key: str) -> RawLogObject:
        key = normalize_key(key)
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            data, created_at = self._objects[key]
        return RawLogObject(self._source_id, key, len(data), created_at)

    def list_objects(self, prefix: str = "") -> Iterator[RawLogObject]:
        prefix = prefix.lstrip("/")
        with self._lock:
            snapshot = sorted(self._objects.items())
        for key, (data, created_at) in snapshot:
            if key.startswith(prefix):
                yield RawLogObject(self._source_id, key, len(data), created_at)

    def keys(self) -> list[str]:
        """Return all keys in sorted order."""
        with self._lock:
            return sorted(self._objects)
