"""
Abstract base class for object stores.

Provides a unified interface for the landing store (raw log objects written
by producers) and the delivery sink (compressed batches), enabling switching
between a local filesystem and an in-memory store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator

from ..exceptions import ConfigurationError, ObjectNotFoundError
from ..utils.time_utils import parse_timestamp


@dataclass(frozen=True)
class RawLogObject:
    """
    Reference to one raw log object in the landing store.

    Immutable; the pipeline never deletes the object it refers to.

    Attributes:
        source_id: Identifier of the store / bucket holding the object
        object_key: Key of the object, laid out as `<resource_name>/...`
        size: Object size in bytes
        created_at: Creation time of the object (UTC)
    """

    source_id: str
    object_key: str
    size: int
    created_at: datetime

    @property
    def resource_name(self) -> str:
        """Return the producing resource, the first segment of the key."""
        return self.object_key.split("/", 1)[0]

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "object_key": self.object_key,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RawLogObject":
        return cls(
            source_id=data["source_id"],
            object_key=data["object_key"],
            size=int(data.get("size", 0)),
            created_at=parse_timestamp(data["created_at"]),
        )


class ObjectStore(ABC):
    """
    Abstract base class for object stores.

    Implementations must make `put_object` all-or-nothing: a reader never
    observes a partially written object.

    Transient unavailability is reported as TransientIOError, a missing key
    as ObjectNotFoundError.
    """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend type identifier (e.g., 'local')."""
        pass

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Return the identifier stamped on objects read from this store."""
        pass

    @abstractmethod
    def get_object(self, key: str) -> bytes:
        """
        Read the full content of an object.

        Raises:
            ObjectNotFoundError: If the key does not exist
            TransientIOError: If the store is temporarily unavailable
        """
        pass

    @abstractmethod
    def put_object(self, key: str, data: bytes) -> None:
        """
        Atomically write an object, replacing any existing one.

        Raises:
            TransientIOError: If the store is temporarily unavailable
        """
        pass

    @abstractmethod
    def head_object(self, key: str) -> RawLogObject:
        """
        Return metadata for an object.

        Raises:
            ObjectNotFoundError: If the key does not exist
        """
        pass

    @abstractmethod
    def list_objects(self, prefix: str = "") -> Iterator[RawLogObject]:
        """Yield metadata for every object whose key starts with prefix."""
        pass

    def exists(self, key: str) -> bool:
        """Check if an object exists."""
        try:
            self.head_object(key)
            return True
        except ObjectNotFoundError:
            return False

    def close(self) -> None:
        """Release resources. Default implementation does nothing."""
        return None

    def __enter__(self) -> "ObjectStore":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - ensures resources are released."""
        self.close()


def normalize_key(key: str) -> str:
    """Strip leading slashes and reject keys that escape the store root."""
    normalized = key.lstrip("/")
    parts = normalized.split("/")
    if not normalized or any(part in ("..", "") for part in parts):
        raise ConfigurationError(f"Invalid object key: {key!r}", setting="key")
    return normalized
