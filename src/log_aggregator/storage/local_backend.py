"""
Local filesystem object store.

Keys map to paths below a root directory. Writes go to a temporary file in
the destination directory and are moved into place with os.replace, so a
reader sees either the old object or the complete new one.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Union

from ..exceptions import ObjectNotFoundError, TransientIOError
from .base import ObjectStore, RawLogObject, normalize_key

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """
    Object store backed by a directory tree.

    Example:
        store = LocalObjectStore("data/landing")
        store.put_object("my-alb/2024/03/02/log.gz", payload)
        for obj in store.list_objects("my-alb/"):
            print(obj.object_key, obj.size)
    """

    def __init__(self, root: Union[str, Path], source_id: str | None = None):
        """
        Initialize the store.

        Args:
            root: Root directory; created if missing
            source_id: Identifier stamped on listed objects (default: root name)
        """
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._source_id = source_id or self._root.resolve().name

    @property
    def backend_type(self) -> str:
        return "local"

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        return self._root / normalize_key(key)

    def get_object(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(key)
        except OSError as e:
            raise TransientIOError(
                f"Failed to read object: {e}", operation="get_object", key=key
            ) from e

    def put_object(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise TransientIOError(
                f"Failed to write object: {e}", operation="put_object", key=key
            ) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Wrote {len(data)} bytes to {path}")

    def head_object(self, key: str) -> RawLogObject:
        path = self._path_for(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            raise ObjectNotFoundError(key)
        return self._to_raw_object(normalize_key(key), stat)

    def list_objects(self, prefix: str = "") -> Iterator[RawLogObject]:
        prefix = prefix.lstrip("/")
        for path in sorted(self._root.rglob("*")):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                yield self._to_raw_object(key, path.stat())

    def _to_raw_object(self, key: str, stat: os.stat_result) -> RawLogObject:
        return RawLogObject(
            source_id=self._source_id,
            object_key=key,
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
