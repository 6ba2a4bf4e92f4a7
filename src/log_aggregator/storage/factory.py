"""
Object store factory.

Provides a factory function to create the landing store and the sink.
"""

import logging

from ..exceptions import ConfigurationError
from .base import ObjectStore
from .local_backend import LocalObjectStore
from .memory_backend import MemoryObjectStore

logger = logging.getLogger(__name__)

# Registry of available backends
_BACKEND_REGISTRY: dict[str, type[ObjectStore]] = {
    "local": LocalObjectStore,
    "memory": MemoryObjectStore,
}


def get_store(backend_type: str = "local", **kwargs) -> ObjectStore:
    """
    Get an object store instance.

    Args:
        backend_type: Backend type ('local' or 'memory')
        **kwargs: Arguments passed to the backend constructor.
                  For local: root, source_id

    Returns:
        ObjectStore instance

    Raises:
        ConfigurationError: If backend type is not supported

    Examples:
        landing = get_store("local", root="data/landing")
        sink = get_store("memory", source_id="sink")
    """
    backend_type = backend_type.lower()
    if backend_type not in _BACKEND_REGISTRY:
        available = ", ".join(sorted(_BACKEND_REGISTRY))
        raise ConfigurationError(
            f"Unknown object store backend: '{backend_type}'. "
            f"Available backends: {available}",
            setting="backend",
        )
    return _BACKEND_REGISTRY[backend_type](**kwargs)


def list_available_backends() -> list[str]:
    """List registered backend identifiers."""
    return sorted(_BACKEND_REGISTRY)
