"""
Object storage layer for the landing store and the delivery sink.

Usage:
    from log_aggregator.storage import get_store

    landing = get_store("local", root="data/landing")
    data = landing.get_object("my-alb/2024/03/02/log.gz")
"""

from .base import ObjectStore, RawLogObject, normalize_key
from .factory import get_store, list_available_backends
from .local_backend import LocalObjectStore
from .memory_backend import MemoryObjectStore

__all__ = [
    # Base classes and models
    "ObjectStore",
    "RawLogObject",
    "normalize_key",
    # Implementations
    "LocalObjectStore",
    "MemoryObjectStore",
    # Factory functions
    "get_store",
    "list_available_backends",
]
