"""
Dispatch layer: format resolution, per-line parsing and the worker pool.
"""

from .dispatcher import DispatcherStats, FormatDispatcher, MessageOutcome, ParseSummary
from .resolver import FormatKind, ResourceTypeMap, ResourceTypeResolver
from .worker_pool import WorkerPool

__all__ = [
    "FormatKind",
    "ResourceTypeMap",
    "ResourceTypeResolver",
    "FormatDispatcher",
    "DispatcherStats",
    "MessageOutcome",
    "ParseSummary",
    "WorkerPool",
]
