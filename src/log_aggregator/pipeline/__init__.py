"""
Pipeline orchestration.
"""

from .aggregator import LOG_FORMAT, LogAggregator, RunResult, setup_logging

__all__ = [
    "LOG_FORMAT",
    "LogAggregator",
    "RunResult",
    "setup_logging",
]
