"""
Ingestion layer: creation notifications to durable queue messages.

Usage:
    from log_aggregator.ingestion import IngestionNotifier, IngestionQueue

    queue = IngestionQueue(max_receives=3, visibility_timeout=300)
    notifier = IngestionNotifier(queue)
    notifier.handle_event({"object_key": "my-alb/2024/03/02/log.gz", "size": 42})

    for message in queue.receive(max_messages=10):
        ...
"""

from .messages import DeadLetterEntry, IngestionMessage, MessageState
from .notifier import IngestionNotifier, NotifierStats, parse_creation_event
from .queue import IngestionQueue, MemoryQueueBackend, QueueBackend
from .sqlite_queue import SqliteQueueBackend

__all__ = [
    # Messages
    "IngestionMessage",
    "MessageState",
    "DeadLetterEntry",
    # Queue
    "IngestionQueue",
    "QueueBackend",
    "MemoryQueueBackend",
    "SqliteQueueBackend",
    # Notifier
    "IngestionNotifier",
    "NotifierStats",
    "parse_creation_event",
]
