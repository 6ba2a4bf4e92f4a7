"""
Ingestion notifier.

Converts object creation notifications from the landing store into durable
queue messages. Accepts both the flat notification form

    {"source_id": "...", "object_key": "...", "size": 123, "event_time": "..."}

and the S3-style envelope

    {"Records": [{"eventTime": "...", "s3": {"bucket": {"name": "..."},
                  "object": {"key": "...", "size": 123}}}]}
"""

import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..exceptions import MalformedEventError
from ..monitoring.retry_handler import RetryConfig, RetryManager
from ..storage.base import ObjectStore, RawLogObject
from ..utils.time_utils import parse_timestamp, utc_now
from .messages import IngestionMessage
from .queue import IngestionQueue

logger = logging.getLogger(__name__)


@dataclass
class NotifierStats:
    """Counters of handled notifications."""

    events_received: int = 0
    objects_enqueued: int = 0
    events_dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "events_received": self.events_received,
            "objects_enqueued": self.objects_enqueued,
            "events_dropped": self.events_dropped,
        }


def parse_creation_event(
    event: Union[str, bytes, dict[str, Any]],
) -> list[RawLogObject]:
    """
    Extract object references from a creation notification.

    Args:
        event: Notification as a dict or JSON text

    Returns:
        One RawLogObject per created object (empty for test events)

    Raises:
        MalformedEventError: If the event cannot be interpreted
    """
    if isinstance(event, (str, bytes)):
        try:
            event = json.loads(event)
        except ValueError as e:
            raise MalformedEventError("Event is not valid JSON", reason=str(e)) from e

    if not isinstance(event, dict):
        raise MalformedEventError(
            "Event must be a JSON object", reason=type(event).__name__
        )

    # Test notification sent when event delivery is configured
    if event.get("Event") == "s3:TestEvent":
        logger.info("Ignoring test notification")
        return []

    if "Records" in event:
        records = event["Records"]
        if not isinstance(records, list) or not records:
            raise MalformedEventError("Event has no records", reason="empty Records")
        return [_parse_s3_record(record) for record in records]

    return [_parse_flat_event(event)]


def _parse_s3_record(record: Any) -> RawLogObject:
    try:
        s3 = record["s3"]
        bucket = s3["bucket"]["name"]
        # Keys arrive URL-encoded with '+' for spaces
        key = urllib.parse.unquote_plus(s3["object"]["key"])
        size = int(s3["object"].get("size", 0))
        created_at = parse_timestamp(record.get("eventTime") or utc_now())
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEventError("Invalid S3 event record", reason=repr(e)) from e
    if not key:
        raise MalformedEventError("Invalid S3 event record", reason="empty key")
    return RawLogObject(source_id=bucket, object_key=key, size=size, created_at=created_at)


def _parse_flat_event(event: dict[str, Any]) -> RawLogObject:
    try:
        key = event["object_key"]
        if not key:
            raise ValueError("empty object_key")
        return RawLogObject(
            source_id=str(event.get("source_id", "")),
            object_key=key,
            size=int(event.get("size", 0)),
            created_at=parse_timestamp(event.get("event_time") or utc_now()),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEventError("Invalid creation event", reason=repr(e)) from e


class IngestionNotifier:
    """
    Publishes creation notifications to the ingestion queue.

    Malformed events are logged and dropped. Enqueue attempts are retried
    with bounded backoff; once retries are exhausted the error is re-raised
    to the producer.

    Example:
        notifier = IngestionNotifier(queue)
        notifier.handle_event(sqs_body)
    """

    def __init__(
        self,
        queue: IngestionQueue,
        retry_config: Optional[RetryConfig] = None,
        retry_manager: Optional[RetryManager] = None,
    ):
        self._queue = queue
        self._retry = retry_manager or RetryManager(
            config=retry_config or RetryConfig(max_retries=3, base_delay_seconds=0.2)
        )
        self.stats = NotifierStats()

    def handle_event(
        self, event: Union[str, bytes, dict[str, Any]]
    ) -> list[IngestionMessage]:
        """
        Enqueue one message per object named in the notification.

        Returns:
            Enqueued messages (empty if the event was dropped)
        """
        self.stats.events_received += 1
        try:
            objects = parse_creation_event(event)
        except MalformedEventError as e:
            self.stats.events_dropped += 1
            logger.error(f"Dropping malformed creation event: {e}")
            return []

        return [self.enqueue(obj) for obj in objects]

    def enqueue(self, object_ref: RawLogObject) -> IngestionMessage:
        """
        Enqueue a message for one object, retrying transient failures.

        Raises:
            TransientIOError: If the queue stays unavailable after retries
        """
        result = self._retry.execute_with_retry(self._queue.enqueue, object_ref)
        if not result.success:
            logger.error(
                f"Failed to enqueue {object_ref.object_key} after "
                f"{result.attempts} attempts: {result.last_error}"
            )
            raise result.last_error
        self.stats.objects_enqueued += 1
        logger.info(json.dumps({"key": object_ref.object_key, "enqueued": True}))
        return result.result

    def enqueue_existing(self, store: ObjectStore, prefix: str = "") -> int:
        """
        Enqueue every object already present in the landing store.

        Used to backfill objects written while no notifier was running.

        Returns:
            Number of enqueued objects
        """
        count = 0
        for obj in store.list_objects(prefix):
            self.enqueue(obj)
            count += 1
        logger.info(f"Enqueued {count} existing objects under '{prefix or '/'}'")
        return count
