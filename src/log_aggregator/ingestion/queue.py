"""
Ingestion queue with visibility timeouts, retry counting and dead-lettering.

The queue owns the message lifecycle (see messages.py). Persistence is
delegated to a QueueBackend so the same lifecycle logic runs in memory or
on top of SQLite.
"""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Iterator, Optional

from ..config.constants import (
    DEFAULT_MAX_RECEIVES,
    DEFAULT_RETENTION_PERIOD_SECONDS,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
)
from ..exceptions import ConfigurationError, ReceiptExpiredError
from ..storage.base import RawLogObject
from .messages import DeadLetterEntry, IngestionMessage, MessageState

logger = logging.getLogger(__name__)


# =============================================================================
# Backends
# =============================================================================


class QueueBackend(ABC):
    """
    Persistence interface for queue messages and dead-letter entries.

    Backends are not required to be thread-safe; IngestionQueue serializes
    every call under its own lock.
    """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        pass

    @abstractmethod
    def insert(self, message: IngestionMessage) -> None:
        pass

    @abstractmethod
    def update(self, message: IngestionMessage) -> None:
        pass

    @abstractmethod
    def get(self, message_id: str) -> Optional[IngestionMessage]:
        pass

    @abstractmethod
    def delete(self, message_id: str) -> None:
        pass

    @abstractmethod
    def iter_messages(self) -> Iterator[IngestionMessage]:
        """Yield live messages in enqueue order."""
        pass

    @abstractmethod
    def add_dead_letter(self, entry: DeadLetterEntry) -> None:
        pass

    @abstractmethod
    def list_dead_letters(self) -> list[DeadLetterEntry]:
        pass

    @abstractmethod
    def remove_dead_letter(self, message_id: str) -> Optional[DeadLetterEntry]:
        pass

    def close(self) -> None:
        return None


class MemoryQueueBackend(QueueBackend):
    """In-process backend. Messages do not survive a restart."""

    def __init__(self):
        self._messages: dict[str, IngestionMessage] = {}
        self._dead_letters: dict[str, DeadLetterEntry] = {}

    @property
    def backend_type(self) -> str:
        return "memory"

    def insert(self, message: IngestionMessage) -> None:
        self._messages[message.message_id] = message

    def update(self, message: IngestionMessage) -> None:
        self._messages[message.message_id] = message

    def get(self, message_id: str) -> Optional[IngestionMessage]:
        return self._messages.get(message_id)

    def delete(self, message_id: str) -> None:
        self._messages.pop(message_id, None)

    def iter_messages(self) -> Iterator[IngestionMessage]:
        # dicts keep insertion order
        yield from list(self._messages.values())

    def add_dead_letter(self, entry: DeadLetterEntry) -> None:
        self._dead_letters[entry.message_id] = entry

    def list_dead_letters(self) -> list[DeadLetterEntry]:
        return list(self._dead_letters.values())

    def remove_dead_letter(self, message_id: str) -> Optional[DeadLetterEntry]:
        return self._dead_letters.pop(message_id, None)


# =============================================================================
# Queue
# =============================================================================


class IngestionQueue:
    """
    Durable message queue referencing landing store objects.

    Semantics follow a managed queue with a redrive policy:
    - a received message stays hidden for `visibility_timeout` seconds;
    - un-acked messages become visible again once the timeout elapses;
    - every delivery increments `receive_count`;
    - a message that was already delivered `max_receives` times is moved
      to the dead-letter store instead of being delivered again;
    - messages older than `retention_period` are discarded.

    Example:
        queue = IngestionQueue(max_receives=3)
        queue.enqueue(obj)
        for message in queue.receive(max_messages=10):
            queue.start_processing(message)
            ...
            queue.ack(message)
    """

    def __init__(
        self,
        backend: Optional[QueueBackend] = None,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        retention_period: float = DEFAULT_RETENTION_PERIOD_SECONDS,
        max_receives: int = DEFAULT_MAX_RECEIVES,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queue.

        Args:
            backend: Persistence backend (default: in-memory)
            visibility_timeout: Seconds a received message stays hidden
            retention_period: Seconds a message is kept before being discarded
            max_receives: Deliveries allowed before dead-lettering
            clock: Time source returning seconds
        """
        if max_receives < 1:
            raise ConfigurationError(
                f"max_receives must be >= 1, got {max_receives}",
                setting="max_receives",
            )
        if visibility_timeout <= 0:
            raise ConfigurationError(
                f"visibility_timeout must be > 0, got {visibility_timeout}",
                setting="visibility_timeout",
            )
        self._backend = backend or MemoryQueueBackend()
        self.visibility_timeout = visibility_timeout
        self.retention_period = retention_period
        self.max_receives = max_receives
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def backend_type(self) -> str:
        return self._backend.backend_type

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def enqueue(self, object_ref: RawLogObject) -> IngestionMessage:
        """
        Persist a message referencing the object.

        Returns:
            Snapshot of the stored message
        """
        now = self._clock()
        message = IngestionMessage(
            message_id=str(uuid.uuid4()),
            object_ref=object_ref,
            visibility_deadline=now,
            enqueued_at=now,
        )
        with self._lock:
            self._backend.insert(message)
        logger.debug(
            f"Enqueued message {message.message_id} for {object_ref.object_key}"
        )
        return replace(message)

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: Optional[float] = None,
    ) -> list[IngestionMessage]:
        """
        Receive up to `max_messages` visible messages.

        Each returned message carries a fresh receipt handle and stays hidden
        from other consumers until it is acked, released, or its visibility
        timeout elapses.

        Args:
            max_messages: Maximum number of messages to return
            visibility_timeout: Override of the queue's visibility timeout

        Returns:
            Snapshots of the received messages, oldest first
        """
        timeout = (
            self.visibility_timeout if visibility_timeout is None else visibility_timeout
        )
        received: list[IngestionMessage] = []

        with self._lock:
            now = self._clock()
            for stored in self._backend.iter_messages():
                if len(received) >= max_messages:
                    break
                message = replace(stored)

                if now - message.enqueued_at >= self.retention_period:
                    logger.warning(
                        f"Discarding message {message.message_id} "
                        f"({message.object_ref.object_key}): retention period elapsed"
                    )
                    self._backend.delete(message.message_id)
                    continue

                if not message.is_visible(now):
                    continue

                if message.state.is_in_flight:
                    # Visibility timeout elapsed without ack
                    message.transition(MessageState.REDELIVERED)
                    if message.last_error is None:
                        message.last_error = "visibility timeout expired"

                if message.receive_count >= self.max_receives:
                    self._dead_letter(message, now)
                    continue

                message.transition(MessageState.RECEIVED)
                message.receive_count += 1
                message.receipt_handle = uuid.uuid4().hex
                message.visibility_deadline = now + timeout
                self._backend.update(message)
                received.append(replace(message))

        if received:
            logger.debug(f"Received {len(received)} messages")
        return received

    def start_processing(self, message: IngestionMessage) -> None:
        """Mark a received message as being processed."""
        with self._lock:
            stored = self._current(message)
            stored.transition(MessageState.PROCESSING)
            self._backend.update(stored)
            message.state = stored.state

    def ack(self, message: IngestionMessage) -> None:
        """
        Acknowledge a fully processed message and delete it.

        Raises:
            ReceiptExpiredError: If the receipt is stale (message redelivered)
        """
        with self._lock:
            stored = self._current(message)
            stored.transition(MessageState.ACKED)
            self._backend.delete(stored.message_id)
            message.state = stored.state
        logger.debug(f"Acked message {message.message_id}")

    def fail(self, message: IngestionMessage, error: BaseException | str) -> None:
        """
        Record a failed attempt without acking.

        The message keeps its visibility deadline and becomes available
        again once the timeout elapses.
        """
        with self._lock:
            stored = self._current(message)
            stored.transition(MessageState.REDELIVERED)
            stored.last_error = _describe(error)
            self._backend.update(stored)
            message.state = stored.state
            message.last_error = stored.last_error

    def release(
        self, message: IngestionMessage, error: BaseException | str | None = None
    ) -> None:
        """
        Return an un-acked message to the queue, visible immediately.

        Used on shutdown for messages that were received but not completed.
        """
        with self._lock:
            stored = self._current(message)
            stored.transition(MessageState.REDELIVERED)
            stored.visibility_deadline = self._clock()
            if error is not None:
                stored.last_error = _describe(error)
            self._backend.update(stored)
            message.state = stored.state

    def heartbeat(self, message: IngestionMessage, extend_by: Optional[float] = None) -> None:
        """Extend the visibility deadline of an in-flight message."""
        with self._lock:
            stored = self._current(message)
            stored.visibility_deadline = self._clock() + (
                self.visibility_timeout if extend_by is None else extend_by
            )
            self._backend.update(stored)
            message.visibility_deadline = stored.visibility_deadline

    # -------------------------------------------------------------------------
    # Dead-letter handling
    # -------------------------------------------------------------------------

    def dead_letters(self) -> list[DeadLetterEntry]:
        """Return all dead-letter entries."""
        with self._lock:
            return self._backend.list_dead_letters()

    def dead_letter_depth(self) -> int:
        """Return the number of dead-lettered messages."""
        return len(self.dead_letters())

    def redrive(self, message_id: str) -> IngestionMessage:
        """
        Manually replay a dead-lettered message.

        The entry is removed from the dead-letter store and a fresh message
        with `receive_count` 0 is enqueued for the same object.

        Raises:
            KeyError: If no dead-letter entry has this id
        """
        with self._lock:
            entry = self._backend.remove_dead_letter(message_id)
        if entry is None:
            raise KeyError(f"No dead-letter entry for message '{message_id}'")
        object_ref = RawLogObject.from_dict(entry.original_message["object_ref"])
        logger.info(f"Redriving dead-lettered message {message_id}")
        return self.enqueue(object_ref)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def depth(self) -> dict[str, int]:
        """Return counts of visible, in-flight and dead-lettered messages."""
        with self._lock:
            now = self._clock()
            visible = in_flight = 0
            for message in self._backend.iter_messages():
                if message.is_visible(now):
                    visible += 1
                else:
                    in_flight += 1
            return {
                "visible": visible,
                "in_flight": in_flight,
                "dead_letter": len(self._backend.list_dead_letters()),
            }

    def get(self, message_id: str) -> Optional[IngestionMessage]:
        """Return a snapshot of a live message, or None once acked/dead-lettered."""
        with self._lock:
            stored = self._backend.get(message_id)
            return replace(stored) if stored else None

    def close(self) -> None:
        with self._lock:
            self._backend.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _current(self, message: IngestionMessage) -> IngestionMessage:
        """Return a working copy of the stored message; commit it with update()."""
        stored = self._backend.get(message.message_id)
        if (
            stored is None
            or stored.receipt_handle != message.receipt_handle
            or not stored.state.is_in_flight
        ):
            raise ReceiptExpiredError(message.message_id)
        return replace(stored)

    def _dead_letter(self, message: IngestionMessage, now: float) -> None:
        message.transition(MessageState.DEAD_LETTERED)
        entry = DeadLetterEntry(
            original_message=message.to_dict(),
            failure_reason=(
                f"Exceeded max receives ({self.max_receives}) "
                f"after {message.receive_count} deliveries"
            ),
            receive_count=message.receive_count,
            last_error=message.last_error,
            dead_lettered_at=now,
        )
        self._backend.add_dead_letter(entry)
        self._backend.delete(message.message_id)
        logger.error(
            f"Dead-lettered message {message.message_id} "
            f"({message.object_ref.object_key}) after {message.receive_count} "
            f"receives: {message.last_error}"
        )

    def __enter__(self) -> "IngestionQueue":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _describe(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        return f"{type(error).__name__}: {error}"
    return error
