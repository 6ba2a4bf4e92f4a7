"""
Worker pool driving the dispatcher.

W worker threads each receive up to B messages at a time, so at most
W x B messages are in flight. Workers process their batch message by
message; on stop, messages a worker has not started are released back to
the queue without ack.
"""

import logging
import threading
from typing import Optional

from ..config.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_WORKERS,
)
from ..exceptions import AggregatorError, ReceiptExpiredError
from ..ingestion.queue import IngestionQueue
from .dispatcher import FormatDispatcher, MessageOutcome

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Runs dispatcher workers against the ingestion queue.

    Example:
        pool = WorkerPool(queue, dispatcher, workers=4, batch_size=10)
        pool.start()
        ...
        pool.stop(drain=True)
    """

    def __init__(
        self,
        queue: IngestionQueue,
        dispatcher: FormatDispatcher,
        workers: int = DEFAULT_WORKERS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self._queue = queue
        self._dispatcher = dispatcher
        self.workers = workers
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker threads."""
        if self._threads:
            raise RuntimeError("WorkerPool already started")
        self._stop.clear()
        for i in range(self.workers):
            thread = threading.Thread(
                target=self._run_worker, name=f"dispatch-worker-{i}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info(
            f"Started {self.workers} workers (batch size {self.batch_size})"
        )

    def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop the workers.

        Args:
            drain: Wait for workers to finish the message they hold
            timeout: Maximum seconds to wait per worker when draining
        """
        self._stop.set()
        if drain:
            for thread in self._threads:
                thread.join(timeout)
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning(f"Workers still running after stop: {', '.join(alive)}")
        self._threads = []
        logger.info("Worker pool stopped")

    def run_once(self) -> list[MessageOutcome]:
        """Receive and process a single batch on the calling thread."""
        return self._process_batch(self._queue.receive(max_messages=self.batch_size))

    def run_until_empty(self) -> list[MessageOutcome]:
        """
        Process batches on the calling thread until no message is visible.

        Messages waiting out a visibility timeout are not waited for.
        """
        outcomes: list[MessageOutcome] = []
        while not self._stop.is_set():
            batch = self._queue.receive(max_messages=self.batch_size)
            if not batch:
                break
            outcomes.extend(self._process_batch(batch))
        return outcomes

    def _run_worker(self) -> None:
        name = threading.current_thread().name
        logger.debug(f"{name} started")
        while not self._stop.is_set():
            try:
                batch = self._queue.receive(max_messages=self.batch_size)
            except AggregatorError as e:
                logger.error(f"{name}: receive failed: {e}")
                self._stop.wait(self.poll_interval)
                continue
            if not batch:
                self._stop.wait(self.poll_interval)
                continue
            self._process_batch(batch)
        logger.debug(f"{name} exiting")

    def _process_batch(self, batch) -> list[MessageOutcome]:
        outcomes = []
        for index, message in enumerate(batch):
            if self._stop.is_set():
                self._release(batch[index:])
                break
            try:
                outcomes.append(self._dispatcher.process_message(message))
            except Exception as e:
                # Left un-acked; the visibility timeout brings it back
                logger.exception(
                    f"Unhandled error processing message {message.message_id}: {e}"
                )
        return outcomes

    def _release(self, messages) -> None:
        for message in messages:
            try:
                self._queue.release(message, error="released on shutdown")
            except ReceiptExpiredError:
                logger.debug(f"Message {message.message_id} already redelivered")
            except AggregatorError as e:
                logger.error(f"Could not release message {message.message_id}: {e}")
        logger.info(f"Released {len(messages)} unstarted messages")
