"""
Format dispatcher.

Turns a received queue message into delivered records:

    resolve format -> fetch raw object -> parse lines -> heartbeat -> submit -> ack

A message is acked only after every record was accepted by the delivery
stream. Any failure leaves it un-acked so the queue redelivers it after
the visibility timeout, until max_receives sends it to dead-letter.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config.constants import DEFAULT_MAX_LINE_FAILURE_RATIO, GENERIC_RESOURCE_TYPE
from ..delivery.stream import DeliveryStream
from ..exceptions import (
    AggregatorError,
    FormatUnknownError,
    ObjectParseFailure,
    ParseError,
    ReceiptExpiredError,
)
from ..ingestion.messages import IngestionMessage
from ..ingestion.queue import IngestionQueue
from ..monitoring.retry_handler import RetryConfig, RetryManager
from ..parsers import LineParser, ParsedRecord, get_parser
from ..storage.base import ObjectStore, RawLogObject
from ..utils.file_utils import iter_text_lines
from .resolver import ResourceTypeResolver

logger = logging.getLogger(__name__)

# Outcome statuses
STATUS_ACKED = "acked"
STATUS_FORMAT_UNKNOWN = "format_unknown"
STATUS_FAILED = "failed"


@dataclass
class ParseSummary:
    """Line counts for one parsed object."""

    records: list[ParsedRecord] = field(default_factory=list)
    candidate_lines: int = 0
    failed_lines: int = 0
    filtered_lines: int = 0

    @property
    def failure_ratio(self) -> float:
        if self.candidate_lines == 0:
            return 0.0
        return self.failed_lines / self.candidate_lines


@dataclass
class MessageOutcome:
    """Result of dispatching one message."""

    message_id: str
    object_key: str
    status: str
    resource_type: Optional[str] = None
    records: int = 0
    skipped_lines: int = 0
    filtered_lines: int = 0
    error: Optional[str] = None

    @property
    def acked(self) -> bool:
        return self.status in (STATUS_ACKED, STATUS_FORMAT_UNKNOWN)

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "key": self.object_key,
            "status": self.status,
            "resource_type": self.resource_type,
            "records": self.records,
            "skipped_lines": self.skipped_lines,
            "filtered_lines": self.filtered_lines,
            "error": self.error,
        }


@dataclass
class DispatcherStats:
    """Counters across every dispatched message."""

    messages_acked: int = 0
    messages_failed: int = 0
    format_unknown: int = 0
    records_submitted: int = 0
    lines_skipped: int = 0
    lines_filtered: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome.status == STATUS_FAILED:
            self.messages_failed += 1
        else:
            self.messages_acked += 1
        if outcome.status == STATUS_FORMAT_UNKNOWN:
            self.format_unknown += 1
        self.records_submitted += outcome.records
        self.lines_skipped += outcome.skipped_lines
        self.lines_filtered += outcome.filtered_lines

    def to_dict(self) -> dict:
        return {
            "messages_acked": self.messages_acked,
            "messages_failed": self.messages_failed,
            "format_unknown": self.format_unknown,
            "records_submitted": self.records_submitted,
            "lines_skipped": self.lines_skipped,
            "lines_filtered": self.lines_filtered,
        }


class FormatDispatcher:
    """
    Processes queue messages into delivery stream submissions.

    The dispatcher is shared by all worker threads; it holds no
    per-message state.

    Example:
        dispatcher = FormatDispatcher(landing_store, queue, resolver, stream)
        outcomes = dispatcher.process(queue.receive(max_messages=10))
    """

    def __init__(
        self,
        store: ObjectStore,
        queue: IngestionQueue,
        resolver: ResourceTypeResolver,
        stream: DeliveryStream,
        max_line_failure_ratio: float = DEFAULT_MAX_LINE_FAILURE_RATIO,
        retry_config: Optional[RetryConfig] = None,
        retry_manager: Optional[RetryManager] = None,
        parser_factory: Callable[[str], LineParser] = get_parser,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: Landing store holding raw log objects
            queue: Queue the messages were received from
            resolver: Resource name to format kind lookup
            stream: Destination of parsed records
            max_line_failure_ratio: Fraction of malformed lines above which
                the whole object fails
            retry_config: Retry settings for raw object fetches
            retry_manager: Preconfigured retry manager (overrides retry_config)
            parser_factory: Returns the parser for a format kind
        """
        if not 0.0 <= max_line_failure_ratio <= 1.0:
            raise ValueError("max_line_failure_ratio must be between 0 and 1")

        self._store = store
        self._queue = queue
        self._resolver = resolver
        self._stream = stream
        self.max_line_failure_ratio = max_line_failure_ratio
        self._retry = retry_manager or RetryManager(config=retry_config)
        self._parser_factory = parser_factory
        self._parsers: dict[str, LineParser] = {}
        self._parsers_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.stats = DispatcherStats()

    def process(self, batch: list[IngestionMessage]) -> list[MessageOutcome]:
        """
        Dispatch a batch of received messages.

        Each message is handled independently; one failure never affects
        its siblings.
        """
        return [self.process_message(message) for message in batch]

    def process_message(self, message: IngestionMessage) -> MessageOutcome:
        """
        Dispatch one received message and ack or fail it.

        Returns:
            MessageOutcome describing what happened
        """
        obj = message.object_ref
        try:
            self._queue.start_processing(message)
        except ReceiptExpiredError as e:
            logger.warning(f"Skipping message {message.message_id}: {e}")
            return self._finish(
                MessageOutcome(
                    message.message_id, obj.object_key, STATUS_FAILED, error=str(e)
                )
            )
        except AggregatorError as e:
            # Message stays RECEIVED and is redelivered after the visibility timeout
            logger.error(
                f"Could not start message {message.message_id}: {type(e).__name__}: {e}"
            )
            return self._finish(
                MessageOutcome(
                    message.message_id,
                    obj.object_key,
                    STATUS_FAILED,
                    error=f"{type(e).__name__}: {e}",
                )
            )

        try:
            outcome = self._dispatch(message, obj)
        except Exception as e:
            logger.error(
                f"Failed to process {obj.object_key} "
                f"(attempt {message.receive_count}): {type(e).__name__}: {e}"
            )
            self._settle(message, error=e)
            return self._finish(
                MessageOutcome(
                    message.message_id,
                    obj.object_key,
                    STATUS_FAILED,
                    error=f"{type(e).__name__}: {e}",
                )
            )

        settle_error = self._settle(message)
        if settle_error is not None:
            outcome.status = STATUS_FAILED
            outcome.error = settle_error
        logger.info(json.dumps(outcome.to_dict()))
        return self._finish(outcome)

    def _dispatch(self, message: IngestionMessage, obj: RawLogObject) -> MessageOutcome:
        resource_name = obj.resource_name
        try:
            kind = self._resolver.resolve(resource_name)
        except FormatUnknownError as e:
            self._submit_format_unknown(obj, e)
            return MessageOutcome(
                message.message_id,
                obj.object_key,
                STATUS_FORMAT_UNKNOWN,
                resource_type=GENERIC_RESOURCE_TYPE,
                error=str(e),
            )

        data = self._fetch(obj)
        summary = self.parse_object(data, obj, kind.value)

        if summary.failure_ratio > self.max_line_failure_ratio:
            raise ObjectParseFailure(
                obj.object_key,
                summary.failed_lines,
                summary.candidate_lines,
                self.max_line_failure_ratio,
            )

        # Keep the message hidden while its records are submitted
        self._queue.heartbeat(message)
        for record in summary.records:
            self._stream.submit(record)

        return MessageOutcome(
            message.message_id,
            obj.object_key,
            STATUS_ACKED,
            resource_type=kind.value,
            records=len(summary.records),
            skipped_lines=summary.failed_lines,
            filtered_lines=summary.filtered_lines,
        )

    def parse_object(
        self, data: bytes, obj: RawLogObject, format_kind: str
    ) -> ParseSummary:
        """
        Parse every line of a raw object.

        Blank lines and format header lines are not counted. Malformed
        lines are counted and skipped.
        """
        parser = self._parser(format_kind)
        summary = ParseSummary()
        resource_name = obj.resource_name

        for line_number, line in enumerate(
            iter_text_lines(data, obj.object_key), start=1
        ):
            if not line.strip() or parser.is_header(line):
                continue
            summary.candidate_lines += 1
            try:
                record = parser.parse_line(line, resource_name, line_number)
            except ParseError as e:
                summary.failed_lines += 1
                logger.debug(f"{obj.object_key}: {e}")
                continue
            if parser.is_filtered(record):
                summary.filtered_lines += 1
                continue
            summary.records.append(record)

        if summary.failed_lines:
            logger.warning(
                f"{obj.object_key}: skipped {summary.failed_lines}/"
                f"{summary.candidate_lines} malformed lines"
            )
        return summary

    def _parser(self, format_kind: str) -> LineParser:
        with self._parsers_lock:
            parser = self._parsers.get(format_kind)
            if parser is None:
                parser = self._parser_factory(format_kind)
                self._parsers[format_kind] = parser
            return parser

    def _fetch(self, obj: RawLogObject) -> bytes:
        result = self._retry.execute_with_retry(self._store.get_object, obj.object_key)
        if not result.success:
            raise result.last_error
        return result.result

    def _submit_format_unknown(self, obj: RawLogObject, error: FormatUnknownError) -> None:
        logger.warning(f"{obj.object_key}: {error}")
        self._stream.submit_error(
            {
                "error_message": str(error),
                "resource_type": GENERIC_RESOURCE_TYPE,
                "resource_name": error.resource_name,
                "object": obj.to_dict(),
            },
            error.error_kind,
            obj.created_at,
        )

    def _settle(
        self, message: IngestionMessage, error: Optional[Exception] = None
    ) -> Optional[str]:
        """
        Ack on success, record the failure otherwise.

        Returns:
            Error text when an ack could not be committed, else None
        """
        try:
            if error is None:
                self._queue.ack(message)
            else:
                self._queue.fail(message, error)
        except ReceiptExpiredError as e:
            # Visibility elapsed mid-processing; the queue already redelivered
            logger.warning(f"Could not settle message {message.message_id}: {e}")
        except AggregatorError as e:
            logger.error(
                f"Could not settle message {message.message_id}: "
                f"{type(e).__name__}: {e}"
            )
            if error is None:
                return f"{type(e).__name__}: {e}"
        return None

    def _finish(self, outcome: MessageOutcome) -> MessageOutcome:
        with self._stats_lock:
            self.stats.record(outcome)
        return outcome
