"""
Custom exceptions for the log aggregation pipeline.

Provides specialized exception classes for the error taxonomy of the
ingestion -> dispatch -> delivery pipeline. Line-level errors are
recovered locally; object- and delivery-level errors propagate into the
queue's retry / dead-letter mechanism.
"""

from collections.abc import Collection


class AggregatorError(Exception):
    """
    Base exception for all pipeline errors.

    All other pipeline exceptions inherit from this class,
    allowing for broad exception catching when needed.
    """

    pass


class ConfigurationError(AggregatorError):
    """
    Raised when static configuration is invalid.

    Attributes:
        setting: The configuration key that failed validation (optional)
        message: Detailed error message
    """

    def __init__(self, message: str, setting: str | None = None):
        self.setting = setting
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.setting:
            return f"{self.message} (setting='{self.setting}')"
        return self.message


class TransientIOError(AggregatorError):
    """
    Raised when the landing store, queue or sink is temporarily unavailable.

    Always retried with backoff.

    Attributes:
        operation: The operation that failed (e.g. 'get_object', 'put_object')
        key: The object key involved (optional)
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
    ):
        self.operation = operation
        self.key = key
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation='{self.operation}'")
        if self.key:
            parts.append(f"key='{self.key}'")
        return " - ".join(parts)


class ObjectNotFoundError(AggregatorError):
    """Raised when a referenced object does not exist in a store."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: '{key}'")


class FormatUnknownError(AggregatorError):
    """
    Raised when a resource name is not present in the resource type map.

    Never retried; the object is routed to the error partition.

    Attributes:
        resource_name: The unmapped resource name
        known_resources: Resource names present in the map (any collection,
            typically a live keys view of the map)
    """

    error_kind = "FormatUnknown"

    def __init__(
        self,
        resource_name: str,
        known_resources: Collection[str] = (),
    ):
        self.resource_name = resource_name
        self.known_resources = known_resources
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.known_resources:
            return (
                f"Cannot determine log format of '{self.resource_name}' "
                f"({len(self.known_resources)} resources mapped)"
            )
        return f"Cannot determine log format of '{self.resource_name}'"


class ParseError(AggregatorError):
    """
    Raised when a single log line cannot be parsed.

    Counted and skipped by the dispatcher; the object continues.

    Attributes:
        line_number: The line number where parsing failed (optional)
        line_content: The content of the problematic line (optional)
        message: Detailed error message
    """

    def __init__(
        self,
        message: str,
        line_number: int | None = None,
        line_content: str | None = None,
    ):
        self.line_number = line_number
        self.line_content = line_content
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.line_number is not None and self.line_content:
            # Truncate long lines for readability
            content = (
                self.line_content[:100] + "..."
                if len(self.line_content) > 100
                else self.line_content
            )
            return f"{self.message} (line {self.line_number}: {content!r})"
        elif self.line_number is not None:
            return f"{self.message} (line {self.line_number})"
        return self.message


class ObjectParseFailure(AggregatorError):
    """
    Raised when too many lines of one object fail to parse.

    Treated as a dispatcher-level failure: the message is left un-acked
    and follows the redelivery / dead-letter path.

    Attributes:
        object_key: Key of the object that failed
        failed_lines: Number of lines that raised ParseError
        total_lines: Number of candidate lines in the object
        threshold: Configured maximum failure ratio
    """

    def __init__(
        self,
        object_key: str,
        failed_lines: int,
        total_lines: int,
        threshold: float,
    ):
        self.object_key = object_key
        self.failed_lines = failed_lines
        self.total_lines = total_lines
        self.threshold = threshold
        super().__init__(self._format_message())

    @property
    def failure_ratio(self) -> float:
        if self.total_lines == 0:
            return 0.0
        return self.failed_lines / self.total_lines

    def _format_message(self) -> str:
        return (
            f"Object '{self.object_key}' failed to parse: "
            f"{self.failed_lines}/{self.total_lines} lines malformed "
            f"({self.failure_ratio:.1%} > {self.threshold:.1%})"
        )


class DeliveryFailure(AggregatorError):
    """
    Raised when the sink rejects a batch and no fallback write succeeded.

    Attributes:
        partition: Partition path prefix of the batch (optional)
        batch_id: Identifier of the batch (optional)
    """

    error_kind = "DeliveryFailure"

    def __init__(
        self,
        message: str,
        partition: str | None = None,
        batch_id: str | None = None,
    ):
        self.partition = partition
        self.batch_id = batch_id
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.partition:
            parts.append(f"partition='{self.partition}'")
        if self.batch_id:
            parts.append(f"batch_id='{self.batch_id}'")
        return " - ".join(parts)


class MalformedEventError(AggregatorError):
    """
    Raised when an object creation notification cannot be interpreted.

    Attributes:
        reason: Explanation of what is wrong with the event
    """

    def __init__(self, message: str, reason: str | None = None):
        self.reason = reason
        self.message = message
        super().__init__(f"{message}: {reason}" if reason else message)


class InvalidTransitionError(AggregatorError):
    """Raised when a queue message is moved through an illegal lifecycle step."""

    def __init__(self, message_id: str, current: str, requested: str):
        self.message_id = message_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Message '{message_id}' cannot move from {current} to {requested}"
        )


class ReceiptExpiredError(AggregatorError):
    """
    Raised when an ack/release uses a receipt that is no longer valid.

    This happens when the visibility timeout elapsed and the message was
    handed to another worker in the meantime.
    """

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Receipt for message '{message_id}' is no longer valid")
