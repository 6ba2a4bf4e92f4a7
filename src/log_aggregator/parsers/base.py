"""
Abstract base class and data model for per-format line parsers.

A parser turns one raw log line into a ParsedRecord or raises ParseError.
Parsers hold no state between lines, so one instance can serve every
worker thread.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..exceptions import ParseError


@dataclass
class ParsedRecord:
    """
    Structured record produced from one log line.

    Attributes:
        resource_type: Format kind of the producing resource (alb, nlb, clf, cf)
        resource_name: Name of the producing resource
        event_time: Time of the logged request (UTC)
        fields: Format-specific fields in log column order
        raw_line: The line the record was parsed from
    """

    resource_type: str
    resource_name: str
    event_time: datetime
    fields: dict[str, Any] = field(default_factory=dict)
    raw_line: str = ""

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to the delivered representation.

        resource_type and resource_name come first, followed by the
        format fields in column order.
        """
        result: dict[str, Any] = {
            "resource_type": self.resource_type,
            "resource_name": self.resource_name,
        }
        result.update(self.fields)
        return result

    def to_json(self) -> str:
        """Serialize as one compact JSON line (without trailing newline)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


class LineParser(ABC):
    """
    Abstract base class for all format parsers.

    Subclasses must implement:
        - format_kind: Property returning the format identifier
        - parse_line(): Turn a line into a ParsedRecord or raise ParseError

    Subclasses may override:
        - is_header(): Lines to skip without counting (e.g. W3C directives)
        - is_filtered(): Well-formed records to drop (e.g. health checks)

    Example Implementation:
        @ParserRegistry.register("alb")
        class ALBParser(LineParser):
            @property
            def format_kind(self) -> str:
                return "alb"

            def parse_line(self, line, resource_name="", line_number=None):
                ...
    """

    # Column labels in log order
    LABELS: tuple[str, ...] = ()

    # Minimum number of columns for a line to be considered well-formed
    MIN_FIELD_COUNT = 1

    @property
    @abstractmethod
    def format_kind(self) -> str:
        """Return the format identifier (e.g. 'alb')."""
        pass

    @abstractmethod
    def parse_line(
        self,
        line: str,
        resource_name: str = "",
        line_number: Optional[int] = None,
    ) -> ParsedRecord:
        """
        Parse one log line.

        Args:
            line: Raw log line without trailing newline
            resource_name: Name of the resource that produced the line
            line_number: 1-based line number, used in error messages

        Returns:
            ParsedRecord tagged with this parser's format kind

        Raises:
            ParseError: If the line is malformed
        """
        pass

    def is_header(self, line: str) -> bool:
        """Return True for lines that carry no record (skipped, not counted)."""
        return False

    def is_filtered(self, record: ParsedRecord) -> bool:
        """Return True for well-formed records that should not be delivered."""
        return False

    def _label_values(
        self, values: list[str], line: str, line_number: Optional[int]
    ) -> dict[str, str]:
        """Pair column values with LABELS, validating the column count."""
        if len(values) < self.MIN_FIELD_COUNT:
            raise ParseError(
                f"Line has {len(values)} fields, expected at least "
                f"{self.MIN_FIELD_COUNT}",
                line_number=line_number,
                line_content=line,
            )
        return dict(zip(self.LABELS, values))
