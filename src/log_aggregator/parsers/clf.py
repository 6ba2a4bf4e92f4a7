"""
Apache common / combined log format parser.

    10.0.0.5 - - [02/Mar/2024:10:00:00 +0000] "GET /index.html HTTP/1.1"
    200 512 "-" "Mozilla/5.0"

The referer and user agent are optional (common log format). Requests
made by the load balancer health checker are parsed but filtered.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from ..config.constants import FORMAT_CLF, HEALTH_CHECK_USER_AGENT_PREFIX
from ..exceptions import ParseError
from .base import LineParser, ParsedRecord
from .registry import ParserRegistry

CLF_PATTERN = re.compile(
    r"^(?P<remote_host>\S+) (?P<remote_logname>\S+) (?P<remote_user>\S+) "
    r"\[(?P<time>[^\]]+)\] "
    r'"(?P<request>[^"]*)" '
    r"(?P<status>\d{3}|-) (?P<size>\d+|-)"
    r'(?: "(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)")?\s*$'
)

CLF_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


@ParserRegistry.register(FORMAT_CLF)
class CLFParser(LineParser):
    """Parser for Apache-style access logs shipped from instances."""

    LABELS = (
        "remote_host",
        "remote_logname",
        "remote_user",
        "time",
        "request",
        "status",
        "size",
        "referer",
        "user_agent",
    )

    def __init__(self, health_check_prefix: str = HEALTH_CHECK_USER_AGENT_PREFIX):
        self._health_check_prefix = health_check_prefix.lower()

    @property
    def format_kind(self) -> str:
        return FORMAT_CLF

    def parse_line(
        self,
        line: str,
        resource_name: str = "",
        line_number: Optional[int] = None,
    ) -> ParsedRecord:
        match = CLF_PATTERN.match(line)
        if match is None:
            raise ParseError(
                "Line does not match common log format",
                line_number=line_number,
                line_content=line,
            )

        try:
            event_time = datetime.strptime(match.group("time"), CLF_TIME_FORMAT)
        except ValueError as e:
            raise ParseError(
                f"Invalid time field: {match.group('time')!r}",
                line_number=line_number,
                line_content=line,
            ) from e

        fields = {label: match.group(label) for label in self.LABELS}
        # Common log format has no referer / user agent
        fields = {k: v for k, v in fields.items() if v is not None}

        return ParsedRecord(
            resource_type=FORMAT_CLF,
            resource_name=resource_name,
            event_time=event_time.astimezone(timezone.utc),
            fields=fields,
            raw_line=line,
        )

    def is_filtered(self, record: ParsedRecord) -> bool:
        """Drop load balancer health check requests."""
        user_agent = record.fields.get("user_agent", "")
        return user_agent.lower().startswith(self._health_check_prefix)
