"""
Application load balancer access log parser.

Lines are space-separated with quoted request, user agent and a few
trailing text fields:

    http 2024-03-02T10:00:00.123456Z app/my-alb/50dc6c495c0c9188
    192.168.131.39:2817 10.0.0.1:80 0.000 0.001 0.000 200 200 34 366
    "GET http://www.example.com:80/ HTTP/1.1" "curl/7.46.0" - - arn:...
    "Root=1-58337262-36d228ad5d99923122bbe354" "-" "-" 0 ...

shlex handles the quoted fields. Columns beyond the known labels are
ignored so newer log versions still parse.
"""

import shlex
from typing import Optional

from ..config.constants import FORMAT_ALB
from ..exceptions import ParseError
from ..utils.time_utils import parse_timestamp
from .base import LineParser, ParsedRecord
from .registry import ParserRegistry


@ParserRegistry.register(FORMAT_ALB)
class ALBParser(LineParser):
    """Parser for application load balancer access logs."""

    LABELS = (
        "type",
        "time",
        "elb",
        "client_port",
        "target_port",
        "request_processing_time",
        "target_processing_time",
        "response_processing_time",
        "elb_status_code",
        "target_status_code",
        "received_bytes",
        "sent_bytes",
        "request",
        "user_agent",
        "ssl_cipher",
        "ssl_protocol",
        "target_group_arn",
        "trace_id",
        "domain_name",
        "chosen_cert_arn",
        "matched_rule_priority",
        "request_creation_time",
        "actions_executed",
        "redirect_url",
        "error_reason",
        "target_port_list",
        "target_status_code_list",
        "classification",
        "classification_reason",
        "conn_trace_id",
    )

    # type .. target_group_arn
    MIN_FIELD_COUNT = 17

    @property
    def format_kind(self) -> str:
        return FORMAT_ALB

    def parse_line(
        self,
        line: str,
        resource_name: str = "",
        line_number: Optional[int] = None,
    ) -> ParsedRecord:
        try:
            values = shlex.split(line)
        except ValueError as e:
            raise ParseError(
                f"Unbalanced quoting: {e}", line_number=line_number, line_content=line
            ) from e

        fields = self._label_values(values, line, line_number)

        try:
            event_time = parse_timestamp(fields["time"])
        except ValueError as e:
            raise ParseError(
                f"Invalid time field: {fields['time']!r}",
                line_number=line_number,
                line_content=line,
            ) from e

        status = fields["elb_status_code"]
        if status != "-" and not status.isdigit():
            raise ParseError(
                f"Invalid elb_status_code: {status!r}",
                line_number=line_number,
                line_content=line,
            )

        # client:port must carry a port separator
        if ":" not in fields["client_port"]:
            raise ParseError(
                f"Invalid client:port field: {fields['client_port']!r}",
                line_number=line_number,
                line_content=line,
            )

        return ParsedRecord(
            resource_type=FORMAT_ALB,
            resource_name=resource_name,
            event_time=event_time,
            fields=fields,
            raw_line=line,
        )
