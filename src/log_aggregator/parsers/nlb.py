"""
Network load balancer (TLS listener) access log parser.

Lines are space-separated, one connection per line:

    tls 2.0 2024-03-02T10:00:00 net/my-nlb/c6e77e28c25b2234
    g3d4b5e8bb8464cd 72.21.218.154:51341 172.100.100.185:443 5 2 98 246 -
    arn:aws:acm:... - ECDHE-RSA-AES128-SHA tlsv12 - my-network-loadbalancer
    -c6e77e28c25b2234.elb.us-east-2.amazonaws.com h2 h2 "h2","http/1.1"
    2024-03-02T09:59:58
"""

import shlex
from typing import Optional

from ..config.constants import FORMAT_NLB
from ..exceptions import ParseError
from ..utils.time_utils import parse_timestamp
from .base import LineParser, ParsedRecord
from .registry import ParserRegistry


@ParserRegistry.register(FORMAT_NLB)
class NLBParser(LineParser):
    """Parser for network load balancer access logs."""

    LABELS = (
        "type",
        "version",
        "time",
        "elb",
        "listener",
        "client_port",
        "destination_port",
        "connection_time",
        "tls_handshake_time",
        "received_bytes",
        "sent_bytes",
        "incoming_tls_alert",
        "chosen_cert_arn",
        "chosen_cert_serial",
        "tls_cipher",
        "tls_protocol_version",
        "tls_named_group",
        "domain_name",
        "alpn_fe_protocol",
        "alpn_be_protocol",
        "alpn_client_preference_list",
        "tls_connection_creation_time",
    )

    # type .. sent_bytes
    MIN_FIELD_COUNT = 11

    @property
    def format_kind(self) -> str:
        return FORMAT_NLB

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

        for name in ("received_bytes", "sent_bytes"):
            if not fields[name].isdigit():
                raise ParseError(
                    f"Invalid {name}: {fields[name]!r}",
                    line_number=line_number,
                    line_content=line,
                )

        return ParsedRecord(
            resource_type=FORMAT_NLB,
            resource_name=resource_name,
            event_time=event_time,
            fields=fields,
            raw_line=line,
        )
