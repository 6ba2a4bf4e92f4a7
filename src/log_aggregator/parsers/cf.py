"""
CDN distribution access log parser (W3C extended, tab-separated).

    #Version: 1.0
    #Fields: date time x-edge-location sc-bytes c-ip cs-method ...
    2024-03-02	10:00:00	SEA19-C1	2390	192.0.2.10	GET	d111.cloudfront.net ...

Directive lines starting with '#' are skipped. Columns follow the standard
distribution log layout; user agent and referer are URL-decoded.
"""

import urllib.parse
from typing import Optional

from ..config.constants import FORMAT_CF
from ..exceptions import ParseError
from ..utils.time_utils import parse_timestamp
from .base import LineParser, ParsedRecord
from .registry import ParserRegistry

# Fields whose values arrive percent-encoded
URL_ENCODED_FIELDS = ("cs_referer", "cs_user_agent")


@ParserRegistry.register(FORMAT_CF)
class CFParser(LineParser):
    """Parser for CDN distribution access logs."""

    LABELS = (
        "date",
        "time",
        "x_edge_location",
        "sc_bytes",
        "c_ip",
        "cs_method",
        "cs_host",
        "cs_uri_stem",
        "sc_status",
        "cs_referer",
        "cs_user_agent",
        "cs_uri_query",
        "cs_cookie",
        "x_edge_result_type",
        "x_edge_request_id",
        "x_host_header",
        "cs_protocol",
        "cs_bytes",
        "time_taken",
        "x_forwarded_for",
        "ssl_protocol",
        "ssl_cipher",
        "x_edge_response_result_type",
        "cs_protocol_version",
        "fle_status",
        "fle_encrypted_fields",
        "c_port",
        "time_to_first_byte",
        "x_edge_detailed_result_type",
        "sc_content_type",
        "sc_content_len",
        "sc_range_start",
        "sc_range_end",
    )

    # date .. cs_user_agent
    MIN_FIELD_COUNT = 11

    @property
    def format_kind(self) -> str:
        return FORMAT_CF

    def is_header(self, line: str) -> bool:
        return line.startswith("#")

    def parse_line(
        self,
        line: str,
        resource_name: str = "",
        line_number: Optional[int] = None,
    ) -> ParsedRecord:
        fields = self._label_values(line.split("\t"), line, line_number)

        try:
            event_time = parse_timestamp(f"{fields['date']}T{fields['time']}Z")
        except ValueError as e:
            raise ParseError(
                f"Invalid date/time: {fields['date']!r} {fields['time']!r}",
                line_number=line_number,
                line_content=line,
            ) from e

        status = fields["sc_status"]
        if status != "-" and not status.isdigit():
            raise ParseError(
                f"Invalid sc_status: {status!r}",
                line_number=line_number,
                line_content=line,
            )

        for name in URL_ENCODED_FIELDS:
            if name in fields and fields[name] != "-":
                fields[name] = urllib.parse.unquote(fields[name])

        return ParsedRecord(
            resource_type=FORMAT_CF,
            resource_name=resource_name,
            event_time=event_time,
            fields=fields,
            raw_line=line,
        )
