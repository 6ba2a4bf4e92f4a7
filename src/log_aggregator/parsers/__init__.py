"""
Per-format line parsers.

Importing this package registers the alb, nlb, clf and cf parsers.

Usage:
    from log_aggregator.parsers import get_parser

    parser = get_parser("alb")
    record = parser.parse_line(line, resource_name="my-alb")
"""

from .alb import ALBParser
from .base import LineParser, ParsedRecord
from .cf import CFParser
from .clf import CLFParser
from .nlb import NLBParser
from .registry import ParserRegistry, get_parser, list_formats

__all__ = [
    "LineParser",
    "ParsedRecord",
    "ParserRegistry",
    "get_parser",
    "list_formats",
    "ALBParser",
    "NLBParser",
    "CLFParser",
    "CFParser",
]
