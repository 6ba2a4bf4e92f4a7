"""
Parser registry.

Provides registration and discovery of per-format line parsers.
"""

import logging
from typing import Type

from ..exceptions import FormatUnknownError
from .base import LineParser

logger = logging.getLogger(__name__)


class ParserRegistry:
    """
    Registry for format parsers.

    Usage:
        # Register using decorator
        @ParserRegistry.register("alb")
        class ALBParser(LineParser):
            ...

        # Or register manually
        ParserRegistry.register_parser("alb", ALBParser)

        # Get parser instance
        parser = ParserRegistry.get_parser("alb")
    """

    _parsers: dict[str, Type[LineParser]] = {}

    @classmethod
    def register(cls, format_kind: str):
        """
        Decorator to register a parser class.

        Args:
            format_kind: Format identifier for registry lookup
        """

        def decorator(parser_class: Type[LineParser]) -> Type[LineParser]:
            cls.register_parser(format_kind, parser_class)
            return parser_class

        return decorator

    @classmethod
    def register_parser(cls, format_kind: str, parser_class: Type[LineParser]) -> None:
        """
        Register a parser class for a format kind.

        Raises:
            TypeError: If parser_class doesn't inherit from LineParser
        """
        if not issubclass(parser_class, LineParser):
            raise TypeError(
                f"Parser class must inherit from LineParser, "
                f"got {parser_class.__name__}"
            )

        format_kind = format_kind.lower()

        if format_kind in cls._parsers:
            logger.warning(f"Overwriting existing parser for format '{format_kind}'")

        cls._parsers[format_kind] = parser_class
        logger.debug(f"Registered parser: {format_kind}")

    @classmethod
    def get_parser(cls, format_kind: str) -> LineParser:
        """
        Get a parser instance by format kind.

        Raises:
            FormatUnknownError: If no parser is registered for the format
        """
        format_kind = format_kind.lower()
        if format_kind not in cls._parsers:
            raise FormatUnknownError(format_kind, cls._parsers.keys())
        return cls._parsers[format_kind]()

    @classmethod
    def list_formats(cls) -> list[str]:
        """Return sorted list of registered format kinds."""
        return sorted(cls._parsers)

    @classmethod
    def is_registered(cls, format_kind: str) -> bool:
        return format_kind.lower() in cls._parsers


def get_parser(format_kind: str) -> LineParser:
    """
    Get a parser instance by format kind.

    Convenience function wrapping ParserRegistry.get_parser().
    """
    return ParserRegistry.get_parser(format_kind)


def list_formats() -> list[str]:
    """
    List all registered format kinds.

    Convenience function wrapping ParserRegistry.list_formats().
    """
    return ParserRegistry.list_formats()
