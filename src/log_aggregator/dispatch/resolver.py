"""
Resource-type resolver.

Maps a resource name (the first segment of a landing object key) to the
log format kind its objects are written in. The map is built once at
startup and never mutated.
"""

import json
import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Union

from ..config.constants import FORMAT_ALB, FORMAT_CF, FORMAT_CLF, FORMAT_NLB
from ..config.topology import Topology
from ..exceptions import ConfigurationError, FormatUnknownError

logger = logging.getLogger(__name__)


class FormatKind(str, Enum):
    """Closed set of supported log formats."""

    ALB = FORMAT_ALB
    NLB = FORMAT_NLB
    CLF = FORMAT_CLF
    CF = FORMAT_CF

    @classmethod
    def from_value(cls, value: Union[str, "FormatKind"]) -> "FormatKind":
        """
        Convert a string to a FormatKind.

        Raises:
            ConfigurationError: If the value names no supported format
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported format kind {value!r}, expected one of "
                f"{', '.join(k.value for k in cls)}",
                setting="format_kind",
            ) from None


class ResourceTypeMap(Mapping[str, FormatKind]):
    """
    Immutable mapping of resource name to format kind.

    Example:
        resource_map = ResourceTypeMap.from_pairs(
            [("my-alb", "alb"), ("my-distribution", "cf")]
        )
        resource_map["my-alb"]  # FormatKind.ALB
    """

    def __init__(self, entries: Mapping[str, FormatKind]):
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def from_pairs(
        cls, pairs: Iterable[tuple[str, Union[str, FormatKind]]]
    ) -> "ResourceTypeMap":
        """
        Build a map from (resource_name, format_kind) pairs.

        Repeating a name with the same kind is allowed.

        Raises:
            ConfigurationError: On empty names, unsupported kinds, or a
                name mapped to two different kinds
        """
        entries: dict[str, FormatKind] = {}
        for name, kind in pairs:
            name = str(name).strip()
            if not name:
                raise ConfigurationError(
                    "Resource name must not be empty", setting="resource_map"
                )
            format_kind = FormatKind.from_value(kind)
            existing = entries.get(name)
            if existing is not None and existing is not format_kind:
                raise ConfigurationError(
                    f"Resource '{name}' mapped to both '{existing.value}' and "
                    f"'{format_kind.value}'",
                    setting="resource_map",
                )
            entries[name] = format_kind
        return cls(entries)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ResourceTypeMap":
        """Build a map from a {resource_name: format_kind} mapping."""
        return cls.from_pairs(mapping.items())

    @classmethod
    def from_json(cls, text: str) -> "ResourceTypeMap":
        """
        Build a map from JSON text.

        Accepts either an object {"name": "kind", ...} or a list of
        {"resource_name": ..., "format_kind": ...} entries.

        Raises:
            ConfigurationError: If the text is not valid JSON of either shape
        """
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ConfigurationError(
                f"Resource map is not valid JSON: {e}", setting="resource_map"
            ) from e

        if isinstance(data, dict):
            return cls.from_mapping(data)
        if isinstance(data, list):
            try:
                pairs = [(item["resource_name"], item["format_kind"]) for item in data]
            except (KeyError, TypeError) as e:
                raise ConfigurationError(
                    "Resource map entries need 'resource_name' and 'format_kind'",
                    setting="resource_map",
                ) from e
            return cls.from_pairs(pairs)
        raise ConfigurationError(
            "Resource map must be a JSON object or list", setting="resource_map"
        )

    @classmethod
    def from_topology(cls, topology: Topology) -> "ResourceTypeMap":
        """Build the map for the resources declared by a deployment topology."""
        return cls.from_pairs(topology.resource_pairs())

    def __getitem__(self, resource_name: str) -> FormatKind:
        return self._entries[resource_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        items = ", ".join(f"{k}={v.value}" for k, v in self._entries.items())
        return f"ResourceTypeMap({items})"


class ResourceTypeResolver:
    """
    Resolves resource names to format kinds.

    Example:
        resolver = ResourceTypeResolver(resource_map)
        kind = resolver.resolve("my-alb")
    """

    def __init__(self, resource_map: ResourceTypeMap):
        self._map = resource_map
        logger.debug(f"Resolver initialized with {len(resource_map)} resources")

    @property
    def resource_map(self) -> ResourceTypeMap:
        return self._map

    def resolve(self, resource_name: str) -> FormatKind:
        """
        Look up the format kind of a resource.

        Raises:
            FormatUnknownError: If the resource is not in the map
        """
        try:
            return self._map[resource_name]
        except KeyError:
            raise FormatUnknownError(resource_name, self._map.keys()) from None
