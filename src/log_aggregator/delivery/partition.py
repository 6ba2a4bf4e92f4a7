"""
Partition keys and output path rendering.

Delivered records are grouped by (resource_type, day of event_time);
error entries by (error_kind, day). Each flushed batch becomes one object
whose key is rendered from a path template.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from ..config.constants import (
    DEFAULT_ERROR_TEMPLATE,
    DEFAULT_PARTITION_TEMPLATE,
    FORMAT_KINDS,
    GENERIC_RESOURCE_TYPE,
)
from ..exceptions import ConfigurationError
from ..utils.time_utils import ensure_utc

TEMPLATE_FIELDS = ("resource_type", "error_kind", "yyyy", "mm", "dd", "batch_id")


def normalize_resource_type(resource_type: Any) -> str:
    """Return the resource type, or the generic partition if missing or unknown."""
    if isinstance(resource_type, str):
        value = resource_type.strip().lower()
        if value in FORMAT_KINDS:
            return value
    return GENERIC_RESOURCE_TYPE


def new_batch_id() -> str:
    """Return a unique identifier for a flushed batch."""
    return uuid.uuid4().hex


def validate_template(template: str) -> None:
    """
    Check that a path template renders with the known placeholders.

    Raises:
        ConfigurationError: If the template uses an unknown placeholder or
            does not include {batch_id}
    """
    if "{batch_id}" not in template:
        raise ConfigurationError(
            f"Path template must contain {{batch_id}}: {template!r}",
            setting="partition_template",
        )
    try:
        template.format(**{name: "x" for name in TEMPLATE_FIELDS})
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid path template {template!r}: {e}", setting="partition_template"
        ) from e


@dataclass(frozen=True)
class PartitionKey:
    """
    Identity of a delivery partition.

    Attributes:
        resource_type: Format kind of the buffered records (or 'unknown')
        day: UTC calendar day of the records' event time
        error_kind: Set for error partitions (e.g. 'FormatUnknown')
    """

    resource_type: str
    day: date
    error_kind: Optional[str] = None

    @classmethod
    def for_record(cls, resource_type: Any, event_time: datetime) -> "PartitionKey":
        return cls(
            resource_type=normalize_resource_type(resource_type),
            day=ensure_utc(event_time).date(),
        )

    @classmethod
    def for_error(
        cls, error_kind: str, event_time: datetime, resource_type: Any = None
    ) -> "PartitionKey":
        return cls(
            resource_type=normalize_resource_type(resource_type),
            day=ensure_utc(event_time).date(),
            error_kind=error_kind,
        )

    @property
    def is_error(self) -> bool:
        return self.error_kind is not None

    @property
    def name(self) -> str:
        """Human readable partition name used in logs."""
        prefix = f"errors/{self.error_kind}" if self.is_error else self.resource_type
        return f"{prefix}/{self.day.isoformat()}"

    def render(
        self,
        batch_id: str,
        partition_template: str = DEFAULT_PARTITION_TEMPLATE,
        error_template: str = DEFAULT_ERROR_TEMPLATE,
    ) -> str:
        """Render the object key for a batch of this partition."""
        template = error_template if self.is_error else partition_template
        return template.format(
            resource_type=self.resource_type,
            error_kind=self.error_kind or "",
            yyyy=f"{self.day.year:04d}",
            mm=f"{self.day.month:02d}",
            dd=f"{self.day.day:02d}",
            batch_id=batch_id,
        )
