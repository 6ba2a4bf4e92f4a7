"""
Application settings and configuration management.

Supports loading from:
1. YAML files (config.yaml), optionally SOPS-encrypted (config.enc.yaml)
2. Environment variables (fallback)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_ERROR_TEMPLATE,
    DEFAULT_MAX_LINE_FAILURE_RATIO,
    DEFAULT_MAX_RECEIVES,
    DEFAULT_PARTITION_TEMPLATE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETENTION_PERIOD_SECONDS,
    DEFAULT_SINK_BASE_DELAY_SECONDS,
    DEFAULT_SINK_CIRCUIT_FAILURE_THRESHOLD,
    DEFAULT_SINK_CIRCUIT_RECOVERY_SECONDS,
    DEFAULT_SINK_MAX_DELAY_SECONDS,
    DEFAULT_SINK_MAX_RETRIES,
    DEFAULT_SIZE_THRESHOLD_BYTES,
    DEFAULT_TIME_THRESHOLD_SECONDS,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
    DEFAULT_WORKERS,
)
from .topology import Topology

logger = logging.getLogger(__name__)


def _safe_int(key: str, default: int) -> int:
    """Safely parse int from env var, using default on error."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _safe_float(key: str, default: float) -> float:
    """Safely parse float from env var, using default on error."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


# =============================================================================
# Queue Settings
# =============================================================================


@dataclass
class QueueSettings:
    """Configuration of the ingestion queue and its dead-letter handling."""

    backend: str = "memory"
    sqlite_path: str = "data/ingestion-queue.db"
    visibility_timeout_seconds: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS
    retention_period_seconds: float = DEFAULT_RETENTION_PERIOD_SECONDS
    max_receives: int = DEFAULT_MAX_RECEIVES

    def validate(self) -> list[str]:
        """Validate settings values. Returns list of errors."""
        errors = []
        if self.backend not in ("memory", "sqlite"):
            errors.append(f"queue.backend must be memory or sqlite, got {self.backend}")
        if self.visibility_timeout_seconds <= 0:
            errors.append(
                f"queue.visibility_timeout_seconds must be > 0, "
                f"got {self.visibility_timeout_seconds}"
            )
        if self.retention_period_seconds <= 0:
            errors.append(
                f"queue.retention_period_seconds must be > 0, "
                f"got {self.retention_period_seconds}"
            )
        if self.max_receives < 1:
            errors.append(f"queue.max_receives must be >= 1, got {self.max_receives}")
        return errors

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "QueueSettings":
        return cls(
            backend=config.get("backend", "memory"),
            sqlite_path=config.get("sqlite_path", "data/ingestion-queue.db"),
            visibility_timeout_seconds=config.get(
                "visibility_timeout_seconds", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
            ),
            retention_period_seconds=config.get(
                "retention_period_seconds", DEFAULT_RETENTION_PERIOD_SECONDS
            ),
            max_receives=config.get("max_receives", DEFAULT_MAX_RECEIVES),
        )

    @classmethod
    def from_env(cls) -> "QueueSettings":
        return cls(
            backend=os.environ.get("QUEUE_BACKEND", "memory"),
            sqlite_path=os.environ.get("QUEUE_SQLITE_PATH", "data/ingestion-queue.db"),
            visibility_timeout_seconds=_safe_float(
                "QUEUE_VISIBILITY_TIMEOUT", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
            ),
            retention_period_seconds=_safe_float(
                "QUEUE_RETENTION_PERIOD", DEFAULT_RETENTION_PERIOD_SECONDS
            ),
            max_receives=_safe_int("QUEUE_MAX_RECEIVES", DEFAULT_MAX_RECEIVES),
        )


# =============================================================================
# Dispatcher Settings
# =============================================================================


@dataclass
class DispatcherSettings:
    """Worker pool sizing and per-object parse tolerance."""

    workers: int = DEFAULT_WORKERS
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_line_failure_ratio: float = DEFAULT_MAX_LINE_FAILURE_RATIO

    def validate(self) -> list[str]:
        errors = []
        if self.workers < 1:
            errors.append(f"dispatcher.workers must be >= 1, got {self.workers}")
        if self.batch_size < 1:
            errors.append(f"dispatcher.batch_size must be >= 1, got {self.batch_size}")
        if not 0.0 <= self.max_line_failure_ratio <= 1.0:
            errors.append(
                f"dispatcher.max_line_failure_ratio must be 0-1, "
                f"got {self.max_line_failure_ratio}"
            )
        return errors

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "DispatcherSettings":
        return cls(
            workers=config.get("workers", DEFAULT_WORKERS),
            batch_size=config.get("batch_size", DEFAULT_BATCH_SIZE),
            poll_interval_seconds=config.get(
                "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            max_line_failure_ratio=config.get(
                "max_line_failure_ratio", DEFAULT_MAX_LINE_FAILURE_RATIO
            ),
        )

    @classmethod
    def from_env(cls) -> "DispatcherSettings":
        return cls(
            workers=_safe_int("DISPATCHER_WORKERS", DEFAULT_WORKERS),
            batch_size=_safe_int("DISPATCHER_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            poll_interval_seconds=_safe_float(
                "DISPATCHER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            max_line_failure_ratio=_safe_float(
                "DISPATCHER_MAX_LINE_FAILURE_RATIO", DEFAULT_MAX_LINE_FAILURE_RATIO
            ),
        )


# =============================================================================
# Delivery Settings
# =============================================================================


@dataclass
class DeliverySettings:
    """Buffering hints, output layout and sink retry behavior."""

    size_threshold_bytes: int = DEFAULT_SIZE_THRESHOLD_BYTES
    time_threshold_seconds: float = DEFAULT_TIME_THRESHOLD_SECONDS
    partition_template: str = DEFAULT_PARTITION_TEMPLATE
    error_template: str = DEFAULT_ERROR_TEMPLATE
    max_retries: int = DEFAULT_SINK_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_SINK_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_SINK_MAX_DELAY_SECONDS
    circuit_failure_threshold: int = DEFAULT_SINK_CIRCUIT_FAILURE_THRESHOLD
    circuit_recovery_seconds: float = DEFAULT_SINK_CIRCUIT_RECOVERY_SECONDS

    def validate(self) -> list[str]:
        errors = []
        if self.size_threshold_bytes < 1:
            errors.append(
                f"delivery.size_threshold_bytes must be >= 1, "
                f"got {self.size_threshold_bytes}"
            )
        if self.time_threshold_seconds <= 0:
            errors.append(
                f"delivery.time_threshold_seconds must be > 0, "
                f"got {self.time_threshold_seconds}"
            )
        for name in ("partition_template", "error_template"):
            template = getattr(self, name)
            if "{batch_id}" not in template:
                errors.append(f"delivery.{name} must contain {{batch_id}}")
        if "{resource_type}" not in self.partition_template:
            errors.append("delivery.partition_template must contain {resource_type}")
        if "{error_kind}" not in self.error_template:
            errors.append("delivery.error_template must contain {error_kind}")
        if self.max_retries < 0:
            errors.append(f"delivery.max_retries must be >= 0, got {self.max_retries}")
        if self.circuit_failure_threshold < 1:
            errors.append(
                f"delivery.circuit_failure_threshold must be >= 1, "
                f"got {self.circuit_failure_threshold}"
            )
        if self.circuit_recovery_seconds < 0:
            errors.append(
                f"delivery.circuit_recovery_seconds must be >= 0, "
                f"got {self.circuit_recovery_seconds}"
            )
        return errors

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "DeliverySettings":
        return cls(
            size_threshold_bytes=config.get(
                "size_threshold_bytes", DEFAULT_SIZE_THRESHOLD_BYTES
            ),
            time_threshold_seconds=config.get(
                "time_threshold_seconds", DEFAULT_TIME_THRESHOLD_SECONDS
            ),
            partition_template=config.get(
                "partition_template", DEFAULT_PARTITION_TEMPLATE
            ),
            error_template=config.get("error_template", DEFAULT_ERROR_TEMPLATE),
            max_retries=config.get("max_retries", DEFAULT_SINK_MAX_RETRIES),
            base_delay_seconds=config.get(
                "base_delay_seconds", DEFAULT_SINK_BASE_DELAY_SECONDS
            ),
            max_delay_seconds=config.get(
                "max_delay_seconds", DEFAULT_SINK_MAX_DELAY_SECONDS
            ),
            circuit_failure_threshold=config.get(
                "circuit_failure_threshold", DEFAULT_SINK_CIRCUIT_FAILURE_THRESHOLD
            ),
            circuit_recovery_seconds=config.get(
                "circuit_recovery_seconds", DEFAULT_SINK_CIRCUIT_RECOVERY_SECONDS
            ),
        )

    @classmethod
    def from_env(cls) -> "DeliverySettings":
        return cls(
            size_threshold_bytes=_safe_int(
                "DELIVERY_SIZE_THRESHOLD", DEFAULT_SIZE_THRESHOLD_BYTES
            ),
            time_threshold_seconds=_safe_float(
                "DELIVERY_TIME_THRESHOLD", DEFAULT_TIME_THRESHOLD_SECONDS
            ),
            partition_template=os.environ.get(
                "DELIVERY_PARTITION_TEMPLATE", DEFAULT_PARTITION_TEMPLATE
            ),
            error_template=os.environ.get(
                "DELIVERY_ERROR_TEMPLATE", DEFAULT_ERROR_TEMPLATE
            ),
            max_retries=_safe_int("DELIVERY_MAX_RETRIES", DEFAULT_SINK_MAX_RETRIES),
            base_delay_seconds=_safe_float(
                "DELIVERY_BASE_DELAY", DEFAULT_SINK_BASE_DELAY_SECONDS
            ),
            max_delay_seconds=_safe_float(
                "DELIVERY_MAX_DELAY", DEFAULT_SINK_MAX_DELAY_SECONDS
            ),
            circuit_failure_threshold=_safe_int(
                "DELIVERY_CIRCUIT_FAILURE_THRESHOLD",
                DEFAULT_SINK_CIRCUIT_FAILURE_THRESHOLD,
            ),
            circuit_recovery_seconds=_safe_float(
                "DELIVERY_CIRCUIT_RECOVERY", DEFAULT_SINK_CIRCUIT_RECOVERY_SECONDS
            ),
        )


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """Application settings for the aggregation pipeline."""

    # Object store locations (local filesystem roots)
    landing_root: str = "data/landing"
    sink_root: str = "data/sink"

    # Static resource -> format kind association
    resource_map: list[tuple[str, str]] = field(default_factory=list)
    topology: Optional[Topology] = None

    queue: QueueSettings = field(default_factory=QueueSettings)
    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)

    def resource_pairs(self) -> list[tuple[str, str]]:
        """Return explicit resource_map pairs followed by topology-derived ones."""
        pairs = list(self.resource_map)
        if self.topology is not None:
            pairs.extend(self.topology.resource_pairs())
        return pairs

    def validate(self) -> list[str]:
        """Validate required settings are present. Returns list of errors."""
        errors = []

        if not self.landing_root:
            errors.append("landing_root is required")
        if not self.sink_root:
            errors.append("sink_root is required")
        if not self.resource_pairs():
            errors.append("resource_map (or topology) must declare at least one resource")

        errors.extend(self.queue.validate())
        errors.extend(self.dispatcher.validate())
        errors.extend(self.delivery.validate())

        if self.queue.visibility_timeout_seconds <= self.delivery.time_threshold_seconds:
            logger.warning(
                "queue.visibility_timeout_seconds (%s) does not exceed "
                "delivery.time_threshold_seconds (%s); duplicate processing is likely",
                self.queue.visibility_timeout_seconds,
                self.delivery.time_threshold_seconds,
            )

        return errors

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Settings":
        """Create Settings from configuration dictionary (e.g., from YAML)."""
        storage = config.get("storage", {})
        topology_config = config.get("topology")

        return cls(
            landing_root=storage.get("landing_root", "data/landing"),
            sink_root=storage.get("sink_root", "data/sink"),
            resource_map=_parse_resource_map(config.get("resource_map", [])),
            topology=Topology.from_dict(topology_config) if topology_config else None,
            queue=QueueSettings.from_dict(config.get("queue", {})),
            dispatcher=DispatcherSettings.from_dict(config.get("dispatcher", {})),
            delivery=DeliverySettings.from_dict(config.get("delivery", {})),
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create Settings from environment variables.

        RESOURCE_MAP holds a JSON object of resource name -> format kind.
        """
        raw_map = os.environ.get("RESOURCE_MAP", "")
        resource_map: list[tuple[str, str]] = []
        if raw_map:
            try:
                resource_map = _parse_resource_map(json.loads(raw_map))
            except ValueError as e:
                logger.warning(f"Ignoring invalid RESOURCE_MAP: {e}")

        return cls(
            landing_root=os.environ.get("LANDING_ROOT", "data/landing"),
            sink_root=os.environ.get("SINK_ROOT", "data/sink"),
            resource_map=resource_map,
            queue=QueueSettings.from_env(),
            dispatcher=DispatcherSettings.from_env(),
            delivery=DeliverySettings.from_env(),
        )


def _parse_resource_map(raw: Any) -> list[tuple[str, str]]:
    """
    Normalize resource map configuration into ordered (name, kind) pairs.

    Accepts a mapping {name: kind} or a list of {resource_name, format_kind}
    entries.
    """
    if isinstance(raw, dict):
        return [(str(name), str(kind)) for name, kind in raw.items()]
    pairs = []
    for entry in raw or []:
        if isinstance(entry, dict):
            pairs.append((str(entry["resource_name"]), str(entry["format_kind"])))
        else:
            name, kind = entry
            pairs.append((str(name), str(kind)))
    return pairs


# Default config file paths, encrypted first
DEFAULT_CONFIG_PATHS = (Path("config.enc.yaml"), Path("config.yaml"))


@lru_cache
def get_settings(config_path: Optional[str] = None) -> Settings:
    """
    Get cached settings instance.

    Loads from a YAML config file (SOPS-encrypted when the name contains
    `.enc.`) if available, otherwise from env vars.

    Args:
        config_path: Optional path to config file

    Returns:
        Settings instance
    """
    from .sops_loader import load_config_file

    paths = (Path(config_path),) if config_path else DEFAULT_CONFIG_PATHS

    for path in paths:
        if path.exists():
            try:
                return Settings.from_dict(load_config_file(path))
            except (RuntimeError, OSError, ValueError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")
                logger.warning("Falling back to environment variables")
                break

    return Settings.from_env()


def clear_settings_cache() -> None:
    """Clear the cached settings (useful for testing)."""
    get_settings.cache_clear()
