"""Configuration module."""

from .constants import (
    DEFAULT_ERROR_TEMPLATE,
    DEFAULT_MAX_LINE_FAILURE_RATIO,
    DEFAULT_PARTITION_TEMPLATE,
    ERROR_DELIVERY_FAILURE,
    ERROR_FORMAT_UNKNOWN,
    FORMAT_KINDS,
    GENERIC_RESOURCE_TYPE,
)
from .settings import (
    DeliverySettings,
    DispatcherSettings,
    QueueSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)
from .sops_loader import decrypt_sops_file, load_config_file
from .topology import Topology

__all__ = [
    # Format kinds and layout
    "FORMAT_KINDS",
    "GENERIC_RESOURCE_TYPE",
    "ERROR_FORMAT_UNKNOWN",
    "ERROR_DELIVERY_FAILURE",
    "DEFAULT_PARTITION_TEMPLATE",
    "DEFAULT_ERROR_TEMPLATE",
    "DEFAULT_MAX_LINE_FAILURE_RATIO",
    # Settings
    "Settings",
    "QueueSettings",
    "DispatcherSettings",
    "DeliverySettings",
    "Topology",
    "get_settings",
    "clear_settings_cache",
    # Config loading
    "load_config_file",
    "decrypt_sops_file",
]
