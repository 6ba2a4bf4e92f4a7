"""
Constants for log format kinds, queue defaults and delivery layout.
"""

from ..exceptions import DeliveryFailure, FormatUnknownError

# =============================================================================
# Format Kinds
# =============================================================================

FORMAT_ALB = "alb"  # Application load balancer access logs
FORMAT_NLB = "nlb"  # Network load balancer (TLS listener) access logs
FORMAT_CLF = "clf"  # Apache combined / common log format shipped by an agent
FORMAT_CF = "cf"  # CDN distribution (W3C extended) access logs

FORMAT_KINDS = (FORMAT_ALB, FORMAT_NLB, FORMAT_CLF, FORMAT_CF)

# Partition used when a record carries no usable resource_type
GENERIC_RESOURCE_TYPE = "unknown"

# =============================================================================
# Error Kinds (error partition names)
# =============================================================================

ERROR_FORMAT_UNKNOWN = FormatUnknownError.error_kind
ERROR_DELIVERY_FAILURE = DeliveryFailure.error_kind

# =============================================================================
# Ingestion Queue
# =============================================================================

# 5 minute visibility, 7 day retention
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 300.0
DEFAULT_RETENTION_PERIOD_SECONDS = 7 * 24 * 3600.0
DEFAULT_MAX_RECEIVES = 3

# =============================================================================
# Dispatcher
# =============================================================================

DEFAULT_WORKERS = 2  # W
DEFAULT_BATCH_SIZE = 10  # B
DEFAULT_POLL_INTERVAL_SECONDS = 1.0

# An object fails when strictly more than this fraction of its lines is malformed
DEFAULT_MAX_LINE_FAILURE_RATIO = 0.5

# Health check requests sent by the load balancer to directly exposed instances
HEALTH_CHECK_USER_AGENT_PREFIX = "elb-healthchecker"

# =============================================================================
# Delivery Stream
# =============================================================================

# 128 MiB / 300 s buffering hints
DEFAULT_SIZE_THRESHOLD_BYTES = 128 * 1024 * 1024
DEFAULT_TIME_THRESHOLD_SECONDS = 300.0

DEFAULT_PARTITION_TEMPLATE = "{resource_type}/{yyyy}/{mm}/{dd}/{batch_id}.gz"
DEFAULT_ERROR_TEMPLATE = "errors/{error_kind}/{yyyy}/{mm}/{dd}/{batch_id}.gz"

# Sink retries before a batch is diverted to the error prefix
DEFAULT_SINK_MAX_RETRIES = 3
DEFAULT_SINK_BASE_DELAY_SECONDS = 0.5
DEFAULT_SINK_MAX_DELAY_SECONDS = 10.0

# Consecutive failed batches before the sink circuit opens, and its cool-down
DEFAULT_SINK_CIRCUIT_FAILURE_THRESHOLD = 5
DEFAULT_SINK_CIRCUIT_RECOVERY_SECONDS = 30.0
