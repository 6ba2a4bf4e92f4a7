"""
Delivery layer: buffered partitioned writes of parsed records.

Usage:
    from log_aggregator.delivery import DeliverySink, DeliveryStream

    stream = DeliveryStream(DeliverySink(store), time_threshold=60)
    stream.start()
    stream.submit(record)
    stream.close()
"""

from .partition import PartitionKey, new_batch_id, normalize_resource_type
from .sink import DeliverySink, WriteResult, annotate_failed_lines, encode_batch
from .stream import DeliveryBatch, DeliveryStats, DeliveryStream

__all__ = [
    "PartitionKey",
    "new_batch_id",
    "normalize_resource_type",
    "DeliverySink",
    "WriteResult",
    "annotate_failed_lines",
    "encode_batch",
    "DeliveryBatch",
    "DeliveryStats",
    "DeliveryStream",
]
