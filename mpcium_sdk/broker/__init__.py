"""
Broker layer: topology, provisioning, request publishing and result consumption.
"""

from .connection import status_callbacks
from .consumer import Disposition, ResultConsumer, ResultSubscription, dispatch
from .provisioner import StreamProvisioner
from .publisher import BestEffortPublish, DurablePublish, RequestPublisher, new_correlation_id
from .subjects import (
    KEYGEN_REQUEST,
    RESHARE_REQUEST,
    RESULT_STREAM,
    SIGNING_REQUEST,
    RequestTopic,
    ResultCategory,
    StreamDescriptor,
)

__all__ = [
    "status_callbacks",
    "Disposition",
    "ResultConsumer",
    "ResultSubscription",
    "dispatch",
    "StreamProvisioner",
    "BestEffortPublish",
    "DurablePublish",
    "RequestPublisher",
    "new_correlation_id",
    "KEYGEN_REQUEST",
    "RESHARE_REQUEST",
    "RESULT_STREAM",
    "SIGNING_REQUEST",
    "RequestTopic",
    "ResultCategory",
    "StreamDescriptor",
]
