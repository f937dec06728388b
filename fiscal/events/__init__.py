"""
Fiscal Event Bus - Public API
=============================
The state machine announces outcomes. The bus distributes them.
"""

from fiscal.events.bus import EventBus
from fiscal.events.errors import (
    BusClosedError,
    DuplicateSubscriberError,
    EventBusError,
    InvalidTopicName,
    PayloadTypeError,
    SelfSubscriptionError,
    TopicConflictError,
)
from fiscal.events.registry import SubscriberRegistry, Subscription
from fiscal.events.topics import (
    DOCUMENT_ISSUED,
    DOCUMENT_STALLED,
    WAYBILL_DERIVED,
    DocumentIssued,
    DocumentSubmissionStalled,
    Topic,
    WaybillDerived,
)

__all__ = [
    "EventBus",
    "SubscriberRegistry",
    "Subscription",
    "Topic",
    "DOCUMENT_ISSUED",
    "DOCUMENT_STALLED",
    "WAYBILL_DERIVED",
    "DocumentIssued",
    "DocumentSubmissionStalled",
    "WaybillDerived",
    "EventBusError",
    "BusClosedError",
    "InvalidTopicName",
    "DuplicateSubscriberError",
    "PayloadTypeError",
    "SelfSubscriptionError",
    "TopicConflictError",
]
