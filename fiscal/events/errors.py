"""
Fiscal Event Bus - Errors
=========================
Raised by the bus at registration or publish time, never during delivery.
Separate from fiscal.errors: the bus is routing, not document lifecycle.
"""

from __future__ import annotations

from typing import Optional


class EventBusError(Exception):
    """Base error. `topic_name` is set when the error concerns one topic."""

    def __init__(self, message: str, *, topic_name: Optional[str] = None):
        self.topic_name = topic_name
        super().__init__(message)


class InvalidTopicName(EventBusError):
    def __init__(self, topic_name: str):
        super().__init__(
            f"'{topic_name}' is not a topic name (component.subject.action).",
            topic_name=topic_name,
        )


class TopicConflictError(EventBusError):
    """One topic name bound to two different payload types."""

    def __init__(self, topic_name: str, registered: type, offered: type):
        self.registered = registered
        self.offered = offered
        super().__init__(
            f"Topic '{topic_name}' already carries {registered.__name__}; "
            f"cannot rebind it to {offered.__name__}.",
            topic_name=topic_name,
        )


class DuplicateSubscriberError(EventBusError):
    def __init__(self, topic_name: str, handler_name: str):
        self.handler_name = handler_name
        super().__init__(
            f"{handler_name} is already subscribed to '{topic_name}'.",
            topic_name=topic_name,
        )


class SelfSubscriptionError(EventBusError):
    """A component listening to a topic it publishes, without opting in."""

    def __init__(self, component: str, topic_name: str):
        self.component = component
        super().__init__(
            f"'{component}' publishes '{topic_name}' and may only subscribe "
            f"to it with allow_self_subscription=True.",
            topic_name=topic_name,
        )


class PayloadTypeError(EventBusError):
    def __init__(self, topic_name: str, expected: type, actual: type):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Topic '{topic_name}' carries {expected.__name__}, got {actual.__name__}.",
            topic_name=topic_name,
        )


class BusClosedError(EventBusError):
    """Publish attempted after shutdown."""
