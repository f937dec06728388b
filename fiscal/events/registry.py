"""
Fiscal Event Bus - Subscriber Registry
======================================
Controls which handlers receive which topics.

Rules:
- Keyed by Topic, not by name: the first registration binds a name to its
  payload type, and any later Topic reusing the name with another payload
  type is refused (TopicConflictError)
- Multiple subscribers per topic allowed; one handler at most once per topic
- A component may not subscribe to a topic it publishes unless it says so
- Built explicitly at startup and passed around (no module-level instance)
- Thread-safe
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable

from fiscal.events.errors import (
    DuplicateSubscriberError,
    EventBusError,
    SelfSubscriptionError,
    TopicConflictError,
)
from fiscal.events.topics import Topic

logger = logging.getLogger("fiscal.events")


@dataclass(frozen=True)
class Subscription:
    topic: Topic
    handler: Callable[[Any], None] = field(compare=False)
    subscriber: str

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


class SubscriberRegistry:
    def __init__(self):
        self._lock = Lock()
        self._topics: dict[str, Topic] = {}
        self._subscriptions: dict[Topic, tuple[Subscription, ...]] = {}

    def _bind(self, topic: Topic) -> None:
        """Bind topic.name to topic. Caller holds the lock."""
        bound = self._topics.setdefault(topic.name, topic)
        if bound != topic:
            raise TopicConflictError(topic.name, bound.payload_type, topic.payload_type)

    def subscribe(
        self,
        topic: Topic,
        handler: Callable[[Any], None],
        subscriber: str,
        allow_self_subscription: bool = False,
    ) -> Subscription:
        """
        Raises:
            TopicConflictError:       topic.name is bound to another payload type
            DuplicateSubscriberError: handler already receives this topic
            SelfSubscriptionError:    subscriber publishes this topic
        """
        if not isinstance(topic, Topic):
            raise EventBusError(f"Expected a Topic, got {type(topic).__name__}.")
        if not callable(handler):
            raise EventBusError(f"Handler must be callable, got {type(handler).__name__}.")
        if topic.source == subscriber and not allow_self_subscription:
            raise SelfSubscriptionError(subscriber, topic.name)

        subscription = Subscription(topic, handler, subscriber)
        with self._lock:
            self._bind(topic)
            current = self._subscriptions.get(topic, ())
            if any(existing.handler == handler for existing in current):
                raise DuplicateSubscriberError(topic.name, subscription.handler_name)
            self._subscriptions[topic] = current + (subscription,)

        logger.info(
            f"{subscription.handler_name} ({subscriber}) subscribed to "
            f"{topic.name} [{topic.payload_type.__name__}]"
        )
        return subscription

    def subscriptions(self, topic: Topic) -> tuple[Subscription, ...]:
        """
        Current subscribers of topic, in registration order.

        Raises TopicConflictError when topic reuses a bound name with another
        payload type, so a mistyped publisher fails instead of reaching
        handlers that expect something else.
        """
        with self._lock:
            self._bind(topic)
            return self._subscriptions.get(topic, ())

    def subscriber_count(self, topic: Topic) -> int:
        return len(self.subscriptions(topic))

