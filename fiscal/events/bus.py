"""
Fiscal Event Bus - Asynchronous Fan-out
=======================================
Routes published payloads to registered subscribers on a worker pool.

Delivery behavior:
1. Validate the payload against the topic's payload type
2. Schedule one delivery task per subscriber and return immediately
3. A failing handler is retried up to max_deliveries times
4. Failures are logged, never raised to the publisher
5. One subscriber's failure never affects another's delivery

Delivery is at-least-once per subscriber for the lifetime of the process.
Handlers must therefore be idempotent. Nothing survives a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from fiscal.events.errors import BusClosedError, PayloadTypeError
from fiscal.events.registry import SubscriberRegistry, Subscription
from fiscal.events.topics import Topic

logger = logging.getLogger("fiscal.events")


class EventBus:
    def __init__(
        self,
        registry: SubscriberRegistry,
        *,
        workers: int = 4,
        max_deliveries: int = 3,
        redelivery_delay: float = 0.0,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1.")
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be >= 1.")
        self._registry = registry
        self._max_deliveries = max_deliveries
        self._redelivery_delay = redelivery_delay
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fiscal-bus")
        self._idle = threading.Condition()
        self._outstanding = 0
        self._closed = False
        self._stats = {"published": 0, "delivered": 0, "abandoned": 0}

    @property
    def registry(self) -> SubscriberRegistry:
        return self._registry

    def subscribe(
        self,
        topic: Topic,
        handler: Callable[[Any], None],
        subscriber: str,
        allow_self_subscription: bool = False,
    ) -> Subscription:
        return self._registry.subscribe(topic, handler, subscriber, allow_self_subscription)

    def publish(self, topic: Topic, payload: Any) -> int:
        """
        Schedule delivery of payload to every subscriber of topic.

        Returns:
            Number of deliveries scheduled.

        Raises:
            PayloadTypeError:   payload is not an instance of topic.payload_type
            TopicConflictError: topic reuses a name bound to another payload type
            BusClosedError:     bus already shut down
        """
        if not topic.accepts(payload):
            raise PayloadTypeError(topic.name, topic.payload_type, type(payload))

        subscribers = self._registry.subscriptions(topic)
        with self._idle:
            if self._closed:
                raise BusClosedError(f"Cannot publish {topic.name}: bus is shut down.")
            self._stats["published"] += 1
            self._outstanding += len(subscribers)

        event_id = getattr(payload, "event_id", "-")
        if not subscribers:
            logger.debug(f"No subscribers for {topic.name} (event_id: {event_id})")
            return 0

        for index, subscription in enumerate(subscribers):
            try:
                self._executor.submit(self._deliver, subscription, payload)
            except RuntimeError as exc:
                with self._idle:
                    self._outstanding -= len(subscribers) - index
                    self._idle.notify_all()
                raise BusClosedError(f"Cannot publish {topic.name}: {exc}") from exc
        logger.debug(
            f"Published {topic.name} (event_id: {event_id}) to {len(subscribers)} subscribers"
        )
        return len(subscribers)

    def _deliver(self, subscription: Subscription, payload: Any) -> None:
        topic, handler = subscription.topic, subscription.handler
        handler_name = subscription.handler_name
        event_id = getattr(payload, "event_id", "-")
        try:
            for delivery in range(1, self._max_deliveries + 1):
                try:
                    handler(payload)
                except Exception as exc:
                    final = delivery == self._max_deliveries
                    logger.error(
                        f"Subscriber failed: {handler_name} for {topic.name} "
                        f"(event_id: {event_id}, delivery {delivery}/{self._max_deliveries}): {exc}",
                        exc_info=final,
                    )
                    if not final and self._redelivery_delay:
                        time.sleep(self._redelivery_delay)
                    continue
                with self._idle:
                    self._stats["delivered"] += 1
                logger.debug(f"Delivered {topic.name} -> {handler_name} ({subscription.subscriber})")
                return
            with self._idle:
                self._stats["abandoned"] += 1
            logger.error(
                f"Delivery abandoned: {handler_name} for {topic.name} (event_id: {event_id})"
            )
        finally:
            with self._idle:
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._idle.notify_all()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until no delivery is outstanding. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def stats(self) -> dict:
        with self._idle:
            return dict(self._stats, outstanding=self._outstanding)

    def shutdown(self, wait: bool = True) -> None:
        with self._idle:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("Event bus stopped")
