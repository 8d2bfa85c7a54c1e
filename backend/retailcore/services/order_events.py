"""
Order Event Broker

In-process fan-out of order notifications to live subscribers (the POS
order stream). Delivery is best effort:

- events are published only after the order transaction committed
- each subscriber owns a bounded queue; a full queue drops the event
- subscribers only ever see events for the tenant they subscribed to

A missed event loses no data: the POS re-reads orders (and the unsynced
queue) from the database.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class Subscription:
    tenant_id: str
    events: queue.Queue = field(repr=False)
    _broker: "OrderEventBroker | None" = field(default=None, repr=False)

    def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next event, or None when timeout elapses first."""
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self._broker is not None:
            self._broker.unsubscribe(self)
            self._broker = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class OrderEventBroker:
    def __init__(self, queue_size: int = 100, logger: logging.Logger | None = None):
        self.queue_size = queue_size
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(self, tenant_id: str) -> Subscription:
        subscription = Subscription(
            tenant_id=tenant_id,
            events=queue.Queue(maxsize=self.queue_size),
            _broker=self,
        )
        with self._lock:
            self._subscribers.setdefault(tenant_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.tenant_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.tenant_id, None)

    def subscriber_count(self, tenant_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(tenant_id, []))

    def publish(self, tenant_id: str, event: dict[str, Any]) -> int:
        """Deliver event to tenant_id's subscribers. Returns how many received it."""
        with self._lock:
            targets = list(self._subscribers.get(tenant_id, []))

        delivered = 0
        for subscription in targets:
            try:
                subscription.events.put_nowait(event)
                delivered += 1
            except queue.Full:
                self._logger.debug("Dropping %s event for tenant %s: subscriber queue full",
                                   event.get("type"), tenant_id)
        return delivered
