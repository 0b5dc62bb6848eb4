"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate: the
primary operation (DB write + audit) has already committed.
"""

import logging
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class name (string), publish by event instance.
    A subscription to a category name ('PaymentEvent') receives every event
    in that category. Handlers are called synchronously, most specific
    subscription first, then in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type or category.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'InvoicePaid')
            callback: Function to call when event is published
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def handlers_for(self, event: BillingEvent) -> List[Callable]:
        handlers = []
        for cls in type(event).__mro__:
            handlers.extend(self._subscribers.get(cls.__name__, []))
        return handlers

    def publish(self, event: BillingEvent):
        """
        Publish an event to all subscribers of its type and categories.

        Args:
            event: BillingEvent instance to publish
        """
        event_type = event.__class__.__name__

        for callback in self.handlers_for(event):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
