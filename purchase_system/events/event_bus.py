# purchase_system/events/event_bus.py
"""
Minimal async event bus.

Handlers may be plain functions or coroutines. Exceptions raised by a
handler propagate to the emitter.
"""
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class PurchaseEvents:
    """Event names."""
    ORDER_COMPLETED = "order.completed"
    HIERARCHY_CHANGED = "hierarchy.changed"


class EventBus:
    """
    Usage:
        bus = EventBus()
        bus.subscribe(PurchaseEvents.ORDER_COMPLETED, handler)
        await bus.emit(PurchaseEvents.ORDER_COMPLETED, {"orderId": 1, ...})
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event: str, handler: Callable) -> None:
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Callable) -> None:
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def handlers(self, event: str) -> List[Callable]:
        return list(self._handlers.get(event, ()))

    async def emit(self, event: str, data: Dict[str, Any]) -> List[Any]:
        """
        Call every handler of event in subscription order.

        Returns:
            Handler return values, same order
        """
        handlers = self.handlers(event)
        if not handlers:
            logger.debug(f"No handlers for {event}")
            return []

        results = []
        for handler in handlers:
            result = handler(data)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        return results


eventBus = EventBus()
