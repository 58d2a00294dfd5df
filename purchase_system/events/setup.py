# purchase_system/events/setup.py
"""
Setup purchase engine event handlers.
Register all event handlers with the event bus.
"""
import logging
from functools import partial
from typing import Callable, List, Optional, Tuple

from purchase_system.events.event_bus import EventBus, PurchaseEvents, eventBus
from purchase_system.events.handlers import handle_hierarchy_changed, handle_order_completed
from purchase_system.ledger import OrderLedger

logger = logging.getLogger(__name__)


def setup_purchase_event_handlers(
        engine,
        ledger: OrderLedger,
        bus: Optional[EventBus] = None
) -> List[Tuple[str, Callable]]:
    """
    Register all purchase engine handlers with the event bus.

    Returns:
        (event, handler) pairs, to pass to teardown_purchase_event_handlers
    """
    bus = bus or eventBus
    logger.info("Setting up purchase event handlers...")

    registered = [
        (PurchaseEvents.ORDER_COMPLETED, partial(handle_order_completed, engine, ledger)),
        (PurchaseEvents.HIERARCHY_CHANGED, partial(handle_hierarchy_changed, engine)),
    ]
    for event, handler in registered:
        bus.subscribe(event, handler)
        logger.debug(f"Registered handler for {event}")

    logger.info("Purchase event handlers registered successfully")
    return registered


def teardown_purchase_event_handlers(
        registered: List[Tuple[str, Callable]],
        bus: Optional[EventBus] = None
) -> None:
    """
    Unregister handlers returned by setup_purchase_event_handlers.
    Useful for testing or shutdown.
    """
    bus = bus or eventBus
    logger.info("Tearing down purchase event handlers...")

    for event, handler in registered:
        bus.unsubscribe(event, handler)

    logger.info("Purchase event handlers unregistered")
