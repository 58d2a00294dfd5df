# purchase_system/events/handlers.py
"""
Event handlers for the purchase engine.
Process events from the event bus.
"""
import logging
from typing import Any, Dict, Optional

from purchase_system.errors import CommissionCalculationFailed
from purchase_system.ledger import OrderLedger
from purchase_system.types import CommissionBreakdown

logger = logging.getLogger(__name__)


async def handle_order_completed(
        engine,
        ledger: OrderLedger,
        data: Dict[str, Any]
) -> Optional[CommissionBreakdown]:
    """
    Handle ORDER_COMPLETED event.

    The sale is already completed, so a commission calculation failure must
    not leave it without commissions: the flat platform rate is recorded
    instead. Integrity and infrastructure errors propagate.

    Args:
        engine: PurchaseEngine
        ledger: Ledger that persists the breakdown
        data: Event data with orderId, buyerId, sellerId, orderAmount, products

    Returns:
        Recorded breakdown, or None if the event was malformed
    """
    order_id = data.get("orderId")

    if order_id is None:
        logger.error("ORDER_COMPLETED event missing orderId")
        return None

    logger.info(f"Processing commissions for order {order_id}")

    try:
        breakdown = await engine.calculateCommission(data)
    except CommissionCalculationFailed as e:
        logger.warning(
            f"Commission calculation failed for order {order_id}: {e.reason}; "
            f"recording platform default rate"
        )
        breakdown = engine.fallbackCommission(data, reason=e.reason)

    await ledger.record_commissions(breakdown)

    logger.info(f"✓ Commissions recorded for order {order_id}: {breakdown.totalCommission}")
    return breakdown


async def handle_hierarchy_changed(engine, data: Dict[str, Any]) -> int:
    """
    Handle HIERARCHY_CHANGED event.

    Args:
        engine: PurchaseEngine
        data: Event data, optional 'userIds' list of affected members

    Returns:
        Number of cache entries dropped
    """
    user_ids = data.get("userIds")
    removed = engine.onHierarchyChanged(user_ids)
    logger.info(f"Hierarchy changed ({user_ids or 'all'}): dropped {removed} cache entries")
    return removed
