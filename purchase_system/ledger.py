# purchase_system/ledger.py
"""
Order ledger interface.

The engine hands a finished CommissionBreakdown to a ledger. A ledger must
write the commission records and the order status change in one
transaction, and must refuse to record the same order twice.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from purchase_system.types import CommissionBreakdown

logger = logging.getLogger(__name__)


class OrderLedger(ABC):
    """Persists commission breakdowns for completed orders."""

    @abstractmethod
    async def record_commissions(self, breakdown: CommissionBreakdown) -> bool:
        """
        Persist breakdown atomically with the order status transition.

        Returns:
            True if recorded, False if the order was already recorded
        """


class InMemoryOrderLedger(OrderLedger):
    """Ledger kept in a dict, one breakdown per order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._breakdowns: Dict[Any, CommissionBreakdown] = {}

    async def record_commissions(self, breakdown: CommissionBreakdown) -> bool:
        with self._lock:
            if breakdown.orderId in self._breakdowns:
                logger.warning(f"Commissions for order {breakdown.orderId} already recorded, skipping")
                return False
            self._breakdowns[breakdown.orderId] = breakdown

        logger.info(
            f"Recorded {len(breakdown.commissions)} commissions for order "
            f"{breakdown.orderId}, total {breakdown.totalCommission}"
        )
        return True

    def get(self, orderId: Any) -> CommissionBreakdown:
        return self._breakdowns[orderId]

    def records(self) -> List[Dict[str, Any]]:
        with self._lock:
            breakdowns = list(self._breakdowns.values())
        return [record for breakdown in breakdowns for record in breakdown.to_records()]

    def __contains__(self, orderId: Any) -> bool:
        return orderId in self._breakdowns

    def __len__(self) -> int:
        return len(self._breakdowns)
