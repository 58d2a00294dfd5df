# tests/test_event_handlers.py
"""
Tests for the event bus and purchase event handlers.

Run:
    pytest tests/test_event_handlers.py -v
"""
from decimal import Decimal

import pytest

from purchase_system.errors import HierarchyIntegrityError
from purchase_system.events.event_bus import EventBus, PurchaseEvents
from purchase_system.events.setup import (
    setup_purchase_event_handlers,
    teardown_purchase_event_handlers,
)
from purchase_system.types import CommissionRole

from conftest import PRODUCT_ID


@pytest.fixture
def bus(purchase_engine, ledger):
    """Private bus with the purchase handlers registered."""
    bus = EventBus()
    registered = setup_purchase_event_handlers(purchase_engine, ledger, bus=bus)
    yield bus
    teardown_purchase_event_handlers(registered, bus=bus)


# =============================================================================
# TEST CLASS: Event bus
# =============================================================================

class TestEventBus:

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        seen = []

        def sync_handler(data):
            seen.append(("sync", data["n"]))
            return 1

        async def async_handler(data):
            seen.append(("async", data["n"]))
            return 2

        bus.subscribe("ping", sync_handler)
        bus.subscribe("ping", async_handler)
        bus.subscribe("ping", sync_handler)

        results = await bus.emit("ping", {"n": 7})

        assert results == [1, 2]
        assert seen == [("sync", 7), ("async", 7)]

    @pytest.mark.asyncio
    async def test_no_handlers(self):
        assert await EventBus().emit("nothing", {}) == []

    def test_teardown_unsubscribes(self, purchase_engine, ledger):
        bus = EventBus()
        registered = setup_purchase_event_handlers(purchase_engine, ledger, bus=bus)
        assert len(bus.handlers(PurchaseEvents.ORDER_COMPLETED)) == 1

        teardown_purchase_event_handlers(registered, bus=bus)

        assert bus.handlers(PurchaseEvents.ORDER_COMPLETED) == []
        assert bus.handlers(PurchaseEvents.HIERARCHY_CHANGED) == []


# =============================================================================
# TEST CLASS: Order completed
# =============================================================================

class TestOrderCompleted:

    @pytest.mark.asyncio
    async def test_commissions_recorded(self, bus, ledger, make_order):
        order = make_order(34, 32)

        [breakdown] = await bus.emit(PurchaseEvents.ORDER_COMPLETED, order)

        assert order["orderId"] in ledger
        assert ledger.get(order["orderId"]) is breakdown
        assert breakdown.totalCommission == Decimal("220.00")
        assert {record["userId"] for record in ledger.records()} == {32, 33}

    @pytest.mark.asyncio
    async def test_calculation_failure_records_flat_rate(self, bus, ledger, make_order):
        """
        TEST: Completed order arrives without product data.

        Verify: platform default rate recorded instead of nothing.
        """
        order = make_order(34, 32, products=[])

        [breakdown] = await bus.emit(PurchaseEvents.ORDER_COMPLETED, order)

        assert breakdown.isFallback
        assert breakdown.commissions[0].role is CommissionRole.PLATFORM_DEFAULT
        assert breakdown.commissions[0].userId == 32
        assert ledger.get(order["orderId"]) is breakdown

    @pytest.mark.asyncio
    async def test_duplicate_order_recorded_once(self, bus, ledger, make_order):
        order = make_order(34, 32)

        await bus.emit(PurchaseEvents.ORDER_COMPLETED, order)
        [second] = await bus.emit(PurchaseEvents.ORDER_COMPLETED, order)

        assert len(ledger) == 1
        assert ledger.get(order["orderId"]) is not second

    @pytest.mark.asyncio
    async def test_missing_order_id_ignored(self, bus, ledger):
        results = await bus.emit(PurchaseEvents.ORDER_COMPLETED, {
            "buyerId": 34,
            "sellerId": 32,
            "orderAmount": "100",
            "products": [{"productId": PRODUCT_ID}],
        })

        assert results == [None]
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_integrity_error_propagates(self, bus, ledger, team_store, make_order):
        team_store.set_parent(30, 34)

        with pytest.raises(HierarchyIntegrityError):
            await bus.emit(PurchaseEvents.ORDER_COMPLETED, make_order(34, 32))

        assert len(ledger) == 0


# =============================================================================
# TEST CLASS: Hierarchy changed
# =============================================================================

class TestHierarchyChanged:

    @pytest.mark.asyncio
    async def test_targeted_invalidation(self, bus, purchase_engine):
        await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        await purchase_engine.findOptimalSupplyPath(34, 32)

        [removed] = await bus.emit(PurchaseEvents.HIERARCHY_CHANGED, {"userIds": [4]})

        # validation result and the 5->4 path go, 34->32 stays
        assert removed == 2
        assert len(purchase_engine.validator.cache) == 0
        assert (34, 32) in purchase_engine.pathFinder.cache

    @pytest.mark.asyncio
    async def test_full_invalidation(self, bus, purchase_engine):
        await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        await purchase_engine.findOptimalSupplyPath(34, 32)

        await bus.emit(PurchaseEvents.HIERARCHY_CHANGED, {})

        sizes = purchase_engine.getPerformanceStats()["cacheSize"]
        assert sizes == {"validationResults": 0, "supplyPaths": 0}
