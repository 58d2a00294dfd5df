# tests/test_purchase_validator.py
"""
Tests for PurchaseValidator and its rules.

Run:
    pytest tests/test_purchase_validator.py -v
"""
import pytest

from purchase_system.config.levels import LevelRegistry, MembershipLevel
from purchase_system.config.settings import Settings
from purchase_system.engine import PurchaseEngine
from purchase_system.errors import HierarchyIntegrityError, InfrastructureTimeout
from purchase_system.services.purchase_rules import (
    DOWNLINE_PURCHASE,
    OUTSIDE_TEAM,
    SELF_PURCHASE,
    DEFAULT_RULES,
)
from purchase_system.stores.memory_store import InMemoryTeamStore

from conftest import (
    INACTIVE_PRODUCT_ID,
    LOW_STOCK_PRODUCT_ID,
    MISSING_PRODUCT_ID,
    PRODUCT_ID,
    STAR_ONLY_PRODUCT_ID,
    build_team_store,
)


def _has(reasons, text):
    return any(text in reason for reason in reasons)


# =============================================================================
# TEST CLASS: Concrete scenarios
# =============================================================================

class TestScenarios:

    @pytest.mark.asyncio
    async def test_normal_buys_from_vip_parent(self, purchase_engine):
        """
        TEST: NORMAL buyer, VIP seller who is the buyer's direct parent.

        Verify: canPurchase, no reasons.
        """
        result = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)

        assert result.isValid
        assert result.canPurchase
        assert result.reasons == ()
        assert result.metadata["buyerLevel"] == "NORMAL"
        assert result.metadata["sellerLevel"] == "VIP"
        assert result.metadata["resolvedPathDistance"] == 1

    @pytest.mark.asyncio
    async def test_star2_buyer_vip_seller_no_lineage(self, purchase_engine):
        """
        TEST: STAR_2 buyer (tree 20), VIP seller (tree 1).

        Verify: rejected with a team/lineage reason.
        """
        result = await purchase_engine.validatePurchasePermission(20, 4, PRODUCT_ID, 1)

        assert result.isValid
        assert not result.canPurchase
        assert _has(result.reasons, OUTSIDE_TEAM)
        assert _has(result.reasons, DOWNLINE_PURCHASE)

    @pytest.mark.asyncio
    async def test_higher_buyer_through_higher_intermediary(self, purchase_engine):
        """
        TEST: STAR_2 buyer 10 and VIP seller 4 meet at DIRECTOR 1.

        Verify: allowed, intermediary named in restrictions.
        """
        result = await purchase_engine.validatePurchasePermission(10, 4, PRODUCT_ID, 1)

        assert result.canPurchase
        assert "via_intermediary:1" in result.restrictions

    @pytest.mark.asyncio
    async def test_higher_buyer_from_own_downline(self, purchase_engine):
        """
        TEST: STAR_4 buyer 2 buying from NORMAL 5 in their own downline.
        """
        result = await purchase_engine.validatePurchasePermission(2, 5, PRODUCT_ID, 1)

        assert not result.canPurchase
        assert result.reasons == (DOWNLINE_PURCHASE,)

    @pytest.mark.asyncio
    async def test_intermediary_must_outrank_buyer(self, purchase_engine):
        """
        TEST: STAR_3 buyer 6 and NORMAL seller 5 meet at STAR_4 member 2.
        STAR_4 buyer 2 and VIP seller 4 meet at the buyer itself.

        Verify: first allowed via 2, second rejected.
        """
        allowed = await purchase_engine.validatePurchasePermission(6, 5, PRODUCT_ID, 1)
        denied = await purchase_engine.validatePurchasePermission(2, 4, PRODUCT_ID, 1)

        assert allowed.canPurchase
        assert "via_intermediary:2" in allowed.restrictions
        assert not denied.canPurchase
        assert _has(denied.reasons, DOWNLINE_PURCHASE)

    @pytest.mark.asyncio
    async def test_lower_buyer_from_ancestor(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(34, 30, PRODUCT_ID, 1)

        assert result.canPurchase


# =============================================================================
# TEST CLASS: Rank and lineage properties
# =============================================================================

class TestRankProperties:

    @pytest.mark.asyncio
    async def test_higher_rank_without_lineage_always_rejected(self):
        """
        TEST: For every level pair with rank(L1) > rank(L2), L1 not DIRECTOR,
        and buyer/seller in separate trees.

        Verify: canPurchase=false with a lineage/downline reason.
        """
        registry = LevelRegistry()
        levels = registry.levels()

        for hi in levels:
            if hi is MembershipLevel.DIRECTOR:
                continue
            for lo in levels:
                if registry.rank(hi) <= registry.rank(lo):
                    continue

                store = InMemoryTeamStore()
                store.add_member(1, hi)
                store.add_member(2, lo)
                store.add_product(PRODUCT_ID, stock=10)
                engine = PurchaseEngine(store, settings=Settings(store_timeout=None))

                result = await engine.validatePurchasePermission(1, 2, PRODUCT_ID, 1)

                assert not result.canPurchase, (hi, lo)
                assert _has(result.reasons, OUTSIDE_TEAM) or _has(result.reasons, DOWNLINE_PURCHASE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seller_id", [2, 5, 10, 20, 22, 34])
    async def test_director_buyer_always_allowed(self, purchase_engine, seller_id):
        result = await purchase_engine.validatePurchasePermission(1, seller_id, PRODUCT_ID, 1)

        assert result.canPurchase
        assert "director_override" in result.restrictions

    @pytest.mark.asyncio
    async def test_director_override_skips_status_and_limits(self, team_store, purchase_engine):
        team_store.set_status(22, "SUSPENDED")

        result = await purchase_engine.validatePurchasePermission(1, 22, PRODUCT_ID, 40)

        assert result.canPurchase
        assert "team_hierarchy" not in result.metadata["appliedRules"]

    @pytest.mark.asyncio
    async def test_equal_rank_different_lineages_rejected(self, purchase_engine):
        """
        TEST: STAR_2 buyer 10 and STAR_2 seller 20 in separate trees.

        Verify: rejected immediately as outside the team, not as downline.
        """
        result = await purchase_engine.validatePurchasePermission(10, 20, PRODUCT_ID, 1)

        assert not result.canPurchase
        assert result.reasons == (OUTSIDE_TEAM,)

    @pytest.mark.asyncio
    async def test_equal_rank_shared_lineage_allowed(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(6, 7, PRODUCT_ID, 1)

        assert result.canPurchase

    @pytest.mark.asyncio
    async def test_self_purchase_rejected(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(4, 4, PRODUCT_ID, 1)

        assert not result.canPurchase
        assert SELF_PURCHASE in result.reasons


# =============================================================================
# TEST CLASS: Structural errors and accumulation
# =============================================================================

class TestStructuralErrors:

    @pytest.mark.asyncio
    async def test_missing_user_is_result_not_exception(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(999, 4, PRODUCT_ID, 1)

        assert not result.isValid
        assert not result.canPurchase
        assert _has(result.reasons, "user not found")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 2.5, "3", True, None])
    async def test_invalid_quantity(self, purchase_engine, quantity):
        result = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, quantity)

        assert not result.isValid
        assert _has(result.reasons, "invalid quantity")

    @pytest.mark.asyncio
    async def test_missing_product(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(5, 4, MISSING_PRODUCT_ID, 1)

        assert not result.isValid
        assert _has(result.reasons, "product not found")

    @pytest.mark.asyncio
    async def test_reasons_accumulate(self, purchase_engine):
        """
        TEST: unknown buyer, bad quantity and unknown product together.

        Verify: all three reported, in rule order.
        """
        result = await purchase_engine.validatePurchasePermission(999, 4, MISSING_PRODUCT_ID, 0)

        assert len(result.reasons) == 3
        assert "user not found" in result.reasons[0]
        assert "invalid quantity" in result.reasons[1]
        assert "product not found" in result.reasons[2]

    @pytest.mark.asyncio
    async def test_business_reasons_accumulate(self, team_store, purchase_engine):
        team_store.set_status(4, "SUSPENDED")

        result = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 6)

        assert result.isValid
        assert not result.canPurchase
        assert _has(result.reasons, "seller account is not active")
        assert _has(result.reasons, "quantity exceeds limit of 5")


# =============================================================================
# TEST CLASS: Product and quantity restrictions
# =============================================================================

class TestRestrictions:

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(5, 4, LOW_STOCK_PRODUCT_ID, 2)

        assert result.isValid
        assert not result.canPurchase
        assert _has(result.reasons, "insufficient stock")

    @pytest.mark.asyncio
    async def test_inactive_product(self, purchase_engine):
        result = await purchase_engine.validatePurchasePermission(5, 4, INACTIVE_PRODUCT_ID, 1)

        assert not result.canPurchase
        assert _has(result.reasons, "product not available")

    @pytest.mark.asyncio
    async def test_level_quantity_limit(self, purchase_engine):
        ok = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 5)
        too_many = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 6)

        assert ok.canPurchase
        assert "max_quantity:5" in ok.restrictions
        assert not too_many.canPurchase

    @pytest.mark.asyncio
    async def test_product_min_level_and_limit(self, purchase_engine):
        normal = await purchase_engine.validatePurchasePermission(5, 4, STAR_ONLY_PRODUCT_ID, 1)
        limited = await purchase_engine.validatePurchasePermission(34, 32, STAR_ONLY_PRODUCT_ID, 4)

        assert _has(normal.reasons, "requires level STAR_1 or above")
        assert "min_level:STAR_1" in normal.restrictions
        # NORMAL buyer 34: level limit 5, product limit 3
        assert _has(limited.reasons, "quantity exceeds limit of 3")

    def test_rule_order_is_fixed(self):
        assert [rule.name for rule in DEFAULT_RULES] == [
            "users_exist",
            "quantity",
            "product",
            "director_override",
            "account_status",
            "team_hierarchy",
            "purchase_restrictions",
        ]


# =============================================================================
# TEST CLASS: Caching and monitoring
# =============================================================================

class TestValidationCache:

    @pytest.mark.asyncio
    async def test_identical_call_returns_cached_object(self, purchase_engine):
        """
        TEST: Same arguments twice inside the TTL.

        Verify: same object; miss counted first, hit second.
        """
        first = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        stats = purchase_engine.getPerformanceStats()
        assert stats["cacheMisses"] == 1
        assert stats["cacheHits"] == 0

        second = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        stats = purchase_engine.getPerformanceStats()

        assert second is first
        assert stats["cacheHits"] == 1
        assert stats["cacheMisses"] == 1
        assert stats["totalValidations"] == 2
        assert stats["cacheHitRate"] == 50.0

    @pytest.mark.asyncio
    async def test_product_is_part_of_key(self, purchase_engine):
        first = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        other = await purchase_engine.validatePurchasePermission(5, 4, INACTIVE_PRODUCT_ID, 1)

        assert first is not other
        assert first.canPurchase and not other.canPurchase

    @pytest.mark.asyncio
    async def test_bucket_hit_respects_quantity_limit(self, make_engine):
        """
        TEST: Buckets of 10, NORMAL buyer limited to 5 units.

        Verify: 4 reuses the approval for 3; 8 shares the bucket but is
        re-evaluated and rejected.
        """
        engine = make_engine(quantity_bucket_size=10)

        small = await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 3)
        reused = await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 4)
        over = await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 8)

        assert small.canPurchase
        assert reused is small
        assert not over.canPurchase
        assert over.reasons == ("quantity exceeds limit of 5",)
        assert engine.getPerformanceStats()["cacheHits"] == 1

    @pytest.mark.asyncio
    async def test_bucket_hit_respects_stock(self, make_engine):
        engine = make_engine(quantity_bucket_size=10)

        first = await engine.validatePurchasePermission(5, 4, LOW_STOCK_PRODUCT_ID, 1)
        result = await engine.validatePurchasePermission(5, 4, LOW_STOCK_PRODUCT_ID, 2)

        assert first.canPurchase
        assert not result.canPurchase
        assert _has(result.reasons, "requested 2, available 1")

    @pytest.mark.asyncio
    async def test_cached_metadata_is_read_only(self, purchase_engine):
        first = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)

        with pytest.raises(TypeError):
            first.metadata["buyerLevel"] = "DIRECTOR"

        second = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        assert second is first
        assert second.metadata["buyerLevel"] == "NORMAL"
        assert second.to_dict()["metadata"]["sellerLevel"] == "VIP"

    @pytest.mark.asyncio
    async def test_hierarchy_change_invalidates(self, team_store, purchase_engine):
        """
        TEST: Seller 4 suspended after a cached approval.

        Verify: stale approval until the hook runs, fresh rejection after.
        """
        first = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        team_store.set_status(4, "SUSPENDED")

        stale = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        assert stale is first

        purchase_engine.onHierarchyChanged([4])
        fresh = await purchase_engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)

        assert fresh is not first
        assert not fresh.canPurchase

    @pytest.mark.asyncio
    async def test_ttl_zero_disables_reuse(self, make_engine):
        engine = make_engine(validation_cache_ttl=0)

        first = await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)
        second = await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)

        assert first is not second
        assert engine.getPerformanceStats()["cacheMisses"] == 2

    @pytest.mark.asyncio
    async def test_rejected_call_is_cached(self, purchase_engine):
        await purchase_engine.validatePurchasePermission(999, 4, PRODUCT_ID, 1)

        stats = purchase_engine.getPerformanceStats()
        assert stats["totalValidations"] == 1
        assert stats["averageResponseTime"] >= 0
        assert stats["cacheSize"]["validationResults"] == 1

    @pytest.mark.asyncio
    async def test_clear_cache_resets_all_caches(self, purchase_engine):
        await purchase_engine.validatePurchasePermission(10, 4, PRODUCT_ID, 1)
        purchase_engine.clearCache()

        sizes = purchase_engine.getPerformanceStats()["cacheSize"]
        assert sizes == {"supplyPaths": 0, "validationResults": 0}


# =============================================================================
# TEST CLASS: Infrastructure and integrity failures
# =============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_store_timeout_raises(self):
        store = build_team_store(latency=0.05)
        engine = PurchaseEngine(store, settings=Settings(store_timeout=0.01))

        with pytest.raises(InfrastructureTimeout):
            await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1)

        assert len(engine.validator.cache) == 0
        assert engine.getPerformanceStats()["components"]["validator"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self):
        store = build_team_store(latency=0.05)
        engine = PurchaseEngine(store, settings=Settings(store_timeout=None))

        with pytest.raises(InfrastructureTimeout):
            await engine.validatePurchasePermission(5, 4, PRODUCT_ID, 1, timeout=0.01)

    @pytest.mark.asyncio
    async def test_cycle_propagates(self, team_store, purchase_engine):
        team_store.set_parent(30, 34)

        with pytest.raises(HierarchyIntegrityError):
            await purchase_engine.validatePurchasePermission(34, 32, PRODUCT_ID, 1)
