# purchase_system/services/purchase_validator.py
"""
Purchase permission validator.

Runs the ordered purchase rules, accumulates every failure into reasons and
caches the whole result for a short TTL. Results are cached by
(buyerId, sellerId, productId, quantityBucket); the product is part of the
key because stock and product limits feed into the decision. A bucket hit is
only served when the cached verdict covers the requested quantity: both
quantities must sit on the same side of every stock and quantity limit.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Hashable, Optional, Sequence, Tuple

from purchase_system.config.levels import LevelRegistry
from purchase_system.config.settings import Settings
from purchase_system.services.path_finder import SupplyChainPathFinder
from purchase_system.services.performance_monitor import PerformanceMonitor, VALIDATOR
from purchase_system.services.purchase_rules import (
    DEFAULT_RULES,
    PurchaseRule,
    RuleContext,
    RuleOutcome,
    is_valid_quantity,
)
from purchase_system.stores.base import TimedHierarchyStore
from purchase_system.types import PurchaseValidationResult
from purchase_system.utils.cache import TTLCache

logger = logging.getLogger(__name__)

VALIDATION_CACHE = "validationResults"


@dataclass(frozen=True)
class CachedValidation:
    """Validation result plus the quantity range it was decided for."""
    result: PurchaseValidationResult
    quantity: Any
    quantityCeiling: Optional[int]

    def covers(self, quantity: Any) -> bool:
        if quantity == self.quantity:
            return True
        if not is_valid_quantity(quantity):
            return False
        if self.quantityCeiling is None:
            return True
        return quantity <= self.quantityCeiling and self.quantity <= self.quantityCeiling


class PurchaseValidator:
    """Decides whether a buyer may purchase from a seller."""

    def __init__(
            self,
            store: TimedHierarchyStore,
            settings: Settings,
            pathFinder: SupplyChainPathFinder,
            registry: Optional[LevelRegistry] = None,
            monitor: Optional[PerformanceMonitor] = None,
            rules: Optional[Sequence[PurchaseRule]] = None
    ):
        self.store = store
        self.settings = settings
        self.pathFinder = pathFinder
        self.registry = registry or LevelRegistry.from_settings(settings)
        self.monitor = monitor or PerformanceMonitor()
        self.rules = tuple(rules if rules is not None else DEFAULT_RULES)
        self.cache = TTLCache(
            VALIDATION_CACHE,
            maxSize=settings.validation_cache_size,
            ttl=settings.validation_cache_ttl
        )
        self.monitor.register_cache(VALIDATION_CACHE, self.cache)

    async def validatePurchasePermission(
            self,
            buyerId: int,
            sellerId: int,
            productId: Any,
            quantity: Any,
            timeout: Optional[float] = None
    ) -> PurchaseValidationResult:
        """
        Check whether buyer may purchase quantity of product from seller.

        Business rejections come back in the result, never as exceptions.

        Args:
            buyerId: Buying member
            sellerId: Selling member
            productId: Product being bought
            quantity: Positive integer
            timeout: Deadline per store call (default from settings)

        Returns:
            PurchaseValidationResult (the cached object on a cache hit)

        Raises:
            InfrastructureTimeout: Store did not answer in time
            HierarchyIntegrityError: Cyclic or corrupted hierarchy
        """
        started = time.perf_counter()
        key = self._cache_key(buyerId, sellerId, productId, quantity)

        cached = self.cache.get(key)
        if cached is not None and cached.covers(quantity):
            self._record(started, cacheHit=True)
            logger.debug(f"Validation cache hit for {key}")
            return cached.result

        try:
            result, ceiling = await self._evaluate(buyerId, sellerId, productId, quantity, timeout, started)
        except Exception:
            self._record(started, cacheHit=False, failed=True)
            raise

        self.cache.set(key, CachedValidation(result, quantity, ceiling))
        self._record(started, cacheHit=False)

        logger.info(
            f"Purchase {buyerId} <- {sellerId} (product {productId} x{quantity}): "
            f"canPurchase={result.canPurchase}, reasons={list(result.reasons)}"
        )
        return result

    async def _evaluate(
            self,
            buyerId: int,
            sellerId: int,
            productId: Any,
            quantity: Any,
            timeout: Optional[float],
            started: float
    ) -> Tuple[PurchaseValidationResult, Optional[int]]:
        buyer, seller, product = await asyncio.gather(
            self.store.get_user(buyerId, timeout=timeout),
            self.store.get_user(sellerId, timeout=timeout),
            self.store.get_product(productId, timeout=timeout),
        )

        ctx = RuleContext(
            buyerId=buyerId,
            sellerId=sellerId,
            productId=productId,
            quantity=quantity,
            buyer=buyer,
            seller=seller,
            product=product,
            settings=self.settings,
            registry=self.registry,
            pathFinder=self.pathFinder,
            timeout=timeout,
        )

        reasons = []
        restrictions = []
        applied = []
        structuralError = False
        rejected = False

        for rule in self.rules:
            if ctx.overridden and not rule.structural:
                continue

            verdict = await rule.evaluate(ctx)
            applied.append(rule.name)
            restrictions.extend(verdict.restrictions)

            if verdict.outcome is RuleOutcome.STRUCTURAL:
                structuralError = True
                reasons.extend(verdict.reasons)
            elif verdict.outcome is RuleOutcome.REJECT:
                rejected = True
                reasons.extend(verdict.reasons)
            elif verdict.outcome is RuleOutcome.OVERRIDE:
                ctx.overridden = True

        isValid = not structuralError
        path = ctx.path

        result = PurchaseValidationResult(
            isValid=isValid,
            canPurchase=isValid and not rejected,
            reasons=tuple(reasons),
            restrictions=tuple(restrictions),
            metadata={
                "buyerLevel": buyer.level.value if buyer else None,
                "sellerLevel": seller.level.value if seller else None,
                "resolvedPathDistance": path.totalDistance if path is not None and path.isValid else None,
                "timingMs": round((time.perf_counter() - started) * 1000, 3),
                "appliedRules": tuple(applied),
            },
        )
        return result, ctx.quantityCeiling

    def _cache_key(self, buyerId: int, sellerId: int, productId: Any, quantity: Any) -> Hashable:
        if is_valid_quantity(quantity):
            bucket = (quantity - 1) // self.settings.quantity_bucket_size
        else:
            bucket = ("invalid", repr(quantity))
        return (buyerId, sellerId, productId, bucket)

    def invalidate(self, userIds=None) -> int:
        """
        Drop cached results.

        Any hierarchy change can flip lineage for pairs that do not mention
        the changed users, so the whole cache goes unless userIds is given.
        """
        if userIds is None:
            removed = len(self.cache)
            self.cache.clear()
            return removed
        return self.cache.invalidate_users(userIds)

    def clearCache(self) -> None:
        self.cache.clear()

    def _record(self, started: float, cacheHit: bool, failed: bool = False) -> None:
        elapsedMs = (time.perf_counter() - started) * 1000
        self.monitor.record(VALIDATOR, cacheHit=cacheHit, elapsedMs=elapsedMs, failed=failed)
