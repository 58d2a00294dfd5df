# purchase_system/engine.py
"""
PurchaseEngine - wires settings, stores, caches and services together.

Each engine owns its caches and counters; two engines never share state.
"""
import logging
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from purchase_system.config.levels import LevelLike, LevelRegistry
from purchase_system.config.settings import Settings
from purchase_system.services.commission_service import CommissionCalculator, OrderLike
from purchase_system.services.path_finder import SupplyChainPathFinder
from purchase_system.services.performance_monitor import PerformanceMonitor
from purchase_system.services.purchase_validator import PurchaseValidator
from purchase_system.stores.base import ProductCatalog, TeamHierarchyStore, TimedHierarchyStore
from purchase_system.stores.sql_store import SqlProductCatalog, SqlTeamStore
from purchase_system.types import CommissionBreakdown, PurchaseValidationResult, SupplyPath

logger = logging.getLogger(__name__)


class PurchaseEngine:
    """
    Entry point for purchase validation and commission calculation.

    Usage:
        engine = PurchaseEngine(store, settings=Settings.from_env())
        result = await engine.validatePurchasePermission(buyer, seller, product, 2)
        breakdown = await engine.calculateCommission(order)
    """

    def __init__(
            self,
            store: TeamHierarchyStore,
            catalog: Optional[ProductCatalog] = None,
            settings: Optional[Settings] = None
    ):
        self.settings = settings or Settings()
        self.registry = LevelRegistry.from_settings(self.settings)
        self.monitor = PerformanceMonitor()

        if catalog is None and isinstance(store, ProductCatalog):
            catalog = store

        self.store = TimedHierarchyStore(store, catalog, defaultTimeout=self.settings.store_timeout)
        self.pathFinder = SupplyChainPathFinder(
            self.store, self.settings, registry=self.registry, monitor=self.monitor
        )
        self.validator = PurchaseValidator(
            self.store,
            self.settings,
            self.pathFinder,
            registry=self.registry,
            monitor=self.monitor
        )
        self.calculator = CommissionCalculator(
            self.store, self.settings, self.pathFinder, registry=self.registry
        )

        logger.info(
            f"Purchase engine ready (store={type(store).__name__}, "
            f"maxDepth={self.settings.max_traversal_depth})"
        )

    @classmethod
    def from_session(cls, session: Session, settings: Optional[Settings] = None) -> "PurchaseEngine":
        """Engine over the SQL members and products tables."""
        return cls(SqlTeamStore(session), SqlProductCatalog(session), settings=settings)

    # ═══════════════════════════════════════════════════════════════════════
    # OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def validatePurchasePermission(
            self,
            buyerId: int,
            sellerId: int,
            productId: Any,
            quantity: Any,
            timeout: Optional[float] = None
    ) -> PurchaseValidationResult:
        return await self.validator.validatePurchasePermission(
            buyerId, sellerId, productId, quantity, timeout=timeout
        )

    async def findOptimalSupplyPath(
            self,
            buyerId: int,
            sellerId: int,
            timeout: Optional[float] = None
    ) -> SupplyPath:
        return await self.pathFinder.findOptimalSupplyPath(buyerId, sellerId, timeout=timeout)

    async def calculateCommission(
            self,
            order: OrderLike,
            timeout: Optional[float] = None
    ) -> CommissionBreakdown:
        return await self.calculator.calculateCommission(order, timeout=timeout)

    async def previewCommission(
            self,
            sellerId: int,
            sellerLevel: LevelLike,
            totalAmount: Any,
            timeout: Optional[float] = None
    ) -> CommissionBreakdown:
        return await self.calculator.previewCommission(
            sellerId, sellerLevel, totalAmount, timeout=timeout
        )

    def fallbackCommission(self, order: OrderLike, reason: Optional[str] = None) -> CommissionBreakdown:
        return self.calculator.fallbackCommission(order, reason=reason)

    # ═══════════════════════════════════════════════════════════════════════
    # CACHES AND OBSERVABILITY
    # ═══════════════════════════════════════════════════════════════════════

    def onHierarchyChanged(self, userIds: Optional[Iterable[int]] = None) -> int:
        """
        Hook for the hierarchy-mutation side (referrals, promotions).

        Args:
            userIds: Members whose parent, level or status changed;
                None drops everything

        Returns:
            Number of cache entries dropped
        """
        removed = self.validator.invalidate()
        if userIds is None:
            removed += len(self.pathFinder.cache)
            self.pathFinder.clearCache()
        else:
            removed += self.pathFinder.invalidateUsers(userIds)
        return removed

    def getPerformanceStats(self):
        return self.monitor.getPerformanceStats()

    def clearCache(self) -> None:
        self.monitor.clearCache()
