# purchase_system/services/path_finder.py
"""
Supply chain path finder.

Resolves the route between a buyer and a seller through their lowest common
ancestor (LCA) and tags every node with its supply role.

ROUTE ORDER:
- seller-side nodes, seller first, up to (not including) the LCA
- buyer-side nodes, buyer's parent first, up to (not including) the LCA
- the LCA itself, tagged INTERMEDIARY, unless the LCA is the buyer

The buyer is never on the path. Everything except the LCA is SUPPLIER.

Example (root -> A -> B -> C -> D):
    buyer=D, seller=B  ->  [C (supplier), B (intermediary)], distance 2
    buyer=B, seller=D  ->  [D (supplier), C (supplier)],      distance 2
"""
import asyncio
import logging
import time
from typing import Iterable, List, Optional

from purchase_system.config.levels import LevelLike, LevelRegistry
from purchase_system.config.settings import Settings
from purchase_system.errors import HierarchyIntegrityError
from purchase_system.services.performance_monitor import PerformanceMonitor, PATH_FINDER
from purchase_system.stores.base import TimedHierarchyStore
from purchase_system.types import SupplyPath, SupplyPathNode, SupplyRole, UserRecord
from purchase_system.utils.cache import TTLCache
from purchase_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)

PATH_CACHE = "supplyPaths"


class SupplyChainPathFinder:
    """Finds and caches supply paths between team members."""

    def __init__(
            self,
            store: TimedHierarchyStore,
            settings: Settings,
            registry: Optional[LevelRegistry] = None,
            monitor: Optional[PerformanceMonitor] = None
    ):
        self.store = store
        self.settings = settings
        self.registry = registry or LevelRegistry.from_settings(settings)
        self.monitor = monitor or PerformanceMonitor()
        self.cache = TTLCache(
            PATH_CACHE,
            maxSize=settings.path_cache_size,
            ttl=settings.path_cache_ttl
        )
        self.monitor.register_cache(PATH_CACHE, self.cache)

    async def findOptimalSupplyPath(
            self,
            buyerId: int,
            sellerId: int,
            timeout: Optional[float] = None
    ) -> SupplyPath:
        """
        Resolve supply path from buyer to seller.

        Args:
            buyerId: Buying member
            sellerId: Selling member
            timeout: Deadline per store call (default from settings)

        Returns:
            SupplyPath; isValid=False with failure PATH_NOT_FOUND when the
            two members share no ancestor within max_traversal_depth

        Raises:
            HierarchyIntegrityError: Cyclic or corrupted ancestor chain
            InfrastructureTimeout: Store did not answer in time
        """
        started = time.perf_counter()

        if buyerId == sellerId:
            self._record(started, cacheHit=False)
            return SupplyPath.empty()

        key = (buyerId, sellerId)
        cached = self.cache.get(key)
        if cached is not None:
            self._record(started, cacheHit=True)
            return cached

        try:
            path = await self._resolve(buyerId, sellerId, timeout)
        except Exception:
            self._record(started, cacheHit=False, failed=True)
            raise

        self.cache.set(key, path)
        self._record(started, cacheHit=False)
        return path

    async def _resolve(self, buyerId: int, sellerId: int, timeout: Optional[float]) -> SupplyPath:
        buyerChain, sellerChain = await asyncio.gather(
            self.store.get_ancestor_chain(buyerId, timeout=timeout),
            self.store.get_ancestor_chain(sellerId, timeout=timeout),
        )
        buyerChain = ChainWalker.validate_chain(buyerChain, buyerId)
        sellerChain = ChainWalker.validate_chain(sellerChain, sellerId)

        if not buyerChain or not sellerChain:
            logger.info(f"No path {buyerId} -> {sellerId}: member missing")
            return SupplyPath.not_found()

        # Nearest first, node plus at most max_traversal_depth ancestors
        limit = self.settings.max_traversal_depth + 1
        buyerUp = list(reversed(buyerChain))[:limit]
        sellerUp = list(reversed(sellerChain))[:limit]

        sellerIndex = {uid: i for i, uid in enumerate(sellerUp)}
        lcaId = None
        buyerDistance = sellerDistance = 0
        for i, uid in enumerate(buyerUp):
            if uid in sellerIndex:
                lcaId = uid
                buyerDistance = i
                sellerDistance = sellerIndex[uid]
                break

        if lcaId is None:
            logger.info(
                f"No path {buyerId} -> {sellerId}: no common ancestor "
                f"within depth {self.settings.max_traversal_depth}"
            )
            return SupplyPath.not_found()

        # (userId, role, distanceFromSeller)
        route = []
        for i, uid in enumerate(sellerUp[:sellerDistance]):
            route.append((uid, SupplyRole.SUPPLIER, i))
        for j in range(1, buyerDistance):
            route.append((buyerUp[j], SupplyRole.SUPPLIER, sellerDistance + buyerDistance - j))
        if lcaId != buyerId:
            route.append((lcaId, SupplyRole.INTERMEDIARY, sellerDistance))

        users = await asyncio.gather(*[
            self.store.get_user(uid, timeout=timeout) for uid, _, _ in route
        ])

        nodes = []
        for (uid, role, distance), user in zip(route, users):
            if user is None:
                logger.error(f"User {uid} is on an ancestor chain but missing from the store")
                raise HierarchyIntegrityError(
                    f"Ancestor chain references missing user {uid}",
                    userId=uid
                )
            nodes.append(SupplyPathNode(
                userId=uid,
                role=role,
                level=user.level,
                distanceFromSeller=distance,
            ))

        logger.debug(
            f"Path {buyerId} -> {sellerId}: {[n.userId for n in nodes]} via LCA {lcaId}"
        )

        return SupplyPath(
            path=tuple(nodes),
            totalDistance=len(nodes),
            isValid=True,
            lcaId=lcaId,
        )

    async def findHigherLevelUpline(
            self,
            userId: int,
            minLevel: LevelLike,
            maxDepth: Optional[int] = None,
            timeout: Optional[float] = None
    ) -> Optional[UserRecord]:
        """
        Nearest active ancestor whose level is strictly above minLevel.

        Returns:
            Ancestor record, or None if there is none within maxDepth
        """
        depth = maxDepth if maxDepth is not None else self.settings.max_traversal_depth
        threshold = self.registry.rank(minLevel)
        chain = await self.store.get_ancestor_chain(userId, timeout=timeout)
        chain = ChainWalker.validate_chain(chain, userId)

        for ancestorId in list(reversed(chain))[1:depth + 1]:
            ancestor = await self.store.get_user(ancestorId, timeout=timeout)
            if ancestor is None:
                continue
            if ancestor.isActive and self.registry.rank(ancestor.level) > threshold:
                return ancestor
        return None

    def invalidateUsers(self, userIds: Iterable[int]) -> int:
        """
        Drop cached paths that a change to userIds may affect.

        Drops paths whose endpoints or nodes include any of the ids, plus
        every PATH_NOT_FOUND entry (a move can connect two trees).
        """
        ids = set(userIds)

        def _affected(key, path: SupplyPath) -> bool:
            if not path.isValid:
                return True
            if ids.intersection(key) or path.lcaId in ids:
                return True
            return any(node.userId in ids for node in path.path)

        removed = self.cache.invalidate_where(_affected)
        logger.info(f"Invalidated {removed} cached paths for users {sorted(ids)}")
        return removed

    def clearCache(self) -> None:
        self.cache.clear()

    def _record(self, started: float, cacheHit: bool, failed: bool = False) -> None:
        elapsedMs = (time.perf_counter() - started) * 1000
        self.monitor.record(PATH_FINDER, cacheHit=cacheHit, elapsedMs=elapsedMs, failed=failed)
