# purchase_system/stores/base.py
"""
Read-only interfaces to the team hierarchy and the product catalog.

The engine never writes through these. TimedHierarchyStore puts a deadline
on every call and turns expiry into InfrastructureTimeout.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, List, Optional

from purchase_system.config.levels import LevelLike, parse_level
from purchase_system.errors import InfrastructureTimeout
from purchase_system.types import ProductRecord, UserRecord
from purchase_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class TeamHierarchyStore(ABC):
    """Read access to team members and their relationships."""

    @abstractmethod
    async def get_user(self, userId: int) -> Optional[UserRecord]:
        """Get user by id, None if absent."""

    @abstractmethod
    async def get_children(self, userId: int) -> List[int]:
        """Direct referrals of user, ascending id."""

    async def get_ancestor_chain(self, userId: int) -> List[int]:
        """
        Ancestor ids ordered root..user, user included.

        Default implementation walks parent pointers. Stores with a
        precomputed path override this with a single read.

        Returns:
            Empty list if user does not exist

        Raises:
            HierarchyIntegrityError: If parent pointers form a cycle
        """
        return await ChainWalker(self).get_ancestor_ids(userId)

    async def get_peers(self, userId: int, level: LevelLike) -> List[int]:
        """Users with the same parent and level, excluding userId, ascending id."""
        user = await self.get_user(userId)
        if user is None or user.parentId is None:
            return []

        wanted = parse_level(level)
        peers = []
        for child_id in await self.get_children(user.parentId):
            if child_id == userId:
                continue
            child = await self.get_user(child_id)
            if child is not None and child.level is wanted:
                peers.append(child_id)
        return sorted(peers)


class ProductCatalog(ABC):
    """Read access to products."""

    @abstractmethod
    async def get_product(self, productId: Any) -> Optional[ProductRecord]:
        """Get product by id, None if absent."""


class TimedHierarchyStore:
    """
    Deadline wrapper over a hierarchy store and product catalog.

    Every method takes an optional timeout; None falls back to the default
    given at construction. A default of None means no deadline.

    Usage:
        timed = TimedHierarchyStore(store, catalog, defaultTimeout=2.0)
        user = await timed.get_user(42, timeout=0.5)
    """

    def __init__(
            self,
            store: TeamHierarchyStore,
            catalog: Optional[ProductCatalog] = None,
            defaultTimeout: Optional[float] = None
    ):
        self.store = store
        self.catalog = catalog
        self.defaultTimeout = defaultTimeout

    async def _call(self, operation: str, awaitable: Awaitable, timeout: Optional[float]):
        deadline = timeout if timeout is not None else self.defaultTimeout
        if deadline is None:
            return await awaitable

        try:
            return await asyncio.wait_for(awaitable, deadline)
        except asyncio.TimeoutError as e:
            logger.error(f"Store call {operation} exceeded {deadline}s deadline")
            raise InfrastructureTimeout(operation, deadline) from e

    async def get_user(self, userId: int, timeout: Optional[float] = None) -> Optional[UserRecord]:
        return await self._call(f"get_user({userId})", self.store.get_user(userId), timeout)

    async def get_children(self, userId: int, timeout: Optional[float] = None) -> List[int]:
        return await self._call(
            f"get_children({userId})", self.store.get_children(userId), timeout
        )

    async def get_ancestor_chain(self, userId: int, timeout: Optional[float] = None) -> List[int]:
        return await self._call(
            f"get_ancestor_chain({userId})", self.store.get_ancestor_chain(userId), timeout
        )

    async def get_peers(
            self,
            userId: int,
            level: LevelLike,
            timeout: Optional[float] = None
    ) -> List[int]:
        return await self._call(
            f"get_peers({userId})", self.store.get_peers(userId, level), timeout
        )

    async def get_product(self, productId: Any, timeout: Optional[float] = None) -> Optional[ProductRecord]:
        if self.catalog is None:
            return None
        return await self._call(
            f"get_product({productId})", self.catalog.get_product(productId), timeout
        )
