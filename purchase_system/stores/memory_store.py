# purchase_system/stores/memory_store.py
"""
In-memory team hierarchy and product catalog.

Members live in an arena (list) addressed through an id -> index map.
Parent pointers are the source of truth; the root..user path index is
derived and can be rebuilt at any time with rebuild_path_index().
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from purchase_system.config.levels import LevelLike, parse_level, MembershipLevel
from purchase_system.errors import HierarchyIntegrityError, ValidationError
from purchase_system.stores.base import ProductCatalog, TeamHierarchyStore
from purchase_system.types import ACTIVE, ProductRecord, UserRecord

logger = logging.getLogger(__name__)


@dataclass
class _Member:
    id: int
    level: MembershipLevel
    parentId: Optional[int]
    status: str = ACTIVE
    children: List[int] = field(default_factory=list)


class InMemoryTeamStore(TeamHierarchyStore, ProductCatalog):
    """
    Team store for tests and embedding.

    Usage:
        store = InMemoryTeamStore()
        store.add_member(1, "DIRECTOR")
        store.add_member(2, "VIP", parentId=1)
        store.add_product(100, stock=50)
    """

    def __init__(self, latency: float = 0.0):
        self._arena: List[_Member] = []
        self._index: Dict[int, int] = {}
        self._products: Dict[Any, ProductRecord] = {}
        self._paths: Dict[int, Tuple[int, ...]] = {}
        self._teamCounts: Dict[int, int] = {}
        self._pathsFresh = True
        # Artificial delay per call, for deadline tests
        self.latency = latency
        self.calls = 0

    # ═══════════════════════════════════════════════════════════════════════
    # FIXTURE HELPERS (hierarchy mutation lives outside the engine)
    # ═══════════════════════════════════════════════════════════════════════

    def add_member(
            self,
            userId: int,
            level: LevelLike,
            parentId: Optional[int] = None,
            status: str = ACTIVE
    ) -> UserRecord:
        if userId in self._index:
            raise ValidationError(f"User {userId} already exists")
        if parentId is not None and parentId not in self._index:
            raise ValidationError(f"Parent {parentId} of user {userId} does not exist")

        member = _Member(id=userId, level=parse_level(level), parentId=parentId, status=status)
        self._index[userId] = len(self._arena)
        self._arena.append(member)

        if parentId is not None:
            self._member(parentId).children.append(userId)

        if self._pathsFresh:
            parent_path = self._paths[parentId] if parentId is not None else ()
            self._paths[userId] = parent_path + (userId,)
            self._teamCounts[userId] = 0
            for ancestor_id in parent_path:
                self._teamCounts[ancestor_id] += 1

        return self._to_record(member)

    def set_parent(self, userId: int, parentId: Optional[int]) -> None:
        """Re-point a member; marks the path index stale."""
        if parentId is not None and parentId not in self._index:
            raise ValidationError(f"Parent {parentId} of user {userId} does not exist")

        member = self._member(userId)
        if member.parentId is not None:
            self._member(member.parentId).children.remove(userId)
        member.parentId = parentId
        if parentId is not None:
            self._member(parentId).children.append(userId)
        self._pathsFresh = False

    def set_level(self, userId: int, level: LevelLike) -> None:
        self._member(userId).level = parse_level(level)

    def set_status(self, userId: int, status: str) -> None:
        self._member(userId).status = status

    def add_product(
            self,
            productId: Any,
            stock: int = 100,
            status: str = ACTIVE,
            purchaseLimit: Optional[int] = None,
            minLevel: Optional[LevelLike] = None
    ) -> ProductRecord:
        product = ProductRecord(
            id=productId,
            status=status,
            stock=stock,
            purchaseLimit=purchaseLimit,
            minLevel=parse_level(minLevel) if minLevel is not None else None,
        )
        self._products[productId] = product
        return product

    def rebuild_path_index(self) -> None:
        """
        Recompute every root..user path and team count from parent pointers.

        Raises:
            HierarchyIntegrityError: If parent pointers form a cycle
        """
        paths: Dict[int, Tuple[int, ...]] = {}

        for member in self._arena:
            trail = []
            visited = set()
            current: Optional[_Member] = member
            while current is not None and current.id not in paths:
                if current.id in visited:
                    logger.error(f"Cycle detected at user {current.id} while rebuilding paths")
                    raise HierarchyIntegrityError(
                        f"Cycle in parent links at user {current.id}",
                        userId=current.id
                    )
                visited.add(current.id)
                trail.append(current.id)
                current = self._member(current.parentId) if current.parentId is not None else None

            prefix = paths[current.id] if current is not None else ()
            for uid in reversed(trail):
                prefix = prefix + (uid,)
                paths[uid] = prefix

        counts = {uid: 0 for uid in paths}
        for path in paths.values():
            for ancestor_id in path[:-1]:
                counts[ancestor_id] += 1

        self._paths = paths
        self._teamCounts = counts
        self._pathsFresh = True
        logger.info(f"Path index rebuilt for {len(paths)} members")

    @property
    def pathsFresh(self) -> bool:
        return self._pathsFresh

    def __len__(self) -> int:
        return len(self._arena)

    # ═══════════════════════════════════════════════════════════════════════
    # STORE INTERFACE
    # ═══════════════════════════════════════════════════════════════════════

    async def _tick(self) -> None:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get_user(self, userId: int) -> Optional[UserRecord]:
        await self._tick()
        if userId not in self._index:
            return None
        return self._to_record(self._member(userId))

    async def get_children(self, userId: int) -> List[int]:
        await self._tick()
        if userId not in self._index:
            return []
        return sorted(self._member(userId).children)

    async def get_ancestor_chain(self, userId: int) -> List[int]:
        if self._pathsFresh:
            await self._tick()
            return list(self._paths.get(userId, ()))
        return await super().get_ancestor_chain(userId)

    async def get_product(self, productId: Any) -> Optional[ProductRecord]:
        await self._tick()
        return self._products.get(productId)

    # ═══════════════════════════════════════════════════════════════════════
    # INTERNALS
    # ═══════════════════════════════════════════════════════════════════════

    def _member(self, userId: int) -> _Member:
        return self._arena[self._index[userId]]

    def _to_record(self, member: _Member) -> UserRecord:
        return UserRecord(
            id=member.id,
            level=member.level,
            parentId=member.parentId,
            status=member.status,
            ancestorPath=self._paths.get(member.id, ()) if self._pathsFresh else (),
            directCount=len(member.children),
            teamCount=self._teamCounts.get(member.id, 0) if self._pathsFresh else 0,
        )
