# purchase_system/stores/sql_store.py
"""
SQLAlchemy-backed hierarchy store and product catalog.

Reads go through the session handed in by the caller; the engine never
commits. rebuild_team_paths() is the one writer and is meant for the
hierarchy-mutation side (migrations, admin jobs).

Session work is blocking, so every read runs in a worker thread via
asyncio.to_thread and store deadlines can fire while a query stalls.
Sessions are not thread-safe: stores sharing a session also share one lock
(kept in session.info) and run their queries one at a time.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.member import Member
from models.product import Product
from purchase_system.config.levels import LevelLike, parse_level
from purchase_system.errors import HierarchyIntegrityError
from purchase_system.stores.base import ProductCatalog, TeamHierarchyStore
from purchase_system.types import ProductRecord, UserRecord

logger = logging.getLogger(__name__)

SESSION_LOCK = "purchase_system.session_lock"


def parse_team_path(teamPath: Optional[str]) -> Tuple[int, ...]:
    """'/1/5/9/' -> (1, 5, 9). Empty or missing path -> ()."""
    if not teamPath:
        return ()
    try:
        return tuple(int(part) for part in teamPath.strip("/").split("/") if part)
    except ValueError:
        logger.warning(f"Unparseable teamPath: {teamPath!r}")
        return ()


def format_team_path(chain) -> str:
    return "/" + "/".join(str(uid) for uid in chain) + "/"


class SessionWorker:
    """Runs blocking session calls off the event loop, one at a time."""

    def __init__(self, session: Session):
        self.session = session
        self._lock = session.info.setdefault(SESSION_LOCK, threading.Lock())

    async def _run(self, fn: Callable, *args):
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable, *args):
        with self._lock:
            return fn(*args)


class SqlTeamStore(SessionWorker, TeamHierarchyStore):
    """
    Team store over the members table.

    get_ancestor_chain() trusts teamPath when it is consistent with the
    member's own parent pointer, otherwise walks parents.
    """

    def _get_member(self, userId: int) -> Optional[Member]:
        return self.session.query(Member).filter_by(id=userId).first()

    @staticmethod
    def _to_record(member: Member) -> UserRecord:
        return UserRecord(
            id=member.id,
            level=parse_level(member.level),
            parentId=member.parentId,
            status=member.status,
            ancestorPath=parse_team_path(member.teamPath),
            directCount=member.directCount or 0,
            teamCount=member.teamCount or 0,
        )

    def _load_user(self, userId: int) -> Optional[UserRecord]:
        member = self._get_member(userId)
        if not member:
            return None
        return self._to_record(member)

    async def get_user(self, userId: int) -> Optional[UserRecord]:
        return await self._run(self._load_user, userId)

    def _load_children(self, userId: int) -> List[int]:
        rows = self.session.query(Member.id).filter(
            Member.parentId == userId
        ).order_by(Member.id).all()
        return [row.id for row in rows]

    async def get_children(self, userId: int) -> List[int]:
        return await self._run(self._load_children, userId)

    def _load_team_path(self, userId: int) -> Optional[Tuple[Optional[str], bool]]:
        member = self._get_member(userId)
        if not member:
            return None
        chain = parse_team_path(member.teamPath)
        return member.teamPath, self._path_is_consistent(member, chain)

    async def get_ancestor_chain(self, userId: int) -> List[int]:
        stored = await self._run(self._load_team_path, userId)
        if stored is None:
            return []

        teamPath, consistent = stored
        if consistent:
            return list(parse_team_path(teamPath))

        logger.warning(
            f"Stale teamPath for member {userId} ({teamPath!r}), "
            f"walking parent links"
        )
        return await super().get_ancestor_chain(userId)

    @staticmethod
    def _path_is_consistent(member: Member, chain: Tuple[int, ...]) -> bool:
        if not chain or chain[-1] != member.id:
            return False
        if member.parentId is None:
            return len(chain) == 1
        return len(chain) >= 2 and chain[-2] == member.parentId

    def _load_peers(self, userId: int, level: LevelLike) -> List[int]:
        member = self._get_member(userId)
        if not member or member.parentId is None:
            return []

        rows = self.session.query(Member.id).filter(
            Member.parentId == member.parentId,
            Member.level == parse_level(level).value,
            Member.id != userId
        ).order_by(Member.id).all()
        return [row.id for row in rows]

    async def get_peers(self, userId: int, level: LevelLike) -> List[int]:
        return await self._run(self._load_peers, userId, level)

    def rebuild_team_paths(self) -> int:
        """
        Recompute teamPath, directCount and teamCount for every member.

        Flushes changes; committing is up to the caller.

        Returns:
            Number of members updated

        Raises:
            HierarchyIntegrityError: If parent pointers form a cycle
        """
        with self._lock:
            return self._rebuild_team_paths()

    def _rebuild_team_paths(self) -> int:
        members: Dict[int, Member] = {m.id: m for m in self.session.query(Member).all()}
        paths: Dict[int, Tuple[int, ...]] = {}

        for member in members.values():
            trail = []
            visited = set()
            current = member
            while current is not None and current.id not in paths:
                if current.id in visited:
                    logger.error(f"Cycle detected at member {current.id} while rebuilding team paths")
                    raise HierarchyIntegrityError(
                        f"Cycle in parent links at member {current.id}",
                        userId=current.id
                    )
                visited.add(current.id)
                trail.append(current.id)
                current = members.get(current.parentId) if current.parentId is not None else None

            prefix = paths[current.id] if current is not None else ()
            for uid in reversed(trail):
                prefix = prefix + (uid,)
                paths[uid] = prefix

        direct: Dict[int, int] = {uid: 0 for uid in members}
        team: Dict[int, int] = {uid: 0 for uid in members}
        for uid, path in paths.items():
            parent_id = members[uid].parentId
            if parent_id in direct:
                direct[parent_id] += 1
            for ancestor_id in path[:-1]:
                team[ancestor_id] += 1

        for uid, member in members.items():
            member.teamPath = format_team_path(paths[uid])
            member.directCount = direct[uid]
            member.teamCount = team[uid]

        self.session.flush()
        logger.info(f"Rebuilt team paths for {len(members)} members")
        return len(members)


class SqlProductCatalog(SessionWorker, ProductCatalog):
    """Product catalog over the products table."""

    async def get_product(self, productId: Any) -> Optional[ProductRecord]:
        return await self._run(self._load_product, productId)

    def _load_product(self, productId: Any) -> Optional[ProductRecord]:
        product = self.session.query(Product).filter_by(id=productId).first()
        if not product:
            return None
        return ProductRecord(
            id=product.id,
            status=product.status,
            stock=product.stock or 0,
            purchaseLimit=product.purchaseLimit,
            minLevel=parse_level(product.minLevel) if product.minLevel else None,
        )
