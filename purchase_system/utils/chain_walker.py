# purchase_system/utils/chain_walker.py
"""
Safe team chain walking utilities.
Prevents infinite loops and validates chain integrity.

Unlike a plain parent-pointer loop, every walk keeps a visited set and a
repeated id is reported as HierarchyIntegrityError instead of looping.
"""
from typing import Callable, List, Optional, Sequence, Set
import logging

from purchase_system.errors import HierarchyIntegrityError
from purchase_system.types import UserRecord

logger = logging.getLogger(__name__)


class ChainWalker:
    """
    Safe utilities for walking team upline/downline chains.

    Works against any object exposing async get_user(id) and
    get_children(id), i.e. a TeamHierarchyStore.
    """

    def __init__(self, store):
        self.store = store

    async def walk_upline(
            self,
            start_id: int,
            callback: Callable[[UserRecord, int], bool],
            max_depth: Optional[int] = 50
    ) -> int:
        """
        Walk up the upline chain, calling callback for each ancestor.

        Args:
            start_id: Starting user id (not passed to callback)
            callback: Function(user, level) -> continue_walking (bool)
            max_depth: Stop after this many ancestors (None = until root)

        Returns:
            Number of users processed

        Raises:
            HierarchyIntegrityError: If parent pointers form a cycle

        Example:
            def collect(user, level):
                print(f"Level {level}: {user.id}")
                return True  # Continue walking

            await walker.walk_upline(user_id, collect)
        """
        current = await self.store.get_user(start_id)
        if current is None:
            return 0

        level = 1
        processed = 0
        visited: Set[int] = {current.id}

        while current.parentId is not None:
            if max_depth is not None and level > max_depth:
                logger.debug(f"Max depth ({max_depth}) reached starting from user {start_id}")
                break

            if current.parentId in visited:
                logger.error(f"Cycle detected at user {current.parentId} (walk from {start_id})")
                raise HierarchyIntegrityError(
                    f"Cycle in parent links at user {current.parentId}",
                    userId=current.parentId
                )

            upline = await self.store.get_user(current.parentId)
            if upline is None:
                logger.warning(
                    f"Upline not found: parentId={current.parentId} "
                    f"for user {current.id}"
                )
                break

            visited.add(upline.id)
            processed += 1

            if not callback(upline, level):
                break

            current = upline
            level += 1

        return processed

    async def get_upline_chain(
            self,
            user_id: int,
            max_depth: Optional[int] = None
    ) -> List[UserRecord]:
        """
        Get upline users, nearest first.

        Returns:
            List of ancestors (start user excluded)
        """
        chain: List[UserRecord] = []

        def collect(user: UserRecord, level: int) -> bool:
            chain.append(user)
            return True

        await self.walk_upline(user_id, collect, max_depth=max_depth)
        return chain

    async def get_ancestor_ids(self, user_id: int) -> List[int]:
        """
        Get ancestor chain ordered root..user, user included.

        Returns:
            Empty list if user does not exist
        """
        user = await self.store.get_user(user_id)
        if user is None:
            return []

        upline = await self.get_upline_chain(user_id)
        chain = [u.id for u in reversed(upline)]
        chain.append(user.id)
        return chain

    async def walk_downline(
            self,
            start_id: int,
            callback: Callable[[int, int], None],
            max_depth: int = 50,
            visited: Optional[Set[int]] = None
    ) -> int:
        """
        Walk down the downline tree breadth first.

        Args:
            start_id: Starting user id (not passed to callback)
            callback: Function(user_id, level) for each descendant
            max_depth: Maximum depth
            visited: Set of visited user IDs (for cycle detection)

        Returns:
            Total number of users processed

        Raises:
            HierarchyIntegrityError: If a user is reached twice
        """
        if visited is None:
            visited = set()
        visited.add(start_id)

        processed = 0
        frontier = [start_id]
        level = 1

        while frontier and level <= max_depth:
            next_frontier = []
            for parent_id in frontier:
                for child_id in await self.store.get_children(parent_id):
                    if child_id in visited:
                        logger.error(f"Cycle detected at user {child_id} (downline of {start_id})")
                        raise HierarchyIntegrityError(
                            f"User {child_id} reached twice in downline of {start_id}",
                            userId=child_id
                        )
                    visited.add(child_id)
                    callback(child_id, level)
                    processed += 1
                    next_frontier.append(child_id)
            frontier = next_frontier
            level += 1

        return processed

    async def count_downline(self, user_id: int, max_depth: int = 50) -> int:
        """Count all users in downline."""
        return await self.walk_downline(user_id, lambda uid, lvl: None, max_depth=max_depth)

    async def validate_chain_to_root(self, user_id: int) -> bool:
        """
        Validate that user's chain reaches a root without cycles or gaps.

        Returns:
            True if chain is valid, False if a parent is missing

        Raises:
            HierarchyIntegrityError: If parent pointers form a cycle
        """
        upline = await self.get_upline_chain(user_id)
        top_id = upline[-1].id if upline else user_id
        top = await self.store.get_user(top_id)
        if top is None:
            return False
        if top.parentId is not None:
            logger.warning(f"Chain from user {user_id} stops at {top_id}: parent {top.parentId} missing")
            return False
        return True

    @staticmethod
    def validate_chain(chain: Sequence[int], user_id: int) -> List[int]:
        """
        Check a store-provided ancestor chain (root..user).

        Returns:
            The chain as a list

        Raises:
            HierarchyIntegrityError: On repeated ids or a chain not ending at user
        """
        ids = list(chain)
        if not ids:
            return ids

        if ids[-1] != user_id:
            logger.error(f"Ancestor chain for user {user_id} ends at {ids[-1]}")
            raise HierarchyIntegrityError(
                f"Ancestor chain for user {user_id} does not end at the user",
                userId=user_id
            )

        seen: Set[int] = set()
        for uid in ids:
            if uid in seen:
                logger.error(f"Cycle detected at user {uid} in ancestor chain of {user_id}")
                raise HierarchyIntegrityError(
                    f"Cycle in ancestor chain of user {user_id} at {uid}",
                    userId=uid
                )
            seen.add(uid)

        return ids
