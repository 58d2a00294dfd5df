# tests/test_chain_walker.py
"""
Tests for ChainWalker and the in-memory team store.

Run:
    pytest tests/test_chain_walker.py -v
"""
import pytest

from purchase_system.config.levels import MembershipLevel
from purchase_system.errors import HierarchyIntegrityError, ValidationError
from purchase_system.stores.memory_store import InMemoryTeamStore
from purchase_system.types import UserRecord
from purchase_system.utils.chain_walker import ChainWalker


class GappedStore:
    """Store whose member 2 points at a parent that was deleted."""

    def __init__(self):
        self.users = {
            1: UserRecord(id=1, level=MembershipLevel.VIP, parentId=None),
            2: UserRecord(id=2, level=MembershipLevel.NORMAL, parentId=99),
            3: UserRecord(id=3, level=MembershipLevel.NORMAL, parentId=2),
        }

    async def get_user(self, userId):
        return self.users.get(userId)

    async def get_children(self, userId):
        return sorted(u.id for u in self.users.values() if u.parentId == userId)


# =============================================================================
# TEST CLASS: Upline
# =============================================================================

class TestUpline:

    @pytest.mark.asyncio
    async def test_ancestor_ids_root_first(self, team_store):
        walker = ChainWalker(team_store)

        assert await walker.get_ancestor_ids(34) == [30, 31, 32, 33, 34]
        assert await walker.get_ancestor_ids(1) == [1]
        assert await walker.get_ancestor_ids(999) == []

    @pytest.mark.asyncio
    async def test_upline_nearest_first_with_depth(self, team_store):
        walker = ChainWalker(team_store)

        chain = await walker.get_upline_chain(34, max_depth=2)

        assert [u.id for u in chain] == [33, 32]

    @pytest.mark.asyncio
    async def test_callback_can_stop_walk(self, team_store):
        walker = ChainWalker(team_store)
        seen = []

        def until_star(user, level):
            seen.append((user.id, level))
            return user.level is not MembershipLevel.STAR_1

        processed = await walker.walk_upline(34, until_star)

        assert processed == 2
        assert seen == [(33, 1), (32, 2)]

    @pytest.mark.asyncio
    async def test_cycle_raises(self, team_store):
        team_store.set_parent(30, 34)
        walker = ChainWalker(team_store)

        with pytest.raises(HierarchyIntegrityError):
            await walker.get_ancestor_ids(34)

    @pytest.mark.asyncio
    async def test_gap_stops_walk(self):
        walker = ChainWalker(GappedStore())

        assert await walker.get_ancestor_ids(3) == [2, 3]
        assert not await walker.validate_chain_to_root(3)
        assert await walker.validate_chain_to_root(1)


# =============================================================================
# TEST CLASS: Downline
# =============================================================================

class TestDownline:

    @pytest.mark.asyncio
    async def test_count_downline(self, team_store):
        walker = ChainWalker(team_store)

        assert await walker.count_downline(1) == 9
        assert await walker.count_downline(2) == 6
        assert await walker.count_downline(2, max_depth=1) == 5

    @pytest.mark.asyncio
    async def test_downline_levels(self, team_store):
        walker = ChainWalker(team_store)
        seen = []

        await walker.walk_downline(30, lambda uid, level: seen.append((uid, level)))

        assert seen == [(31, 1), (32, 2), (33, 3), (34, 4)]


# =============================================================================
# TEST CLASS: Chain validation
# =============================================================================

class TestValidateChain:

    def test_valid_chain(self):
        assert ChainWalker.validate_chain((1, 2, 4), 4) == [1, 2, 4]
        assert ChainWalker.validate_chain((), 4) == []

    @pytest.mark.parametrize("chain", [(1, 2, 5), (1, 2, 1, 4)])
    def test_corrupted_chain(self, chain):
        with pytest.raises(HierarchyIntegrityError):
            ChainWalker.validate_chain(chain, 4)


# =============================================================================
# TEST CLASS: In-memory store
# =============================================================================

class TestInMemoryStore:

    def test_duplicate_and_orphan_rejected(self, team_store):
        with pytest.raises(ValidationError):
            team_store.add_member(1, "VIP")
        with pytest.raises(ValidationError):
            team_store.add_member(50, "VIP", parentId=777)

    @pytest.mark.asyncio
    async def test_records_carry_paths_and_counts(self, team_store):
        user = await team_store.get_user(2)

        assert user.ancestorPath == (1, 2)
        assert user.directCount == 5
        assert user.teamCount == 6

    @pytest.mark.asyncio
    async def test_rebuild_after_move(self, team_store):
        team_store.set_parent(10, 2)
        team_store.rebuild_path_index()

        assert team_store.pathsFresh
        assert await team_store.get_ancestor_chain(10) == [1, 2, 10]
        assert (await team_store.get_user(2)).teamCount == 7

    def test_rebuild_detects_cycle(self, team_store):
        team_store.set_parent(30, 34)

        with pytest.raises(HierarchyIntegrityError):
            team_store.rebuild_path_index()

    @pytest.mark.asyncio
    async def test_peers_exclude_self_and_other_levels(self, team_store):
        assert await team_store.get_peers(6, MembershipLevel.STAR_3) == [7, 8, 9]
        assert await team_store.get_peers(4, MembershipLevel.VIP) == []
