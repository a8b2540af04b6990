"""Tests for consensus clustering of review passes."""

import asyncio
from unittest.mock import AsyncMock, call

import pytest

from mr_reviewer.services.reviewer.consensus import ConsensusClusterer, majority_threshold
from mr_reviewer.services.reviewer.locate import locate
from mr_reviewer.services.reviewer.schemas import (
    RawComment,
    ReviewComment,
    Severity,
    Side,
    aggregate_severity,
)

SOURCE = (
    "def add(a, b):\n"
    "    return a + b\n"
    "\n"
    "\n"
    "def divide(a, b):\n"
    "    return a / b\n"
    "\n"
    "\n"
    "def greet(name):\n"
    "    print('hello ' + name)\n"
)

DIVIDE = "return a / b"
GREET = "print('hello ' + name)"


def make(pass_index: int, index: int, quote: str, severity: str = "medium", source: str = SOURCE):
    raw = RawComment(comment=f"comment {pass_index}-{index}", severity=severity, refersTo=quote)
    span = locate(source, quote)
    assert span is not None
    return ReviewComment(
        raw=raw, pass_index=pass_index, index_in_pass=index, side=Side.NEW, span=span
    )


def always(answer: bool) -> AsyncMock:
    return AsyncMock(return_value=answer)


def member_ids(groups):
    return [[m.id for m in g.members] for g in groups]


class TestMajorityThreshold:
    @pytest.mark.parametrize("passes,expected", [(1, 1), (2, 1), (3, 2), (4, 2), (5, 3)])
    def test_threshold(self, passes, expected):
        assert majority_threshold(passes) == expected


class TestConsensusClusterer:
    """Tests for ConsensusClusterer.cluster."""

    @pytest.mark.asyncio
    async def test_agreeing_passes_form_one_group(self):
        """The same issue from every pass becomes one group."""
        passes = [[make(0, 0, DIVIDE)], [make(1, 0, DIVIDE)], [make(2, 0, DIVIDE)]]
        oracle = always(True)

        groups = await ConsensusClusterer(oracle).cluster(passes)

        assert member_ids(groups) == [[(0, 0), (1, 0), (2, 0)]]
        # Only adjacent pairs are confirmed
        assert oracle.await_count == 2

    @pytest.mark.asyncio
    async def test_minority_issue_is_dropped(self):
        """An issue raised by one pass out of three has no majority."""
        passes = [
            [make(0, 0, DIVIDE), make(0, 1, GREET)],
            [make(1, 0, DIVIDE)],
            [],
        ]

        groups = await ConsensusClusterer(always(True)).cluster(passes)

        assert member_ids(groups) == [[(0, 0), (1, 0)]]

    @pytest.mark.asyncio
    async def test_single_pass_keeps_singletons(self):
        """With one pass every comment is its own consensus."""
        passes = [[make(0, 0, DIVIDE), make(0, 1, GREET)]]
        oracle = always(True)

        groups = await ConsensusClusterer(oracle).cluster(passes)

        assert member_ids(groups) == [[(0, 0)], [(0, 1)]]
        oracle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejection_invalidates_members(self):
        """A rejected group poisons its members for smaller groups."""
        passes = [[make(0, 0, DIVIDE)], [make(1, 0, DIVIDE)], [make(2, 0, DIVIDE)]]
        oracle = always(False)

        groups = await ConsensusClusterer(oracle).cluster(passes)

        assert groups == []
        assert oracle.await_count == 1

    @pytest.mark.asyncio
    async def test_oracle_failure_is_treated_as_different(self):
        passes = [[make(0, 0, DIVIDE)], [make(1, 0, DIVIDE)]]
        oracle = AsyncMock(side_effect=RuntimeError("model unavailable"))
        clusterer = ConsensusClusterer(oracle)

        groups = await clusterer.cluster(passes)

        # The rejected pair invalidates both members, so their singletons are skipped
        assert member_ids(groups) == []
        assert clusterer.last_oracle_calls == 1

    @pytest.mark.asyncio
    async def test_tighter_group_ranks_first(self):
        """Among equal sizes, the group with the closer quotes wins."""
        function = "def divide(a, b):\n    return a / b"
        header = "def divide(a, b):"
        passes = [
            [make(0, 0, function)],
            [make(1, 0, header), make(1, 1, DIVIDE)],
            [],
        ]
        oracle = always(True)

        groups = await ConsensusClusterer(oracle).cluster(passes)

        assert member_ids(groups) == [[(0, 0), (1, 0)]]
        assert oracle.await_count == 1

    @pytest.mark.asyncio
    async def test_severity_floor(self):
        passes = [[make(0, 0, DIVIDE, "low")], [make(1, 0, DIVIDE, "medium")], []]
        oracle = always(True)

        groups = await ConsensusClusterer(oracle, min_severity=Severity.MEDIUM).cluster(passes)

        assert groups == []
        oracle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oracle_budget_is_never_exceeded(self):
        source = "".join(f"value_{i} = compute_{i}(x)\n" for i in range(12))
        quotes = [f"value_{i} = compute_{i}(x)" for i in range(12)]
        passes = [
            [make(0, i, q, source=source) for i, q in enumerate(quotes)],
            [make(1, i, q, source=source) for i, q in enumerate(quotes)],
            [],
            [],
        ]
        oracle = always(True)
        clusterer = ConsensusClusterer(oracle, max_oracle_calls=10)

        groups = await clusterer.cluster(passes)

        assert oracle.await_count == 10
        assert clusterer.last_oracle_calls == 10
        assert len(groups) == 10

    @pytest.mark.asyncio
    async def test_budget_runs_out_inside_a_group(self):
        """Confirmed pairs of an unresolved group still back a smaller group."""
        passes = [[make(p, 0, DIVIDE)] for p in range(4)]
        oracle = always(True)
        clusterer = ConsensusClusterer(oracle, max_oracle_calls=2)

        groups = await clusterer.cluster(passes)

        # The four-member group cannot confirm its last pair; its members stay usable
        assert member_ids(groups) == [[(0, 0), (1, 0), (2, 0)]]
        assert oracle.await_count == 2
        assert clusterer.last_oracle_calls == 2

    @pytest.mark.asyncio
    async def test_shared_pair_is_asked_once(self):
        passes = [[make(p, 0, DIVIDE)] for p in range(3)]
        oracle = always(True)

        groups = await ConsensusClusterer(oracle, max_oracle_calls=1).cluster(passes)

        assert member_ids(groups) == [[(0, 0), (1, 0)]]
        first, second = passes[0][0], passes[1][0]
        assert oracle.await_args_list == [call(first, second)]

    @pytest.mark.asyncio
    async def test_large_search_can_be_cancelled(self):
        """A timeout interrupts the search and other tasks keep running."""
        quotes = [DIVIDE, "return a/b", "    return a / b", "return  a / b"]
        passes = [[make(p, i, q) for i, q in enumerate(quotes)] for p in range(6)]
        ticks = 0

        async def heartbeat():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0)

        task = asyncio.create_task(heartbeat())
        try:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(ConsensusClusterer(always(True)).cluster(passes), timeout=0.2)
        finally:
            task.cancel()

        assert ticks > 1

    @pytest.mark.asyncio
    async def test_groups_are_exclusive_and_majority_backed(self):
        passes = [
            [make(0, 0, DIVIDE), make(0, 1, GREET)],
            [make(1, 0, "def divide(a, b):\n    return a / b"), make(1, 1, GREET)],
            [make(2, 0, DIVIDE)],
        ]

        groups = await ConsensusClusterer(always(True)).cluster(passes)

        seen = [m.id for g in groups for m in g.members]
        assert len(seen) == len(set(seen))
        assert all(len(g.pass_indices) >= majority_threshold(3) for g in groups)
        assert len(groups) == 2

    @pytest.mark.asyncio
    async def test_no_comments(self):
        oracle = always(True)

        assert await ConsensusClusterer(oracle).cluster([[], [], []]) == []
        oracle.assert_not_awaited()


class TestAggregateSeverity:
    @pytest.mark.parametrize(
        "severities,expected",
        [
            (["low"], Severity.LOW),
            (["low", "high"], Severity.MEDIUM),
            (["medium", "high"], Severity.HIGH),
            (["low", "medium"], Severity.MEDIUM),
            (["low", "low", "high"], Severity.MEDIUM),
        ],
    )
    def test_rounds_to_nearest_level(self, severities, expected):
        members = [make(i, 0, DIVIDE, s) for i, s in enumerate(severities)]

        assert aggregate_severity(members) is expected
