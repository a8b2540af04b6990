"""Consensus clustering of comments from independent review passes.

Each pass produces its own comment list for the same diff. Comments that
quote overlapping, similar code are grown into candidate groups, groups
backed by a majority of passes are ranked, and the best ones are confirmed
pairwise by a same-issue oracle until the oracle budget runs out.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from mr_reviewer.core.logging import get_logger
from mr_reviewer.services.reviewer.locate import span_distance
from mr_reviewer.services.reviewer.schemas import (
    CommentGroup,
    ReviewComment,
    Severity,
)

logger = get_logger("reviewer.consensus")

DEFAULT_MAX_ORACLE_CALLS = 10

# Search steps between yields to the event loop
SEARCH_YIELD_INTERVAL = 256

CommentId = tuple[int, int]
Oracle = Callable[[ReviewComment, ReviewComment], Awaitable[bool]]
DistanceFn = Callable[[ReviewComment, ReviewComment], float]


def majority_threshold(num_passes: int) -> int:
    """Minimum number of distinct passes a group must come from."""
    return math.ceil(num_passes / 2)


def located_distance(a: ReviewComment, b: ReviewComment) -> float:
    """Distance between two located comments; different sides never match."""
    if a.side is not b.side:
        return math.inf
    return span_distance(a.refers_to, a.span, b.refers_to, b.span)


@dataclass
class _ClusteringRun:
    """State owned by a single clustering call."""

    comments: list[ReviewComment]
    distances: dict[tuple[int, int], float] = field(default_factory=dict)
    oracle_cache: dict[tuple[CommentId, CommentId], bool] = field(default_factory=dict)
    consumed: set[CommentId] = field(default_factory=set)
    invalid: set[CommentId] = field(default_factory=set)
    oracle_calls: int = 0


@dataclass(frozen=True)
class _Candidate:
    members: tuple[int, ...]
    mean_distance: float


class ConsensusClusterer:
    """Group comments from several passes into confirmed, exclusive clusters."""

    def __init__(
        self,
        oracle: Oracle,
        *,
        min_severity: Severity = Severity.LOW,
        max_oracle_calls: int = DEFAULT_MAX_ORACLE_CALLS,
        distance: DistanceFn = located_distance,
    ) -> None:
        self.oracle = oracle
        self.min_severity = min_severity
        self.max_oracle_calls = max_oracle_calls
        self.distance = distance
        self.last_oracle_calls = 0

    async def cluster(self, passes: list[list[ReviewComment]]) -> list[CommentGroup]:
        """Cluster the filtered comments of ``len(passes)`` passes.

        The search hands control back to the event loop at regular
        intervals, so a surrounding ``asyncio.wait_for`` can cancel it.

        Args:
            passes: One list of located comments per generation pass, in
                pass order

        Returns:
            Accepted groups in ranking order; no comment appears twice
        """
        run = _ClusteringRun(comments=[c for comments in passes for c in comments])
        self.last_oracle_calls = 0
        if not run.comments:
            return []

        threshold = majority_threshold(len(passes))
        candidates = await self._generate_candidates(run, threshold)
        candidates.sort(key=lambda c: (-len(c.members), c.mean_distance))

        logger.info(
            f"{len(run.comments)} comments from {len(passes)} passes: "
            f"{len(candidates)} candidate groups with majority and severity"
        )

        groups = await self._confirm(run, candidates)
        self.last_oracle_calls = run.oracle_calls

        logger.info(
            f"Accepted {len(groups)} groups using {run.oracle_calls}/{self.max_oracle_calls} oracle calls"
        )
        return groups

    def _pair_distance(self, run: _ClusteringRun, i: int, j: int) -> float:
        key = (i, j)
        if key not in run.distances:
            run.distances[key] = self.distance(run.comments[i], run.comments[j])
        return run.distances[key]

    @staticmethod
    def _pass_count(run: _ClusteringRun, members: tuple[int, ...]) -> int:
        return len({run.comments[i].pass_index for i in members})

    async def _generate_candidates(self, run: _ClusteringRun, threshold: int) -> list[_Candidate]:
        """Enumerate candidate groups depth-first in index order.

        A comment may join a combination when its mean distance to the
        current members is finite and at most 1. Branches that can no longer
        reach ``threshold`` distinct passes are not expanded. Only
        combinations backed by ``threshold`` passes and meeting the severity
        floor are returned.
        """
        comments = run.comments
        count = len(comments)

        # Distinct passes available at or after each index
        passes_after = [0] * (count + 1)
        seen: set[int] = set()
        for i in range(count - 1, -1, -1):
            seen.add(comments[i].pass_index)
            passes_after[i] = len(seen)

        candidates: list[_Candidate] = []
        # (members, next index, sum of pairwise distances, sum of severities)
        stack: list[tuple[tuple[int, ...], int, float, int]] = [((), 0, 0.0, 0)]
        pops = 0

        while stack:
            pops += 1
            if pops % SEARCH_YIELD_INTERVAL == 0:
                await asyncio.sleep(0)

            members, index, distance_sum, severity_sum = stack.pop()
            if index >= count:
                continue

            # Sibling goes below the child so the child subtree is explored first
            stack.append((members, index + 1, distance_sum, severity_sum))

            added = 0.0
            if members:
                added = sum(self._pair_distance(run, j, index) for j in members)
                mean = added / len(members)
                if not (math.isfinite(mean) and mean <= 1):
                    continue

            extended = members + (index,)
            pass_count = self._pass_count(run, extended)
            if pass_count + passes_after[index + 1] < threshold:
                continue

            distance_sum += added
            severity_sum += int(comments[index].severity)
            stack.append((extended, index + 1, distance_sum, severity_sum))

            if pass_count >= threshold and severity_sum / len(extended) >= self.min_severity:
                pairs = len(extended) * (len(extended) - 1) // 2
                candidates.append(
                    _Candidate(extended, distance_sum / pairs if pairs else 0.0)
                )

        return candidates

    async def _ask_oracle(self, a: ReviewComment, b: ReviewComment) -> bool:
        try:
            return bool(await self.oracle(a, b))
        except Exception as e:
            logger.warning(f"Same-issue check failed for {a.id} / {b.id}, treating as different: {e}")
            return False

    async def _confirm(
        self,
        run: _ClusteringRun,
        candidates: list[_Candidate],
    ) -> list[CommentGroup]:
        groups: list[CommentGroup] = []
        budget_exhausted = False

        for position, candidate in enumerate(candidates, start=1):
            if position % SEARCH_YIELD_INTERVAL == 0:
                await asyncio.sleep(0)

            members = [run.comments[i] for i in candidate.members]
            ids = [member.id for member in members]

            if any(i in run.consumed or i in run.invalid for i in ids):
                continue

            confirmed = True
            unresolved = False
            for a, b in zip(members, members[1:]):
                key = (a.id, b.id)
                if key not in run.oracle_cache:
                    if run.oracle_calls >= self.max_oracle_calls:
                        unresolved = True
                        break
                    run.oracle_calls += 1
                    run.oracle_cache[key] = await self._ask_oracle(a, b)
                if not run.oracle_cache[key]:
                    confirmed = False
                    break

            if unresolved:
                if not budget_exhausted:
                    logger.info("Oracle budget exhausted, rejecting remaining unconfirmed groups")
                    budget_exhausted = True
                continue

            if confirmed:
                groups.append(CommentGroup(members=members))
                run.consumed.update(ids)
            else:
                run.invalid.update(ids)

        return groups
