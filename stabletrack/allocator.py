"""
Class Capacity Allocator
========================

Enforces a maximum population per class across all live tracklets (e.g.
"only one cue ball") and stabilizes each tracklet's class with a majority
vote over its recent assignments.

Per frame:
1. Flatten every tracklet's (class, score) candidates into one list
2. Walk the list by descending score; assign a candidate when its tracklet is
   still unassigned and its class still has room
3. Tracklets left over get the least-used class that still has room

Counts are kept over the *resolved* (voted) class, so the number of
tracklets reported as class ``c`` never exceeds ``max_count_per_class[c]``.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Protocol, Sequence, Set

from .types import IDScore

logger = logging.getLogger(__name__)


class ClassVoteCache:
    """Sliding window of assigned class ids with mode lookup."""

    def __init__(self, size: int = 10):
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self.size = size
        self._ids: Deque[int] = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> List[int]:
        return list(self._ids)

    @staticmethod
    def _mode(ids: Sequence[int]) -> int:
        counts = Counter(ids)
        best_count = max(counts.values())
        # Frequency ties go to the most recently seen id
        for class_id in reversed(ids):
            if counts[class_id] == best_count:
                return class_id
        raise AssertionError("unreachable")

    def peek(self, class_id: int) -> int:
        """Mode the window would have after pushing ``class_id``."""
        window = list(self._ids)[-(self.size - 1):] if self.size > 1 else []
        return self._mode(window + [class_id])

    def push(self, class_id: int) -> int:
        """Record an assignment and return the new mode."""
        self._ids.append(class_id)
        return self._mode(list(self._ids))

    def clear(self) -> None:
        self._ids.clear()


class Allocatable(Protocol):
    """Anything offering class candidates and owning a vote cache."""

    class_scores: List[IDScore]
    votes: ClassVoteCache


@dataclass(frozen=True)
class Allocation:
    """Class assigned to one tracklet for the current frame."""

    tracklet_index: int
    class_id: int
    score: float
    fallback: bool = False


class ClassCapacityAllocator:
    """
    Greedy per-class capacity allocation.

    Args:
        max_count_per_class: Maximum tracklets per class id. Class ids outside
            the table have no capacity.
    """

    def __init__(self, max_count_per_class: Sequence[int]):
        if not max_count_per_class:
            raise ValueError("max_count_per_class must not be empty")
        if any(c < 0 for c in max_count_per_class):
            raise ValueError(f"max_count_per_class must be >= 0, got {list(max_count_per_class)}")
        self.max_count_per_class = [int(c) for c in max_count_per_class]
        self._unknown_classes: Set[int] = set()

    @property
    def num_classes(self) -> int:
        return len(self.max_count_per_class)

    @property
    def total_capacity(self) -> int:
        return sum(self.max_count_per_class)

    def _has_room(self, class_id: int, counts: List[int]) -> bool:
        if not 0 <= class_id < self.num_classes:
            return False
        return counts[class_id] < self.max_count_per_class[class_id]

    def _warn_unknown_class(self, class_id: int) -> None:
        if class_id not in self._unknown_classes:
            self._unknown_classes.add(class_id)
            logger.warning(f"Class id {class_id} has no capacity entry, skipped")

    def _resolve(self, votes: ClassVoteCache, class_id: int, counts: List[int]) -> int:
        resolved = votes.peek(class_id)
        if resolved != class_id and not self._has_room(resolved, counts):
            resolved = class_id
        votes.push(class_id)
        counts[resolved] += 1
        return resolved

    def allocate(
        self,
        tracklets: Sequence[Allocatable],
        max_outputs: Optional[int] = None,
    ) -> List[Allocation]:
        """
        Assign one class to as many tracklets as capacity allows.

        Args:
            tracklets: Live tracklets (their vote caches are updated in place)
            max_outputs: Stop after this many allocations

        Returns:
            Allocations, score-driven ones first (descending score), then
            fallback ones (descending best candidate score)
        """
        limit = len(tracklets) if max_outputs is None else max_outputs

        score_array: List[IDScore] = [
            IDScore(c.class_id, c.score, index)
            for index, tracklet in enumerate(tracklets)
            for c in tracklet.class_scores
        ]
        score_array.sort(key=lambda s: s.score, reverse=True)

        counts = [0] * self.num_classes
        used = set()
        allocations: List[Allocation] = []

        for candidate in score_array:
            if len(allocations) >= limit:
                break
            if candidate.tracklet_index in used:
                continue
            if not self._has_room(candidate.class_id, counts):
                if not 0 <= candidate.class_id < self.num_classes:
                    self._warn_unknown_class(candidate.class_id)
                continue

            votes = tracklets[candidate.tracklet_index].votes
            resolved = self._resolve(votes, candidate.class_id, counts)
            used.add(candidate.tracklet_index)
            allocations.append(
                Allocation(candidate.tracklet_index, resolved, candidate.score)
            )

        leftovers = [i for i in range(len(tracklets)) if i not in used]
        leftovers.sort(
            key=lambda i: tracklets[i].class_scores[0].score if tracklets[i].class_scores else 0.0,
            reverse=True,
        )

        for index in leftovers:
            if len(allocations) >= limit:
                break
            open_classes = [c for c in range(self.num_classes) if self._has_room(c, counts)]
            if not open_classes:
                logger.debug(
                    f"All class capacity used, {len(leftovers)} tracklet(s) left without a class"
                )
                break
            least_used = min(open_classes, key=lambda c: counts[c])
            tracklet = tracklets[index]
            resolved = self._resolve(tracklet.votes, least_used, counts)
            best = tracklet.class_scores[0].score if tracklet.class_scores else 0.0
            allocations.append(Allocation(index, resolved, best, fallback=True))

        return allocations
