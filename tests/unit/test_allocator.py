"""
Unit Tests for the Class Capacity Allocator
===========================================

Author: StableTrack Team
"""

from dataclasses import dataclass, field
from typing import List

import pytest

from stabletrack.allocator import ClassCapacityAllocator, ClassVoteCache
from stabletrack.types import IDScore


@dataclass
class FakeTracklet:
    class_scores: List[IDScore]
    votes: ClassVoteCache = field(default_factory=ClassVoteCache)


def _tracklet(*candidates, history=()):
    tracklet = FakeTracklet([IDScore(c, s) for c, s in candidates])
    for class_id in history:
        tracklet.votes.push(class_id)
    return tracklet


class TestClassVoteCache:
    """Test majority voting over recent assignments"""

    def test_mode(self):
        cache = ClassVoteCache(5)
        for class_id in (1, 1, 2):
            cache.push(class_id)
        assert cache.push(2) == 2
        assert cache.push(1) == 1

    def test_tie_goes_to_most_recent(self):
        cache = ClassVoteCache(5)
        cache.push(1)
        assert cache.push(2) == 2

    def test_window_is_bounded(self):
        cache = ClassVoteCache(3)
        for class_id in (0, 0, 0, 1, 1):
            cache.push(class_id)
        assert cache.ids == [0, 1, 1]
        assert len(cache) == 3

    def test_peek_does_not_mutate(self):
        cache = ClassVoteCache(3)
        for class_id in (0, 0, 1):
            cache.push(class_id)
        assert cache.peek(1) == 1
        assert cache.ids == [0, 0, 1]

    def test_peek_on_empty_cache(self):
        assert ClassVoteCache(4).peek(7) == 7

    def test_size_one(self):
        cache = ClassVoteCache(1)
        cache.push(3)
        assert cache.peek(5) == 5

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ClassVoteCache(0)

    def test_clear(self):
        cache = ClassVoteCache()
        cache.push(1)
        cache.clear()
        assert cache.ids == []


class TestClassCapacityAllocator:
    """Test greedy per-class allocation"""

    def test_invalid_tables(self):
        with pytest.raises(ValueError):
            ClassCapacityAllocator([])
        with pytest.raises(ValueError):
            ClassCapacityAllocator([1, -1])

    def test_capacity_properties(self):
        allocator = ClassCapacityAllocator([1] * 16 + [6])
        assert allocator.num_classes == 17
        assert allocator.total_capacity == 22

    def test_score_driven_assignment(self):
        allocator = ClassCapacityAllocator([1, 1])
        tracklets = [_tracklet((0, 0.6), (1, 0.5)), _tracklet((1, 0.9))]

        allocations = allocator.allocate(tracklets)

        by_index = {a.tracklet_index: a for a in allocations}
        assert by_index[1].class_id == 1
        assert by_index[0].class_id == 0
        assert not any(a.fallback for a in allocations)
        # Descending score order
        assert [a.tracklet_index for a in allocations] == [1, 0]

    def test_fallback_to_least_used_class(self):
        allocator = ClassCapacityAllocator([1, 1])
        tracklets = [_tracklet((0, 0.9)), _tracklet((0, 0.8))]

        allocations = allocator.allocate(tracklets)

        assert len(allocations) == 2
        assert allocations[0].class_id == 0 and not allocations[0].fallback
        assert allocations[1].class_id == 1 and allocations[1].fallback
        assert allocations[1].score == pytest.approx(0.8)

    def test_fallback_prefers_emptiest_class(self):
        allocator = ClassCapacityAllocator([3, 2, 2])
        tracklets = [_tracklet((0, 0.9)), _tracklet((1, 0.8)), _tracklet((5, 0.7))]

        allocations = allocator.allocate(tracklets)

        assert allocations[-1].tracklet_index == 2
        assert allocations[-1].class_id == 2

    def test_no_capacity_left(self):
        allocator = ClassCapacityAllocator([1])
        tracklets = [_tracklet((0, 0.9)), _tracklet((0, 0.8))]

        allocations = allocator.allocate(tracklets)

        assert [a.tracklet_index for a in allocations] == [0]

    def test_max_outputs(self):
        allocator = ClassCapacityAllocator([10])
        tracklets = [_tracklet((0, 0.1 * i)) for i in range(1, 6)]

        allocations = allocator.allocate(tracklets, max_outputs=2)

        assert [a.tracklet_index for a in allocations] == [4, 3]

    def test_vote_stabilizes_class(self):
        allocator = ClassCapacityAllocator([1, 1])
        tracklet = _tracklet((1, 0.9), history=(0, 0, 0))

        allocations = allocator.allocate([tracklet])

        assert allocations[0].class_id == 0
        assert tracklet.votes.ids == [0, 0, 0, 1]

    def test_vote_yields_when_voted_class_is_full(self):
        allocator = ClassCapacityAllocator([1, 1])
        flickering = _tracklet((1, 0.8), history=(0, 0, 0))
        steady = _tracklet((0, 0.9))

        allocations = allocator.allocate([flickering, steady])

        by_index = {a.tracklet_index: a.class_id for a in allocations}
        assert by_index == {1: 0, 0: 1}

    def test_capacity_counts_resolved_class(self):
        allocator = ClassCapacityAllocator([1, 1])
        voted_zero = _tracklet((1, 0.9), history=(0, 0, 0))
        plain_zero = _tracklet((0, 0.8))

        allocations = allocator.allocate([voted_zero, plain_zero])

        classes = [a.class_id for a in allocations]
        assert sorted(classes) == [0, 1]

    def test_unknown_class_falls_back(self):
        allocator = ClassCapacityAllocator([2])
        allocations = allocator.allocate([_tracklet((9, 0.9))])

        assert allocations[0].class_id == 0
        assert allocations[0].fallback

    def test_unknown_class_warned_once(self, caplog):
        allocator = ClassCapacityAllocator([2])

        with caplog.at_level("WARNING"):
            for _ in range(3):
                allocator.allocate([_tracklet((9, 0.9)), _tracklet((9, 0.8))])

        assert caplog.text.count("Class id 9 has no capacity entry") == 1

    def test_tracklet_without_candidates(self):
        allocator = ClassCapacityAllocator([1])
        allocations = allocator.allocate([FakeTracklet([])])

        assert allocations[0].class_id == 0
        assert allocations[0].score == 0.0

    def test_empty(self):
        assert ClassCapacityAllocator([1]).allocate([]) == []
