"""
Unit Tests for the Identity Tracker
===================================

Tests for tracklet lifecycle, identity stability, class capacity and
duplicate suppression.

Author: StableTrack Team
"""

import math
from collections import Counter

import numpy as np
import pytest

from stabletrack.config import FilterConfig, TrackerConfig
from stabletrack.tracker import MultiObjectTracker
from stabletrack.types import Detection, IDScore, Prediction, TrackletState


def make_prediction(x, y=0.0, class_id=0, score=0.9):
    return Prediction(np.array([x, y], dtype=float), [IDScore(class_id, score)])


class TestTrackerConstruction:

    @pytest.mark.parametrize("kwargs", [
        {"max_distance": 0.0},
        {"merge_distance": -0.1},
        {"max_tracklets": 0},
        {"max_lost_time": -1.0},
        {"class_cache_size": 0},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            MultiObjectTracker([1], **kwargs)

    def test_from_config(self):
        config = TrackerConfig(max_count_per_class=[1, 2], max_distance=3.0, max_tracklets=4)
        tracker = MultiObjectTracker.from_config(config, FilterConfig(beta=1.0))

        assert tracker.max_distance == 3.0
        assert tracker.max_tracklets == 4
        assert tracker.allocator.max_count_per_class == [1, 2]
        assert tracker.filter_factory().beta == 1.0


class TestTrackletLifecycle:
    """Test creation, matching, expiry and duplicate removal"""

    def test_stationary_detection(self, ball, frame_times):
        tracker = MultiObjectTracker(max_count_per_class=[1])

        track_ids = set()
        for t in frame_times[:5]:
            objects = tracker.update([ball], t)
            assert len(objects) == 1
            assert objects[0].class_id == 0
            assert objects[0].state == TrackletState.TRACKED
            assert objects[0].position == pytest.approx([0.5, 0.5])
            track_ids.add(objects[0].track_id)

        assert track_ids == {1}
        assert tracker.tracked_count == 1

    def test_identity_stable_while_moving(self, frame_times):
        tracker = MultiObjectTracker(max_count_per_class=[1], max_distance=0.5)

        track_ids = set()
        for i, t in enumerate(frame_times):
            detection = Detection((0.3 + 0.01 * i, 0.5, 0.1, 0.1), 0.9, 0)
            objects = tracker.update([detection], t)
            track_ids.update(obj.track_id for obj in objects)

        assert track_ids == {1}
        assert tracker.get_statistics()["total_tracklets"] == 1

    def test_merged_detections_form_one_tracklet(self):
        tracker = MultiObjectTracker(max_count_per_class=[2], merge_distance=0.25)
        detections = [
            Detection((0.4, 0.5, 0.1, 0.1), 0.6, 0),
            Detection((0.5, 0.5, 0.1, 0.1), 0.9, 0),
        ]

        objects = tracker.update(detections, 0.0)

        assert len(objects) == 1
        assert objects[0].score == pytest.approx(0.9)

    def test_unmatched_tracklet_reported_until_expiry(self):
        tracker = MultiObjectTracker(max_count_per_class=[1], max_lost_time=0.25)
        tracker.track([make_prediction(0.0)], 0.0)

        objects = tracker.update([], 0.24)
        assert len(objects) == 1
        assert objects[0].state == TrackletState.UNTRACKED
        assert tracker.untracked_count == 1

        objects = tracker.update([], 0.26)
        assert objects == []
        assert tracker.untracked_count == 0
        assert tracker.get_statistics()["total_destroyed"] == 1

    def test_untracked_tracklet_is_not_rematched(self):
        tracker = MultiObjectTracker(max_count_per_class=[2], max_lost_time=1.0)
        tracker.track([make_prediction(0.0)], 0.0)
        tracker.track([], 0.1)

        out = tracker.track([make_prediction(0.1)], 0.2)

        # New identity; the stale one is removed as a duplicate the same frame
        assert [p.track_id for p in out] == [2]
        assert tracker.untracked_count == 0
        assert tracker.get_tracklet(1) is None

    def test_distant_untracked_tracklet_survives(self):
        tracker = MultiObjectTracker(max_count_per_class=[2], max_lost_time=1.0)
        tracker.track([make_prediction(0.0)], 0.0)
        tracker.track([], 0.1)

        out = tracker.track([make_prediction(5.0)], 0.2)

        assert sorted(p.track_id for p in out) == [1, 2]
        assert tracker.get_tracklet(1).state == TrackletState.UNTRACKED

    def test_match_distance_is_strict(self):
        tracker = MultiObjectTracker(max_count_per_class=[2], max_distance=0.5, merge_distance=0.1)
        tracker.track([make_prediction(0.0)], 0.0)

        out = tracker.track([make_prediction(0.5)], 1 / 30)

        # Exactly max_distance away: a new tracklet, the old one is only demoted
        assert {p.track_id for p in out} == {1, 2}
        assert tracker.get_tracklet(1).state == TrackletState.UNTRACKED

    def test_nearest_prediction_wins(self):
        tracker = MultiObjectTracker(max_count_per_class=[3], max_distance=1.0, merge_distance=0.1)
        tracker.track([make_prediction(0.0)], 0.0)

        tracker.track([make_prediction(0.6), make_prediction(0.2)], 1 / 30)

        tracklet = tracker.get_tracklet(1)
        assert tracklet.state == TrackletState.TRACKED
        assert tracklet.hits == 2
        assert tracker.get_tracklet(2).position == pytest.approx([0.6, 0.0])


class TestClassCapacity:
    """Test per-class population limits"""

    def test_capacity_never_exceeded(self):
        caps = [1, 2]
        tracker = MultiObjectTracker(max_count_per_class=caps, merge_distance=0.1)
        rng = np.random.default_rng(3)

        for frame in range(20):
            predictions = [
                make_prediction(2.0 * i, class_id=int(rng.integers(0, 2)), score=float(rng.uniform(0.3, 1.0)))
                for i in range(5)
            ]
            out = tracker.track(predictions, frame / 30.0)

            counts = Counter(p.class_id for p in out)
            for class_id, count in counts.items():
                assert count <= caps[class_id]
            assert len(out) <= sum(caps)

    def test_every_emitted_tracklet_has_a_class(self):
        tracker = MultiObjectTracker(max_count_per_class=[1, 1, 1], merge_distance=0.1)
        out = tracker.track([make_prediction(0.0), make_prediction(3.0), make_prediction(6.0)], 0.0)

        assert sorted(p.class_id for p in out) == [0, 1, 2]

    def test_max_tracklets_limits_output(self):
        tracker = MultiObjectTracker(max_count_per_class=[10], max_tracklets=2, merge_distance=0.1)
        out = tracker.track([make_prediction(3.0 * i, score=0.5 + 0.1 * i) for i in range(5)], 0.0)

        assert len(out) == 2
        assert tracker.tracked_count == 5


class TestTrackerInputs:
    """Test projection, bad input and timestamps"""

    def test_projection(self, ball):
        tracker = MultiObjectTracker(max_count_per_class=[1], max_distance=20.0)

        objects = tracker.update([ball], 0.0, project=lambda d: np.array([d.center[0] * 100, 0.0, 7.5]))

        assert objects[0].position == pytest.approx([50.0, 0.0, 7.5])

    def test_projection_can_drop_detection(self, ball):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        assert tracker.update([ball], 0.0, project=lambda d: None) == []

    def test_non_finite_detection_skipped(self):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        objects = tracker.update([Detection((math.nan, 0.5, 0.1, 0.1), 0.9, 0)], 0.0)
        assert objects == []

    def test_empty_frames(self):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        assert tracker.update([], 0.0) == []
        assert tracker.update([], 0.1) == []

    def test_non_monotonic_timestamp_is_clamped(self, ball, caplog):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        tracker.update([ball], 1.0)

        with caplog.at_level("WARNING"):
            objects = tracker.update([ball], 0.5)

        assert len(objects) == 1
        assert "Non-monotonic timestamp" in caplog.text

    def test_non_finite_timestamp_does_not_block_expiry(self, caplog):
        tracker = MultiObjectTracker(max_count_per_class=[1], max_lost_time=0.25)
        tracker.track([], 0.5)

        with caplog.at_level("WARNING"):
            assert len(tracker.track([make_prediction(0.0)], math.nan)) == 1
        assert "Non-finite timestamp" in caplog.text
        assert tracker.get_tracklet(1).last_seen == 0.5

        tracker.track([], 1.0)
        assert tracker.track([], 2.0) == []
        assert tracker.untracked_count == 0

    def test_track_returns_predictions_with_identity(self):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        out = tracker.track([make_prediction(0.2, score=0.7)], 0.0)

        assert out[0].track_id == 1
        assert out[0].class_id == 0
        assert out[0].position == pytest.approx([0.2, 0.0])

    def test_outputs_are_copies(self, ball):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        objects = tracker.update([ball], 0.0)
        objects[0].position[0] = 99.0

        assert tracker.get_tracklet(1).position[0] == pytest.approx(0.5)

    def test_reset(self, ball):
        tracker = MultiObjectTracker(max_count_per_class=[1])
        tracker.update([ball], 0.0)
        tracker.reset()

        objects = tracker.update([ball], 0.0)

        assert objects[0].track_id == 1
        assert tracker.get_statistics()["frame_count"] == 1
