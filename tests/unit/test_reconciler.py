"""
Unit Tests for the Visual Pool Reconciler
=========================================

Author: StableTrack Team
"""

import math

import pytest

from stabletrack.reconciler import NullVisualHandle, VisualHandle, VisualPoolReconciler
from stabletrack.types import Detection, ScreenRect

BOX_A = (0.5, 0.5, 0.2, 0.2)
# Shifted by 0.05: IoU with BOX_A is 0.03 / 0.05 = 0.6
BOX_B = (0.55, 0.5, 0.2, 0.2)
FAR_BOX = (0.1, 0.1, 0.1, 0.1)


class RecordingHandle:
    def __init__(self):
        self.calls = []

    def set_anchor(self, anchor):
        self.calls.append(("anchor", anchor))

    def set_label(self, label, class_index):
        self.calls.append(("label", label, class_index))

    def set_active(self, active):
        self.calls.append(("active", active))


def _det(box, class_index=0, label=None):
    return Detection(box, 0.9, class_index, label)


class TestPoolSetup:

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            VisualPoolReconciler(pool_size=0)
        with pytest.raises(ValueError):
            VisualPoolReconciler(pool_size=2, match_threshold=1.5)
        with pytest.raises(ValueError):
            VisualPoolReconciler(pool_size=2, smoothing_coefficient=-0.1)
        with pytest.raises(ValueError):
            VisualPoolReconciler(pool_size=2, anchor_mode="mesh")

    def test_template_is_copied(self):
        template = NullVisualHandle()
        pool = VisualPoolReconciler(pool_size=3, template=template)

        handles = [slot.handle for slot in pool.slots]
        assert handles[0] is template
        assert handles[1] is not template and handles[2] is not handles[1]
        assert not any(h.active for h in handles)

    def test_handle_protocol(self):
        assert isinstance(NullVisualHandle(), VisualHandle)
        assert isinstance(RecordingHandle(), VisualHandle)


class TestMatchingMode:
    """Test IoU matching and lost-frame tolerance"""

    def test_slot_survives_short_loss_then_released(self):
        pool = VisualPoolReconciler(pool_size=4, match_threshold=0.5, lost_frames_threshold=2)

        pool.update([_det(BOX_A)])
        states = pool.update([_det(BOX_B)])
        assert states[0].active
        assert pool.slots[0].updated
        assert pool.slots[0].detection.bbox == BOX_B

        states = pool.update([])
        assert states[0].active and states[0].lost_frames == 1

        states = pool.update([])
        assert states[0].active and states[0].lost_frames == 2

        states = pool.update([])
        assert not states[0].active
        assert pool.active_count == 0

    def test_reappearing_object_keeps_its_slot(self):
        pool = VisualPoolReconciler(pool_size=4, lost_frames_threshold=2)
        pool.update([_det(FAR_BOX), _det(BOX_A)])
        assert pool.slots[1].detection.bbox == BOX_A

        pool.update([_det(FAR_BOX)])
        states = pool.update([_det(FAR_BOX), _det(BOX_B)])

        assert states[1].active and states[1].lost_frames == 0
        assert pool.slots[1].detection.bbox == BOX_B
        assert pool.active_count == 2

    def test_class_mismatch_does_not_match(self):
        pool = VisualPoolReconciler(pool_size=4, lost_frames_threshold=2)
        pool.update([_det(BOX_A, class_index=0)])

        states = pool.update([_det(BOX_A, class_index=1)])

        assert states[0].class_index == 0 and states[0].lost_frames == 1
        assert states[1].active and states[1].class_index == 1

    def test_low_overlap_gets_new_slot(self):
        pool = VisualPoolReconciler(pool_size=4, match_threshold=0.5, lost_frames_threshold=2)
        pool.update([_det(BOX_A)])

        states = pool.update([_det((0.62, 0.5, 0.2, 0.2))])

        assert states[0].lost_frames == 1
        assert states[1].active

    def test_lost_slot_reused_when_threshold_zero(self):
        pool = VisualPoolReconciler(pool_size=1, lost_frames_threshold=0)
        pool.update([_det(BOX_A)])

        states = pool.update([_det(FAR_BOX)])

        assert states[0].active
        assert pool.slots[0].detection.bbox == FAR_BOX
        assert not pool.slots[0].updated

    def test_pool_overflow_drops_extra(self):
        pool = VisualPoolReconciler(pool_size=2)
        boxes = [(0.1, 0.1, 0.05, 0.05), (0.5, 0.5, 0.05, 0.05), (0.9, 0.9, 0.05, 0.05)]

        states = pool.update([_det(b) for b in boxes])

        assert [s.active for s in states] == [True, True]

    def test_non_finite_detection_ignored(self):
        pool = VisualPoolReconciler(pool_size=2)
        states = pool.update([_det((math.inf, 0.5, 0.1, 0.1))])
        assert not any(s.active for s in states)

    def test_handle_notified(self):
        handle = RecordingHandle()
        pool = VisualPoolReconciler(pool_size=1, template=handle, lost_frames_threshold=0)

        pool.update([_det(BOX_A, label="ball")])
        pool.update([])

        kinds = [call[0] for call in handle.calls]
        assert kinds == ["active", "active", "label", "anchor", "active"]
        assert handle.calls[2] == ("label", "ball", 0)
        assert handle.calls[-1] == ("active", False)


class TestPositionalMode:
    """Test slot i <- detection i"""

    def test_assign_by_position(self):
        pool = VisualPoolReconciler(pool_size=3, match_detections=False)
        pool.update([_det(BOX_A), _det(FAR_BOX)])
        assert [s.active for s in pool.slot_states()] == [True, True, False]

        states = pool.update([_det(FAR_BOX)])

        assert [s.active for s in states] == [True, False, False]
        assert pool.slots[0].detection.bbox == FAR_BOX


class TestAnchors:
    """Test anchor computation and smoothing"""

    def test_rect_anchor(self):
        pool = VisualPoolReconciler(pool_size=1)
        states = pool.update([_det(BOX_A)])

        assert isinstance(states[0].anchor, ScreenRect)
        assert states[0].anchor.to_list() == pytest.approx([-0.2, 0.2, -0.2, 0.2])

    def test_point_anchor(self):
        pool = VisualPoolReconciler(pool_size=1, anchor_mode="point")
        states = pool.update([_det(BOX_A)])
        assert states[0].anchor == pytest.approx((0.5, 0.5))

    def test_smoothing_on_matched_slot(self):
        pool = VisualPoolReconciler(pool_size=1, smoothing_coefficient=1.0)
        pool.update([_det(BOX_A)])

        states = pool.update([_det(BOX_B)])

        # Lerp factor 1 - 1.0 * 0.95 = 0.05 from left -0.2 toward -0.1
        assert states[0].anchor.left == pytest.approx(-0.195)
        assert states[0].anchor.right == pytest.approx(0.205)

    def test_new_binding_snaps(self):
        pool = VisualPoolReconciler(pool_size=1, smoothing_coefficient=1.0, lost_frames_threshold=0)
        pool.update([_det(BOX_A)])

        states = pool.update([_det(FAR_BOX)])

        assert states[0].anchor == _det(FAR_BOX).screen_rect()

    def test_reset(self):
        pool = VisualPoolReconciler(pool_size=2)
        pool.update([_det(BOX_A)])
        pool.reset()

        assert pool.active_count == 0
        assert all(s.anchor is None for s in pool.slot_states())
