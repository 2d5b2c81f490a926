"""
Visual Pool Reconciler
======================

Maps each frame's detections onto a fixed pool of reusable visual slots.

Unlike the identity tracker there is no persistent identity here: a slot is
kept bound to "the same" detection across frames through same-class IoU
matching, and survives a few missed frames so visuals do not flicker. The
pool never grows; detections beyond its size are dropped.

The tracking core never touches rendering: each slot drives an opaque
``VisualHandle`` that the host application implements.
"""

import copy
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from .geometry import iou, is_finite_box, lerp_point, lerp_rect
from .types import Anchor, Detection, ScreenRect, SlotState

logger = logging.getLogger(__name__)

ANCHOR_RECT = "rect"
ANCHOR_POINT = "point"


@runtime_checkable
class VisualHandle(Protocol):
    """Capability the host exposes for one visual instance."""

    def set_anchor(self, anchor: Anchor) -> None:
        """Place the visual (screen rect or screen point)."""
        ...

    def set_label(self, label: str, class_index: int) -> None:
        ...

    def set_active(self, active: bool) -> None:
        ...


class NullVisualHandle:
    """Handle that only remembers what it was told. Used when no host visual exists."""

    def __init__(self):
        self.anchor: Optional[Anchor] = None
        self.label: Optional[str] = None
        self.class_index: Optional[int] = None
        self.active = False

    def set_anchor(self, anchor: Anchor) -> None:
        self.anchor = anchor

    def set_label(self, label: str, class_index: int) -> None:
        self.label = label
        self.class_index = class_index

    def set_active(self, active: bool) -> None:
        self.active = active


@dataclass
class VisualSlot:
    """One pool entry. Owned by the pool for its whole lifetime."""

    index: int
    handle: VisualHandle
    detection: Optional[Detection] = None
    anchor: Optional[Anchor] = None
    active: bool = False
    updated: bool = False
    lost_frames: int = 0

    def state(self) -> SlotState:
        return SlotState(
            index=self.index,
            active=self.active,
            anchor=self.anchor,
            label=self.detection.label if self.detection else None,
            class_index=self.detection.class_index if self.detection else None,
            lost_frames=self.lost_frames,
        )


class VisualPoolReconciler:
    """
    Fixed-size pool of visual slots driven by per-frame detections.

    Args:
        pool_size: Number of slots (> 0)
        template: Handle for slot 0; later slots get deep copies of it.
            Defaults to ``NullVisualHandle``.
        match_detections: Keep slots bound to matching detections across
            frames. When False, slot i simply shows detection i.
        match_threshold: Minimum same-class IoU to keep a slot bound
        lost_frames_threshold: Missed frames a bound slot stays visible
        smoothing_coefficient: 0 snaps to the new anchor; toward 1 the anchor
            moves more slowly (lerp factor ``1 - coef * 0.95``)
        anchor_mode: "rect" (screen rect) or "point" (screen position)
    """

    def __init__(
        self,
        pool_size: int,
        template: Optional[VisualHandle] = None,
        match_detections: bool = True,
        match_threshold: float = 0.5,
        lost_frames_threshold: int = 4,
        smoothing_coefficient: float = 0.0,
        anchor_mode: str = ANCHOR_RECT,
    ):
        if pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {pool_size}")
        if not (0 <= match_threshold <= 1):
            raise ValueError(f"match_threshold must be in [0, 1], got {match_threshold}")
        if lost_frames_threshold < 0:
            raise ValueError(f"lost_frames_threshold must be >= 0, got {lost_frames_threshold}")
        if not (0 <= smoothing_coefficient <= 1):
            raise ValueError(
                f"smoothing_coefficient must be in [0, 1], got {smoothing_coefficient}"
            )
        if anchor_mode not in (ANCHOR_RECT, ANCHOR_POINT):
            raise ValueError(f"anchor_mode must be 'rect' or 'point', got {anchor_mode}")

        self.pool_size = pool_size
        self.match_detections = match_detections
        self.match_threshold = match_threshold
        self.lost_frames_threshold = lost_frames_threshold
        self.smoothing_coefficient = smoothing_coefficient
        self.lerp_coef = 1.0 - smoothing_coefficient * 0.95
        self.anchor_mode = anchor_mode

        template = template if template is not None else NullVisualHandle()
        self.slots: List[VisualSlot] = []
        for i in range(pool_size):
            handle = template if i == 0 else copy.deepcopy(template)
            handle.set_active(False)
            self.slots.append(VisualSlot(index=i, handle=handle))

        self.frame_count = 0

    @classmethod
    def from_config(cls, config, template: Optional[VisualHandle] = None) -> "VisualPoolReconciler":
        """Build from a ``ReconcilerConfig``."""
        return cls(
            pool_size=config.pool_size,
            template=template,
            match_detections=config.match_detections,
            match_threshold=config.match_threshold,
            lost_frames_threshold=config.lost_frames_threshold,
            smoothing_coefficient=config.smoothing_coefficient,
            anchor_mode=config.anchor_mode,
        )

    def update(self, detections: Sequence[Detection]) -> List[SlotState]:
        """Reconcile one frame of detections onto the pool.

        Returns:
            State of every slot after the update
        """
        self.frame_count += 1
        detections = [d for d in detections if is_finite_box(d.bbox)]
        if self.match_detections:
            self._update_with_matching(detections)
        else:
            self._update_by_position(detections)
        return self.slot_states()

    # ------------------------------------------------------------------

    def _update_by_position(self, detections: Sequence[Detection]) -> None:
        if len(detections) > self.pool_size:
            logger.debug(f"{len(detections)} detections for {self.pool_size} slots, extra dropped")

        for slot in self.slots:
            if slot.index < len(detections):
                detection = detections[slot.index]
                # Same slot showing the same class again counts as a continuation
                slot.updated = (
                    slot.active
                    and slot.detection is not None
                    and slot.detection.class_index == detection.class_index
                )
                self._bind(slot, detection)
            else:
                self._release(slot)
            slot.lost_frames = 0

    def _update_with_matching(self, detections: Sequence[Detection]) -> None:
        candidates = [slot for slot in self.slots if slot.active]
        for slot in self.slots:
            slot.updated = False

        claimed = set()
        unmatched: List[Detection] = []
        for detection in detections:
            best_slot: Optional[VisualSlot] = None
            best_iou = 0.0
            for slot in candidates:
                if slot.index in claimed or slot.detection is None:
                    continue
                if slot.detection.class_index != detection.class_index:
                    continue
                overlap = iou(detection.bbox, slot.detection.bbox)
                if overlap > best_iou:
                    best_iou = overlap
                    best_slot = slot

            if best_slot is None or best_iou < self.match_threshold:
                unmatched.append(detection)
            else:
                claimed.add(best_slot.index)
                best_slot.updated = True
                best_slot.lost_frames = 0
                self._bind(best_slot, detection)

        # Unmatched slots: keep lost ones visible for a while, then reuse or release
        n_reused = 0
        for slot in self.slots:
            if slot.updated:
                continue
            if slot.active and slot.lost_frames < self.lost_frames_threshold:
                slot.lost_frames += 1
                continue
            if n_reused < len(unmatched):
                self._bind(slot, unmatched[n_reused])
                n_reused += 1
            else:
                self._release(slot)
            slot.lost_frames = 0

        if n_reused < len(unmatched):
            logger.debug(
                f"Pool full: {len(unmatched) - n_reused} unmatched detection(s) dropped"
            )

    # ------------------------------------------------------------------

    def _bind(self, slot: VisualSlot, detection: Detection) -> None:
        slot.detection = detection
        if not slot.active:
            slot.active = True
            slot.handle.set_active(True)
        slot.handle.set_label(detection.label, detection.class_index)
        self._update_anchor(slot)

    def _release(self, slot: VisualSlot) -> None:
        if slot.active:
            slot.handle.set_active(False)
        slot.active = False
        slot.detection = None

    def _update_anchor(self, slot: VisualSlot) -> None:
        detection = slot.detection
        if self.anchor_mode == ANCHOR_RECT:
            target: Anchor = detection.screen_rect()
            if self.smoothing_coefficient > 0 and slot.updated and isinstance(slot.anchor, ScreenRect):
                target = lerp_rect(slot.anchor, target, self.lerp_coef)
        else:
            target = detection.screen_pos()
            if self.smoothing_coefficient > 0 and slot.updated and isinstance(slot.anchor, tuple):
                target = lerp_point(slot.anchor, target, self.lerp_coef)
        slot.anchor = target
        slot.handle.set_anchor(target)

    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return sum(1 for slot in self.slots if slot.active)

    def slot_states(self) -> List[SlotState]:
        return [slot.state() for slot in self.slots]

    def reset(self) -> None:
        """Deactivate every slot."""
        for slot in self.slots:
            self._release(slot)
            slot.anchor = None
            slot.updated = False
            slot.lost_frames = 0
        self.frame_count = 0
