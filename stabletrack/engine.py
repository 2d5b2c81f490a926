"""
Tracking Engine
===============

Per-frame orchestration:

    raw head outputs ─▶ YoloV7Decoder ─▶ nms ─▶ labels ─▶ listeners
                                                  │
                         Detection list ◀─────────┘
                              │
              ┌───────────────┴───────────────┐
              ▼                               ▼
     MultiObjectTracker              VisualPoolReconciler
     (identity, smoothing,           (bounded slots, lost-frame
      class capacity)                 tolerance, anchors)
              │                               │
              └──────────▶ FrameResult ◀──────┘

Callers can enter at either point: raw outputs via ``process_outputs`` or
already-decoded detections via ``process_frame``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import EngineConfig, get_default_config
from .decoder import YoloV7Decoder
from .geometry import compare_by_height_reversed, compare_by_score_reversed, nms
from .labels import ClassRegistry
from .reconciler import VisualHandle, VisualPoolReconciler
from .tracker import MultiObjectTracker, ProjectFn
from .types import Detection, ScoredClass, SlotState, TrackedObject

logger = logging.getLogger(__name__)

DetectionListener = Callable[[List[Detection]], None]

SORT_KEYS = {
    "score": compare_by_score_reversed,
    "height": compare_by_height_reversed,
}


class DetectionPipeline:
    """
    Raw model output to labelled, suppressed, sorted detections.

    Every processed frame is delivered to the subscribed listeners, in
    subscription order.
    """

    def __init__(
        self,
        registry: ClassRegistry,
        score_threshold: float = 0.4,
        iou_threshold: float = 0.65,
        decoder: Optional[YoloV7Decoder] = None,
        sort_by: str = "score",
    ):
        if sort_by not in SORT_KEYS:
            raise ValueError(f"sort_by must be one of {sorted(SORT_KEYS)}, got {sort_by}")
        self.registry = registry
        self.score_threshold = score_threshold
        self.iou_threshold = iou_threshold
        self.decoder = decoder
        self.sort_by = sort_by
        self._listeners: List[DetectionListener] = []
        self.last_detections: List[Detection] = []

    def add_listener(self, listener: DetectionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: DetectionListener) -> bool:
        """Unsubscribe; returns False if the listener was not subscribed."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def trigger(self, detections: List[Detection]) -> None:
        for listener in list(self._listeners):
            listener(detections)

    def process_outputs(self, outputs: Sequence[np.ndarray]) -> List[Detection]:
        """Decode raw head tensors, then run ``process_detections``."""
        if self.decoder is None:
            raise RuntimeError("DetectionPipeline has no decoder configured")
        boxes, scores = self.decoder.decode(outputs)
        return self.process_detections(boxes, scores)

    def process_detections(
        self,
        boxes: Sequence[Sequence[float]],
        scores: Sequence[Union[ScoredClass, Tuple[int, float]]],
    ) -> List[Detection]:
        """
        Suppress, sort and label decoded candidates.

        Args:
            boxes: Normalized [cx, cy, w, h] boxes
            scores: (class index, score) per box

        Returns:
            Final detections for the frame
        """
        detections = nms(boxes, scores, self.score_threshold, self.iou_threshold)
        detections = sorted(detections, key=SORT_KEYS[self.sort_by])
        detections = self.registry.apply_labels(detections)

        self.last_detections = detections
        self.trigger(detections)
        return detections


@dataclass
class FrameResult:
    """Everything the engine produced for one frame."""

    timestamp: float
    detections: List[Detection] = field(default_factory=list)
    objects: List[TrackedObject] = field(default_factory=list)
    slots: List[SlotState] = field(default_factory=list)
    processing_time: float = 0.0

    @property
    def active_slots(self) -> List[SlotState]:
        return [slot for slot in self.slots if slot.active]

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "detections": len(self.detections),
            "objects": [obj.to_dict() for obj in self.objects],
            "active_slots": [slot.index for slot in self.active_slots],
            "processing_time": self.processing_time,
        }


class TrackingEngine:
    """
    Facade wiring the detection pipeline, identity tracker and visual pool.

    Args:
        config: Engine configuration (defaults when omitted)
        template: Visual handle for the pool's first slot
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        template: Optional[VisualHandle] = None,
    ):
        self.config = config or get_default_config()

        detection = self.config.detection
        self.registry = detection.registry()
        decoder = None
        if self.registry.class_count > 0:
            decoder = YoloV7Decoder(
                input_size=(detection.input_width, detection.input_height),
                registry=self.registry,
                score_threshold=detection.score_threshold,
            )
        self.pipeline = DetectionPipeline(
            self.registry,
            score_threshold=detection.score_threshold,
            iou_threshold=detection.iou_threshold,
            decoder=decoder,
        )

        self.tracker: Optional[MultiObjectTracker] = None
        if self.config.enable_tracker:
            self.tracker = MultiObjectTracker.from_config(self.config.tracker, self.config.filter)

        self.reconciler: Optional[VisualPoolReconciler] = None
        if self.config.enable_reconciler:
            self.reconciler = VisualPoolReconciler.from_config(self.config.reconciler, template)

        self.frame_count = 0
        logger.info(
            f"TrackingEngine ready: tracker={'on' if self.tracker else 'off'}, "
            f"reconciler={'on' if self.reconciler else 'off'}, "
            f"classes={self.registry.class_count}"
        )

    @classmethod
    def from_config(cls, config: EngineConfig, template: Optional[VisualHandle] = None) -> "TrackingEngine":
        return cls(config, template)

    def process_outputs(
        self,
        outputs: Sequence[np.ndarray],
        timestamp: float,
        project: Optional[ProjectFn] = None,
    ) -> FrameResult:
        """Run one frame from raw detector head outputs."""
        detections = self.pipeline.process_outputs(outputs)
        return self.process_frame(detections, timestamp, project)

    def process_frame(
        self,
        detections: Sequence[Detection],
        timestamp: float,
        project: Optional[ProjectFn] = None,
    ) -> FrameResult:
        """
        Run one frame of detections through the tracker and the visual pool.

        Args:
            detections: Detections for this frame
            timestamp: Frame time in seconds
            project: Optional detection-to-position mapping for the tracker

        Returns:
            FrameResult with tracked objects and slot states
        """
        start = time.time()
        self.frame_count += 1
        detections = list(detections)

        objects: List[TrackedObject] = []
        if self.tracker is not None:
            objects = self.tracker.update(detections, timestamp, project=project)

        slots: List[SlotState] = []
        if self.reconciler is not None:
            slots = self.reconciler.update(detections)

        return FrameResult(
            timestamp=timestamp,
            detections=detections,
            objects=objects,
            slots=slots,
            processing_time=time.time() - start,
        )

    def get_statistics(self) -> Dict:
        stats = {"frame_count": self.frame_count}
        if self.tracker is not None:
            stats.update({f"tracker_{k}": v for k, v in self.tracker.get_statistics().items()})
        if self.reconciler is not None:
            stats["active_slots"] = self.reconciler.active_count
        return stats

    def reset(self) -> None:
        if self.tracker is not None:
            self.tracker.reset()
        if self.reconciler is not None:
            self.reconciler.reset()
        self.frame_count = 0
