"""
Identity Tracker
================

Turns per-frame predictions into tracklets with persistent identity, a
smoothed position and a voted class.

Tracklet lifecycle:

    TRACKED ──(unmatched for a frame)──▶ UNTRACKED ──▶ destroyed
       ▲                                              (lost too long, or
       └── created from an unmatched prediction        overlapping a tracked one)

Untracked tracklets are still reported until they expire. They are not
matched again: a re-detected object spawns a new tracklet and the stale one
is removed as a duplicate.

Author: StableTrack Team
"""

import itertools
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from .allocator import ClassCapacityAllocator, ClassVoteCache
from .geometry import is_finite_box
from .merge import merge_predictions
from .smoothing import OneEuroFilter
from .types import Detection, IDScore, Prediction, TrackedObject, TrackletState

logger = logging.getLogger(__name__)

# Maps a detection to the position to track, or None to drop it
ProjectFn = Callable[[Detection], Optional[Union[np.ndarray, Sequence[float]]]]
FilterFactory = Callable[[], OneEuroFilter]


@dataclass
class Tracklet:
    """Single persistent identity."""

    track_id: int
    position: np.ndarray
    class_scores: List[IDScore]
    filter: OneEuroFilter
    votes: ClassVoteCache
    last_seen: float
    created_at: float
    state: TrackletState = TrackletState.TRACKED
    hits: int = 1
    class_id: Optional[int] = None

    @classmethod
    def create(
        cls,
        track_id: int,
        prediction: Prediction,
        timestamp: float,
        filter: OneEuroFilter,
        cache_size: int,
    ) -> "Tracklet":
        # First sample passes straight through the filter
        position = filter.filter(prediction.position, timestamp)
        return cls(
            track_id=track_id,
            position=position,
            class_scores=list(prediction.class_scores),
            filter=filter,
            votes=ClassVoteCache(cache_size),
            last_seen=timestamp,
            created_at=timestamp,
        )

    def update(self, prediction: Prediction, timestamp: float) -> None:
        """Absorb a matched prediction."""
        self.position = self.filter.filter(prediction.position, timestamp)
        self.class_scores = list(prediction.class_scores)
        self.last_seen = timestamp
        self.hits += 1
        self.state = TrackletState.TRACKED

    def distance_to(self, position: np.ndarray) -> float:
        return float(np.linalg.norm(self.position - position))

    @property
    def best_score(self) -> float:
        return self.class_scores[0].score if self.class_scores else 0.0

    def snapshot(self, class_id: int, score: float) -> TrackedObject:
        return TrackedObject(
            track_id=self.track_id,
            position=self.position.copy(),
            class_id=class_id,
            score=score,
            state=self.state,
        )


class MultiObjectTracker:
    """
    Greedy nearest-neighbor multi-object tracker with class capacity limits.

    Usage:
        tracker = MultiObjectTracker(max_count_per_class=[1] * 16 + [6])

        # Each frame
        predictions = tracker.track(predictions, timestamp)
        # or, straight from detections
        objects = tracker.update(detections, timestamp)
    """

    def __init__(
        self,
        max_count_per_class: Sequence[int],
        max_distance: float = 0.5,
        merge_distance: float = 0.5,
        max_tracklets: int = 50,
        max_lost_time: float = 0.25,
        class_cache_size: int = 10,
        symmetric_merge: bool = False,
        filter_factory: Optional[FilterFactory] = None,
    ):
        """
        Args:
            max_count_per_class: Maximum live tracklets reported per class id
            max_distance: Match / duplicate distance (position units)
            merge_distance: Distance under which predictions are merged
            max_tracklets: Maximum predictions emitted per frame
            max_lost_time: Seconds an untracked tracklet survives
            class_cache_size: Window of the class vote cache
            symmetric_merge: Order-independent merge clustering
            filter_factory: Builds the smoothing filter of each new tracklet
        """
        if max_distance <= 0:
            raise ValueError(f"max_distance must be > 0, got {max_distance}")
        if merge_distance < 0:
            raise ValueError(f"merge_distance must be >= 0, got {merge_distance}")
        if max_tracklets < 1:
            raise ValueError(f"max_tracklets must be >= 1, got {max_tracklets}")
        if max_lost_time < 0:
            raise ValueError(f"max_lost_time must be >= 0, got {max_lost_time}")
        if class_cache_size < 1:
            raise ValueError(f"class_cache_size must be >= 1, got {class_cache_size}")

        self.max_distance = max_distance
        self.merge_distance = merge_distance
        self.max_tracklets = max_tracklets
        self.max_lost_time = max_lost_time
        self.class_cache_size = class_cache_size
        self.symmetric_merge = symmetric_merge
        self.filter_factory: FilterFactory = filter_factory or OneEuroFilter
        self.allocator = ClassCapacityAllocator(max_count_per_class)

        self.tracked: List[Tracklet] = []
        self.untracked: List[Tracklet] = []
        self._ids = itertools.count(1)
        self._last_timestamp: Optional[float] = None

        # Statistics
        self.frame_count = 0
        self.total_tracklets = 0
        self.total_destroyed = 0

        logger.debug(
            f"MultiObjectTracker initialized: max_distance={max_distance}, "
            f"merge_distance={merge_distance}, max_tracklets={max_tracklets}, "
            f"max_lost_time={max_lost_time}, classes={self.allocator.num_classes}"
        )

    @classmethod
    def from_config(cls, config, filter_config=None) -> "MultiObjectTracker":
        """Build from a ``TrackerConfig`` (and optional ``FilterConfig``)."""
        filter_factory = filter_config.create_filter if filter_config is not None else None
        return cls(
            max_count_per_class=config.max_count_per_class,
            max_distance=config.max_distance,
            merge_distance=config.merge_distance,
            max_tracklets=config.max_tracklets,
            max_lost_time=config.max_lost_time,
            class_cache_size=config.class_cache_size,
            symmetric_merge=config.symmetric_merge,
            filter_factory=filter_factory,
        )

    # ------------------------------------------------------------------
    # Per-frame entry points
    # ------------------------------------------------------------------

    def update(
        self,
        detections: Sequence[Detection],
        timestamp: float,
        project: Optional[ProjectFn] = None,
    ) -> List[TrackedObject]:
        """
        Track one frame of detections.

        Args:
            detections: Detections for this frame
            timestamp: Frame time in seconds
            project: Maps a detection to the position to track (e.g. a 3D
                point on a table plane); returning None drops the detection.
                Defaults to the 2D box center.

        Returns:
            Snapshots of the emitted tracklets
        """
        predictions: List[Prediction] = []
        for detection in detections:
            if not is_finite_box(detection.bbox):
                logger.debug(f"Skipping non-finite detection: {detection}")
                continue
            position = project(detection) if project is not None else None
            if project is not None and position is None:
                continue
            predictions.append(Prediction.from_detection(detection, position))

        return self._step(predictions, timestamp)

    def track(self, predictions: Sequence[Prediction], timestamp: float) -> List[Prediction]:
        """
        Track one frame of predictions.

        Returns:
            One prediction per emitted tracklet, carrying the smoothed
            position, the resolved ``class_id`` and the ``track_id``.
        """
        return [
            Prediction(obj.position, [], class_id=obj.class_id, track_id=obj.track_id)
            for obj in self._step(predictions, timestamp)
        ]

    # ------------------------------------------------------------------
    # Frame step
    # ------------------------------------------------------------------

    def _clamp_timestamp(self, timestamp: float) -> float:
        previous = self._last_timestamp
        if not math.isfinite(timestamp):
            logger.warning(f"Non-finite timestamp {timestamp}, using previous frame time")
            timestamp = previous if previous is not None else 0.0
        elif previous is not None and timestamp < previous:
            logger.warning(
                f"Non-monotonic timestamp {timestamp} < {previous}, "
                f"clamping to previous frame time"
            )
            timestamp = previous
        self._last_timestamp = timestamp
        return timestamp

    def _step(self, predictions: Sequence[Prediction], timestamp: float) -> List[TrackedObject]:
        timestamp = self._clamp_timestamp(timestamp)
        self.frame_count += 1

        merged = merge_predictions(predictions, self.merge_distance, symmetric=self.symmetric_merge)

        # Match existing tracklets to their nearest free prediction
        claimed = set()
        matched_tracklets = set()
        for t_idx, tracklet in enumerate(self.tracked):
            best_match = -1
            best_distance = self.max_distance
            for p_idx, prediction in enumerate(merged):
                if p_idx in claimed:
                    continue
                distance = tracklet.distance_to(prediction.position)
                if distance < best_distance:
                    best_distance = distance
                    best_match = p_idx

            if best_match != -1:
                tracklet.update(merged[best_match], timestamp)
                claimed.add(best_match)
                matched_tracklets.add(t_idx)

        # Demote tracklets that found no prediction
        still_tracked: List[Tracklet] = []
        for t_idx, tracklet in enumerate(self.tracked):
            if t_idx in matched_tracklets:
                still_tracked.append(tracklet)
            else:
                tracklet.state = TrackletState.UNTRACKED
                self.untracked.append(tracklet)

        # Spawn tracklets for unclaimed predictions
        n_new = 0
        for p_idx, prediction in enumerate(merged):
            if p_idx in claimed:
                continue
            still_tracked.append(
                Tracklet.create(
                    track_id=next(self._ids),
                    prediction=prediction,
                    timestamp=timestamp,
                    filter=self.filter_factory(),
                    cache_size=self.class_cache_size,
                )
            )
            n_new += 1
        self.tracked = still_tracked
        self.total_tracklets += n_new

        n_destroyed = self._purge_untracked(timestamp)

        # Allocate classes over every live tracklet, tracked first
        live = self.tracked + self.untracked
        allocations = self.allocator.allocate(live, max_outputs=self.max_tracklets)

        outputs: List[TrackedObject] = []
        for allocation in allocations:
            tracklet = live[allocation.tracklet_index]
            tracklet.class_id = allocation.class_id
            outputs.append(tracklet.snapshot(allocation.class_id, allocation.score))

        logger.debug(
            f"Frame {self.frame_count} @ {timestamp:.3f}s: {len(predictions)} predictions "
            f"({len(merged)} merged), {len(matched_tracklets)} matched, {n_new} new, "
            f"{n_destroyed} destroyed, {len(self.tracked)} tracked, "
            f"{len(self.untracked)} untracked, {len(outputs)} emitted"
        )
        return outputs

    def _purge_untracked(self, timestamp: float) -> int:
        survivors: List[Tracklet] = []
        for tracklet in self.untracked:
            if timestamp - tracklet.last_seen >= self.max_lost_time:
                tracklet.state = TrackletState.DESTROYED
                continue
            if any(
                tracklet.distance_to(tracked.position) < self.max_distance
                for tracked in self.tracked
            ):
                tracklet.state = TrackletState.DESTROYED
                continue
            survivors.append(tracklet)

        n_destroyed = len(self.untracked) - len(survivors)
        self.untracked = survivors
        self.total_destroyed += n_destroyed
        return n_destroyed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def tracked_count(self) -> int:
        return len(self.tracked)

    @property
    def untracked_count(self) -> int:
        return len(self.untracked)

    def get_tracklet(self, track_id: int) -> Optional[Tracklet]:
        for tracklet in itertools.chain(self.tracked, self.untracked):
            if tracklet.track_id == track_id:
                return tracklet
        return None

    def get_statistics(self) -> Dict[str, Any]:
        """Get tracking statistics."""
        return {
            "frame_count": self.frame_count,
            "total_tracklets": self.total_tracklets,
            "total_destroyed": self.total_destroyed,
            "tracked": len(self.tracked),
            "untracked": len(self.untracked),
        }

    def reset(self) -> None:
        """Drop every tracklet and restart identity numbering."""
        self.tracked = []
        self.untracked = []
        self._ids = itertools.count(1)
        self._last_timestamp = None
        self.frame_count = 0
        self.total_tracklets = 0
        self.total_destroyed = 0
