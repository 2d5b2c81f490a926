"""
StableTrack Data Types
======================

Typed data structures that flow through the tracking core:

    Detection → Prediction → Tracklet → TrackedObject
    Detection → VisualSlot → SlotState

Detections are produced outside the engine once per frame. Everything the
engine hands back to callers (``TrackedObject``, ``SlotState``) is a copy, so
callers never hold references into internal tracker memory.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

# (center_x, center_y, width, height), normalized to [0, 1]
BBox = Tuple[float, float, float, float]
Vector = np.ndarray


class ScoredClass(NamedTuple):
    """Best class for one decoded box."""

    cls: int
    score: float


class IDScore(NamedTuple):
    """Class candidate offered by a tracklet during one allocation pass."""

    class_id: int
    score: float
    tracklet_index: int = 0


@dataclass(frozen=True)
class ScreenRect:
    """Anchor rectangle in local screen space ([-1, 1] on both axes)."""

    left: float
    right: float
    bottom: float
    top: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.top - self.bottom

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.bottom + self.top) / 2.0)

    def to_list(self) -> List[float]:
        return [self.left, self.right, self.bottom, self.top]


@dataclass(frozen=True)
class Detection:
    """
    Single perception result for one frame.

    The box is stored as center/size, normalized to the input image. A point
    detection is a box with zero width and height.
    """

    bbox: BBox
    score: float
    class_index: int
    label: Optional[str] = None

    def __post_init__(self):
        if len(self.bbox) != 4:
            raise ValueError(f"bbox must have 4 values (cx, cy, w, h), got {len(self.bbox)}")
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "bbox", tuple(float(v) for v in self.bbox))
        if self.label is None:
            object.__setattr__(self, "label", f"class_{self.class_index}")

    @classmethod
    def from_point(
        cls,
        point: Sequence[float],
        score: float,
        class_index: int,
        label: Optional[str] = None,
    ) -> "Detection":
        """Create a point detection (zero-size box)."""
        return cls((float(point[0]), float(point[1]), 0.0, 0.0), score, class_index, label)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.bbox[0], self.bbox[1])

    @property
    def width(self) -> float:
        return self.bbox[2]

    @property
    def height(self) -> float:
        return self.bbox[3]

    @property
    def position(self) -> Vector:
        """Box center as a 2D vector."""
        return np.array(self.center, dtype=float)

    def screen_rect(self) -> ScreenRect:
        """Anchor rectangle in local space.

        The bbox lives in screen space ([0, 1], y down); the rect lives in
        local space ([-1, 1], y up). Width and height are used as half-extents.
        """
        cx, cy, w, h = self.bbox
        x = cx * 2.0 - 1.0
        y = 1.0 - 2.0 * cy
        return ScreenRect(left=x - w, right=x + w, bottom=y - h, top=y + h)

    def screen_pos(self) -> Tuple[float, float]:
        return self.center

    def __str__(self) -> str:
        return f"Class: {self.label} Score: {self.score:.5f} Bounding Box: {list(self.bbox)}"


@dataclass
class Prediction:
    """
    Per-frame position with ranked class candidates.

    Has no identity of its own until the tracker matches it to a tracklet.
    Tracker output predictions carry the resolved ``class_id`` and the
    ``track_id`` of the tracklet they were produced from.
    """

    position: Vector
    class_scores: List[IDScore] = field(default_factory=list)
    class_id: Optional[int] = None
    track_id: Optional[int] = None

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float)

    @classmethod
    def from_detection(
        cls,
        detection: Detection,
        position: Optional[Union[Sequence[float], Vector]] = None,
    ) -> "Prediction":
        """Build a single-candidate prediction from a detection.

        Args:
            detection: Source detection
            position: Position to track (e.g. an unprojected 3D point).
                Defaults to the detection's 2D box center.
        """
        pos = detection.position if position is None else position
        return cls(pos, [IDScore(detection.class_index, detection.score)])

    @property
    def best_score(self) -> float:
        return self.class_scores[0].score if self.class_scores else 0.0


class TrackletState(str, Enum):
    """Lifecycle state of a tracklet."""

    TRACKED = "tracked"
    UNTRACKED = "untracked"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class TrackedObject:
    """Snapshot of one emitted tracklet for the current frame."""

    track_id: int
    position: Vector
    class_id: int
    score: float
    state: TrackletState

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "position": [float(v) for v in self.position],
            "class_id": self.class_id,
            "score": self.score,
            "state": self.state.value,
        }


Anchor = Union[ScreenRect, Tuple[float, float]]


@dataclass(frozen=True)
class SlotState:
    """Render-facing snapshot of one visual pool slot."""

    index: int
    active: bool
    anchor: Optional[Anchor]
    label: Optional[str]
    class_index: Optional[int]
    lost_frames: int = 0
