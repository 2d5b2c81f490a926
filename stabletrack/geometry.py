"""
Geometry & Scoring Primitives
=============================

Box overlap (IoU), non-maximum suppression and the small interpolation
helpers shared by the tracker and the visual pool.

All boxes are [center_x, center_y, width, height].
"""

import logging
import math
from typing import List, Sequence, Tuple, Union

import numpy as np

from .types import Detection, ScoredClass, ScreenRect

logger = logging.getLogger(__name__)

BoxLike = Sequence[float]


def iou(box_a: BoxLike, box_b: BoxLike) -> float:
    """Compute IoU between two boxes [cx, cy, w, h].

    Returns 0.0 when the union area is zero (two degenerate boxes).
    """
    ax, ay, aw, ah = (float(v) for v in box_a)
    bx, by, bw, bh = (float(v) for v in box_b)

    # Intersection
    xi1 = max(ax - aw / 2.0, bx - bw / 2.0)
    yi1 = max(ay - ah / 2.0, by - bh / 2.0)
    xi2 = min(ax + aw / 2.0, bx + bw / 2.0)
    yi2 = min(ay + ah / 2.0, by + bh / 2.0)
    inter_area = max(xi2 - xi1, 0.0) * max(yi2 - yi1, 0.0)

    # Union
    union_area = aw * ah + bw * bh - inter_area
    if union_area <= 0.0:
        return 0.0

    return inter_area / union_area


def compare_by_score_reversed(detection: Detection) -> float:
    """Sort key: highest score first."""
    return -detection.score


def compare_by_height_reversed(detection: Detection) -> float:
    """Sort key: tallest box first."""
    return -detection.height


def nms(
    boxes: Sequence[BoxLike],
    scored_classes: Sequence[Union[ScoredClass, Tuple[int, float]]],
    score_threshold: float,
    iou_threshold: float,
) -> List[Detection]:
    """
    Non-maximum suppression.

    Keeps the highest-scoring candidate and drops every remaining candidate of
    the same class that overlaps it with IoU >= ``iou_threshold``, until no
    candidates remain. Overlaps between different classes are never
    suppressed. Candidates with equal score keep their input order.

    Args:
        boxes: Boxes [cx, cy, w, h]
        scored_classes: (class index, score) for each box
        score_threshold: Candidates must score strictly above this
        iou_threshold: Same-class overlap at which a candidate is suppressed

    Returns:
        Kept detections ordered by descending score
    """
    if len(boxes) != len(scored_classes):
        logger.warning(
            f"nms: {len(boxes)} boxes but {len(scored_classes)} scores, extra entries ignored"
        )

    candidates: List[Detection] = []
    for box, (cls, score) in zip(boxes, scored_classes):
        if score > score_threshold:
            candidates.append(Detection(tuple(box), float(score), int(cls)))

    # sorted() is stable, so equal scores keep insertion order
    candidates = sorted(candidates, key=compare_by_score_reversed)

    result: List[Detection] = []
    while candidates:
        current = candidates.pop(0)
        result.append(current)
        candidates = [
            item for item in candidates
            if item.class_index != current.class_index
            or iou(current.bbox, item.bbox) < iou_threshold
        ]

    return result


def euclidean_distance(a: Union[np.ndarray, BoxLike], b: Union[np.ndarray, BoxLike]) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def lerp_rect(a: ScreenRect, b: ScreenRect, t: float) -> ScreenRect:
    """Move rect ``a`` toward ``b`` by fraction ``t``."""
    return ScreenRect(
        left=lerp(a.left, b.left, t),
        right=lerp(a.right, b.right, t),
        bottom=lerp(a.bottom, b.bottom, t),
        top=lerp(a.top, b.top, t),
    )


def lerp_point(a: Tuple[float, float], b: Tuple[float, float], t: float) -> Tuple[float, float]:
    return (lerp(a[0], b[0], t), lerp(a[1], b[1], t))


def is_finite_box(box: BoxLike) -> bool:
    return all(math.isfinite(float(v)) for v in box)
