"""
YOLOv7 Output Decoder
=====================

Turns raw detection-head tensors into candidate boxes and scored classes,
ready for :func:`stabletrack.geometry.nms`.

Each head tensor has shape ``(ny, nx, n_anchors * (4 + 1 + n_classes))``
laid out as ``[x, y, w, h, objectness, class scores...]`` per anchor.
Box decoding follows the upstream model:

    x = (2 * tx - 0.5 + grid_x) * stride
    w = tw ** 2 * anchor_w

Reference: https://github.com/WongKinYiu/yolov7/blob/main/models/yolo.py
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .labels import ClassRegistry
from .types import ScoredClass

logger = logging.getLogger(__name__)

# Anchor sizes (pixels) per head, and matching strides
DEFAULT_ANCHORS: Tuple[Tuple[Tuple[int, int], ...], ...] = (
    ((144, 300), (304, 220), (288, 584)),
    ((568, 440), (768, 972), (1836, 1604)),
    ((48, 64), (76, 144), (160, 112)),
)
DEFAULT_STRIDES: Tuple[int, ...] = (16, 32, 8)


class YoloV7Decoder:
    """
    Decode YOLOv7 head outputs.

    Args:
        input_size: Model input (width, height) in pixels
        registry: Class table. Its length is the model's class count and
            disabled classes are never reported.
        score_threshold: Minimum objectness and objectness * class score
        anchors: Anchor (w, h) pairs per head
        strides: Stride per head
    """

    def __init__(
        self,
        input_size: Tuple[int, int],
        registry: ClassRegistry,
        score_threshold: float = 0.4,
        anchors: Sequence[Sequence[Sequence[int]]] = DEFAULT_ANCHORS,
        strides: Sequence[int] = DEFAULT_STRIDES,
    ):
        if len(anchors) != len(strides):
            raise ValueError(f"{len(anchors)} anchor sets but {len(strides)} strides")
        if input_size[0] <= 0 or input_size[1] <= 0:
            raise ValueError(f"input_size must be positive, got {input_size}")
        if registry.class_count == 0:
            raise ValueError("registry must define at least one class")

        self.input_size = (int(input_size[0]), int(input_size[1]))
        self.registry = registry
        self.score_threshold = score_threshold
        self.anchors = [np.asarray(a, dtype=float) for a in anchors]
        self.strides = list(strides)
        self._grids: dict = {}

    @property
    def num_classes(self) -> int:
        return self.registry.class_count

    def _grid(self, nx: int, ny: int) -> Tuple[np.ndarray, np.ndarray]:
        key = (nx, ny)
        if key not in self._grids:
            gx, gy = np.meshgrid(np.arange(nx, dtype=float), np.arange(ny, dtype=float))
            self._grids[key] = (gx[..., None], gy[..., None])
        return self._grids[key]

    def decode(
        self, outputs: Sequence[np.ndarray]
    ) -> Tuple[List[Tuple[float, float, float, float]], List[ScoredClass]]:
        """
        Decode every head.

        Args:
            outputs: One tensor per head, shape (ny, nx, n_anchors * step)

        Returns:
            (boxes, scores): normalized [cx, cy, w, h] boxes and their best
            enabled class, in head / row / column / anchor order
        """
        if len(outputs) > len(self.strides):
            raise ValueError(f"{len(outputs)} heads but only {len(self.strides)} strides configured")

        step = self.num_classes + 5
        enabled = np.zeros(self.num_classes, dtype=bool)
        enabled[self.registry.enabled_indices()] = True
        in_w, in_h = self.input_size

        boxes: List[Tuple[float, float, float, float]] = []
        scores: List[ScoredClass] = []
        for head, output in enumerate(outputs):
            data = np.asarray(output, dtype=float)
            ny, nx = data.shape[0], data.shape[1]
            anchors = self.anchors[head]
            n_anchors = len(anchors)
            if data.size != ny * nx * n_anchors * step:
                raise ValueError(
                    f"head {head}: expected {n_anchors}x{step} values per cell, "
                    f"got shape {data.shape}"
                )
            data = data.reshape(ny, nx, n_anchors, step)
            stride = self.strides[head]
            gx, gy = self._grid(nx, ny)

            conf = data[..., 4]
            class_scores = data[..., 5:] * conf[..., None]
            class_scores = np.where(enabled, class_scores, 0.0)
            best_cls = np.argmax(class_scores, axis=-1)
            best_score = np.take_along_axis(class_scores, best_cls[..., None], axis=-1)[..., 0]

            keep = (conf > self.score_threshold) & (best_score > self.score_threshold)
            if not keep.any():
                continue

            x = (data[..., 0] * 2.0 - 0.5 + gx) * stride
            y = (data[..., 1] * 2.0 - 0.5 + gy) * stride
            w = data[..., 2] ** 2 * anchors[:, 0]
            h = data[..., 3] ** 2 * anchors[:, 1]

            for iy, ix, ia in zip(*np.nonzero(keep)):
                boxes.append((
                    float(x[iy, ix, ia] / in_w),
                    float(y[iy, ix, ia] / in_h),
                    float(w[iy, ix, ia] / in_w),
                    float(h[iy, ix, ia] / in_h),
                ))
                scores.append(ScoredClass(int(best_cls[iy, ix, ia]), float(best_score[iy, ix, ia])))

        logger.debug(f"Decoded {len(boxes)} candidate boxes from {len(outputs)} heads")
        return boxes, scores

