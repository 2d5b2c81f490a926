"""
Detection Merge Stage
=====================

Collapses near-duplicate predictions (one physical object reported as several
candidate detections, often with different classes) before tracking.

Two modes:

- greedy (default): one left-to-right pass. A prediction can only absorb
  predictions that come *after* it in the input, so the result depends on
  input order.
- symmetric: single-linkage clustering (connected components under
  ``distance < merge_distance``). Cluster membership does not depend on input
  order.
"""

import logging
from typing import Dict, List, Sequence

import numpy as np

from .types import IDScore, Prediction

logger = logging.getLogger(__name__)


def _sorted_scores(scores: List[IDScore]) -> List[IDScore]:
    return sorted(scores, key=lambda s: s.score, reverse=True)


def merge_predictions(
    predictions: Sequence[Prediction],
    merge_distance: float,
    symmetric: bool = False,
) -> List[Prediction]:
    """
    Merge predictions closer than ``merge_distance``.

    Merged predictions concatenate their class candidates, re-sorted by
    descending score.

    Args:
        predictions: Predictions for one frame
        merge_distance: Euclidean distance below which predictions merge
        symmetric: Use order-independent clustering instead of the greedy pass

    Returns:
        Merged predictions (new objects, inputs are not modified)
    """
    if not predictions:
        return []
    if symmetric:
        return _merge_symmetric(predictions, merge_distance)
    return _merge_greedy(predictions, merge_distance)


def _merge_greedy(predictions: Sequence[Prediction], merge_distance: float) -> List[Prediction]:
    merged: List[Prediction] = []
    merged_indices = set()

    for i, current in enumerate(predictions):
        if i in merged_indices:
            continue

        class_scores = list(current.class_scores)
        for j in range(i + 1, len(predictions)):
            if j in merged_indices:
                continue
            other = predictions[j]
            if np.linalg.norm(current.position - other.position) < merge_distance:
                class_scores.extend(other.class_scores)
                merged_indices.add(j)

        merged.append(Prediction(current.position.copy(), _sorted_scores(class_scores)))
        merged_indices.add(i)

    if len(merged) < len(predictions):
        logger.debug(f"Merged {len(predictions)} predictions into {len(merged)}")
    return merged


def _merge_symmetric(predictions: Sequence[Prediction], merge_distance: float) -> List[Prediction]:
    n = len(predictions)
    parent = list(range(n))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    positions = np.stack([p.position for p in predictions])
    for i in range(n):
        dists = np.linalg.norm(positions[i + 1:] - positions[i], axis=1)
        for offset in np.nonzero(dists < merge_distance)[0]:
            root_a, root_b = find(i), find(i + 1 + int(offset))
            if root_a != root_b:
                parent[max(root_a, root_b)] = min(root_a, root_b)

    clusters: Dict[int, List[int]] = {}
    for i in range(n):
        clusters.setdefault(find(i), []).append(i)

    merged: List[Prediction] = []
    for members in clusters.values():
        class_scores: List[IDScore] = []
        for idx in members:
            class_scores.extend(predictions[idx].class_scores)
        # Highest-scoring member anchors the cluster; position breaks ties
        anchor = max(
            members,
            key=lambda idx: (predictions[idx].best_score, tuple(-positions[idx])),
        )
        merged.append(Prediction(positions[anchor].copy(), _sorted_scores(class_scores)))

    if len(merged) < n:
        logger.debug(f"Merged {n} predictions into {len(merged)} (symmetric)")
    return merged
