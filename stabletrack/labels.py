"""Class labels, per-class enable flags and per-class counting."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .types import Detection

logger = logging.getLogger(__name__)


@dataclass
class ClassSettings:
    """Display label and enable flag for one class index."""

    label: str = ""
    enabled: bool = True


class ClassRegistry:
    """
    Ordered table of class settings, indexed by class index.

    Classes without a label are referred to as ``class_<index>``.
    """

    def __init__(self, classes: Optional[Iterable[ClassSettings]] = None):
        self.classes: List[ClassSettings] = list(classes or [])

    @classmethod
    def from_labels(cls, labels: Sequence[str]) -> "ClassRegistry":
        return cls(ClassSettings(label=label) for label in labels)

    def __len__(self) -> int:
        return len(self.classes)

    @property
    def class_count(self) -> int:
        return len(self.classes)

    def get_label(self, index: int) -> str:
        if 0 <= index < len(self.classes) and self.classes[index].label:
            return self.classes[index].label
        return f"class_{index}"

    def is_enabled(self, index: int) -> bool:
        return 0 <= index < len(self.classes) and self.classes[index].enabled

    def set_enabled(self, index: int, enabled: bool) -> None:
        if not 0 <= index < len(self.classes):
            raise IndexError(f"class index {index} out of range (0..{len(self.classes) - 1})")
        self.classes[index].enabled = enabled
        logger.debug(f"Class {index} ({self.get_label(index)}) enabled={enabled}")

    def toggle(self, index: int) -> bool:
        """Flip a class's enable flag and return the new value."""
        enabled = not self.is_enabled(index)
        self.set_enabled(index, enabled)
        return enabled

    def enabled_indices(self) -> List[int]:
        return [i for i, settings in enumerate(self.classes) if settings.enabled]

    def apply_labels(self, detections: Sequence[Detection]) -> List[Detection]:
        """Return copies of ``detections`` labelled from this registry."""
        return [
            Detection(d.bbox, d.score, d.class_index, self.get_label(d.class_index))
            for d in detections
        ]

    def count_per_class(self, detections: Sequence[Detection]) -> Dict[int, int]:
        """Number of detections per class index (every registered class is present)."""
        counts = {i: 0 for i in range(len(self.classes))}
        for detection in detections:
            counts[detection.class_index] = counts.get(detection.class_index, 0) + 1
        return counts

    def to_list(self) -> List[dict]:
        return [{"label": c.label, "enabled": c.enabled} for c in self.classes]

    @classmethod
    def from_list(cls, items: Sequence[dict]) -> "ClassRegistry":
        return cls(
            ClassSettings(label=item.get("label", ""), enabled=item.get("enabled", True))
            for item in items
        )
