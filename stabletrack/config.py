"""
StableTrack Configuration
=========================

Validated configuration for the tracking engine.

Supports presets (default / pool table) and custom values, plus JSON
persistence. All fields are validated at construction with meaningful error
messages; nothing in the per-frame path validates again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .labels import ClassRegistry, ClassSettings
from .smoothing import OneEuroFilter

logger = logging.getLogger(__name__)

POOL_BALL_DIAMETER_CM = 5.715


class ConfigError(ValueError):
    """Raised when a configuration value or file is invalid."""


@dataclass
class FilterConfig:
    """One Euro filter parameters (one filter per tracklet)."""

    min_cutoff: float = 0.05
    """Minimum cutoff frequency in Hz (lower = smoother when still)."""

    beta: float = 0.3
    """Speed coefficient (higher = less lag when moving)."""

    derivative_cutoff: float = 2.0
    """Cutoff frequency of the derivative estimate in Hz."""

    frequency: float = 30.0
    """Initial sampling frequency in Hz, re-estimated from timestamps."""

    def __post_init__(self):
        for name in ("min_cutoff", "beta", "derivative_cutoff", "frequency"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigError(f"{name} must be > 0, got {value}")

    def create_filter(self) -> OneEuroFilter:
        return OneEuroFilter(
            min_cutoff=self.min_cutoff,
            beta=self.beta,
            derivative_cutoff=self.derivative_cutoff,
            frequency=self.frequency,
        )


@dataclass
class TrackerConfig:
    """Identity tracker configuration."""

    max_count_per_class: List[int] = field(default_factory=lambda: [1])
    """Maximum live tracklets reported per class id (index = class id)."""

    max_distance: float = 0.5
    """Distance under which a prediction matches a tracklet (position units)."""

    merge_distance: float = 0.5
    """Distance under which predictions of one frame are merged."""

    max_tracklets: int = 50
    """Maximum predictions emitted per frame."""

    max_lost_time: float = 0.25
    """Seconds an unmatched tracklet is still reported."""

    class_cache_size: int = 10
    """Window of recent class assignments used for the majority vote."""

    symmetric_merge: bool = False
    """Cluster predictions independently of input order."""

    def __post_init__(self):
        if not self.max_count_per_class:
            raise ConfigError("max_count_per_class must list at least one class")
        try:
            counts = [int(c) for c in self.max_count_per_class]
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"max_count_per_class entries must be integers, got {self.max_count_per_class}"
            ) from exc
        if any(c < 0 for c in counts):
            raise ConfigError(f"max_count_per_class entries must be >= 0, got {self.max_count_per_class}")
        self.max_count_per_class = counts

        if self.max_distance <= 0:
            raise ConfigError(f"max_distance must be > 0, got {self.max_distance}")
        if self.merge_distance < 0:
            raise ConfigError(f"merge_distance must be >= 0, got {self.merge_distance}")
        if self.max_tracklets < 1:
            raise ConfigError(f"max_tracklets must be >= 1, got {self.max_tracklets}")
        if self.max_lost_time < 0:
            raise ConfigError(f"max_lost_time must be >= 0, got {self.max_lost_time}")
        if self.class_cache_size < 1:
            raise ConfigError(f"class_cache_size must be >= 1, got {self.class_cache_size}")

        if sum(self.max_count_per_class) < self.max_tracklets:
            logger.debug(
                f"Class capacity {sum(self.max_count_per_class)} is below "
                f"max_tracklets={self.max_tracklets}; excess tracklets are not emitted"
            )

    @property
    def num_classes(self) -> int:
        return len(self.max_count_per_class)


@dataclass
class ReconcilerConfig:
    """Visual pool reconciler configuration."""

    pool_size: int = 30
    """Number of reusable visual slots."""

    match_detections: bool = True
    """Keep slots bound to the same object across frames (IoU matching)."""

    match_threshold: float = 0.5
    """Minimum same-class IoU to keep a slot bound."""

    lost_frames_threshold: int = 4
    """Frames an unmatched slot stays visible before it is released."""

    smoothing_coefficient: float = 0.0
    """Anchor smoothing, 0 (snap) to 1 (slowest)."""

    anchor_mode: str = "rect"
    """'rect' for screen rectangles, 'point' for screen positions."""

    def __post_init__(self):
        if self.pool_size < 1:
            raise ConfigError(f"pool_size must be >= 1, got {self.pool_size}")
        if not (0 <= self.match_threshold <= 1):
            raise ConfigError(f"match_threshold must be in [0, 1], got {self.match_threshold}")
        if self.lost_frames_threshold < 0:
            raise ConfigError(f"lost_frames_threshold must be >= 0, got {self.lost_frames_threshold}")
        if not (0 <= self.smoothing_coefficient <= 1):
            raise ConfigError(
                f"smoothing_coefficient must be in [0, 1], got {self.smoothing_coefficient}"
            )
        if self.anchor_mode not in {"rect", "point"}:
            raise ConfigError(f"anchor_mode must be 'rect' or 'point', got {self.anchor_mode}")


@dataclass
class DetectionConfig:
    """Raw-output decoding and NMS configuration."""

    score_threshold: float = 0.4
    """Minimum detection score (0-1)."""

    iou_threshold: float = 0.65
    """NMS IoU threshold for same-class overlapping boxes."""

    input_width: int = 320
    """Model input width in pixels."""

    input_height: int = 320
    """Model input height in pixels."""

    classes: List[ClassSettings] = field(default_factory=list)
    """Class labels / enable flags, index = class id."""

    def __post_init__(self):
        if not (0 <= self.score_threshold <= 1):
            raise ConfigError(f"score_threshold must be in [0, 1], got {self.score_threshold}")
        if not (0 <= self.iou_threshold <= 1):
            raise ConfigError(f"iou_threshold must be in [0, 1], got {self.iou_threshold}")
        if self.input_width < 1 or self.input_height < 1:
            raise ConfigError(
                f"input size must be positive, got {self.input_width}x{self.input_height}"
            )
        self.classes = [
            c if isinstance(c, ClassSettings) else ClassSettings(**c) for c in self.classes
        ]

    def registry(self) -> ClassRegistry:
        return ClassRegistry(ClassSettings(c.label, c.enabled) for c in self.classes)


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)

    enable_tracker: bool = True
    """Run the identity tracker each frame."""

    enable_reconciler: bool = True
    """Run the visual pool reconciler each frame."""

    def __post_init__(self):
        if not (self.enable_tracker or self.enable_reconciler):
            raise ConfigError("at least one of enable_tracker / enable_reconciler must be set")
        logger.debug(
            f"EngineConfig validated: classes={self.tracker.num_classes}, "
            f"pool_size={self.reconciler.pool_size}, tracker={self.enable_tracker}, "
            f"reconciler={self.enable_reconciler}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build from a (possibly partial) nested dictionary."""
        if not isinstance(data, dict):
            raise ConfigError(f"config must be a JSON object, got {type(data).__name__}")
        sections = {
            "tracker": TrackerConfig,
            "filter": FilterConfig,
            "reconciler": ReconcilerConfig,
            "detection": DetectionConfig,
        }
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                if not isinstance(value, dict):
                    raise ConfigError(f"section '{key}' must be an object")
                try:
                    kwargs[key] = sections[key](**value)
                except TypeError as exc:
                    raise ConfigError(f"invalid key in section '{key}': {exc}") from exc
            elif key in ("enable_tracker", "enable_reconciler"):
                kwargs[key] = bool(value)
            else:
                raise ConfigError(f"unknown config key: {key}")
        return cls(**kwargs)


def get_default_config() -> EngineConfig:
    """Normalized screen-space tracking with a single class."""
    return EngineConfig()


def get_pool_table_config() -> EngineConfig:
    """
    Pool table preset: 16 numbered balls (one each) plus up to 6 pockets,
    tracked in centimeters on the table plane.
    """
    labels = ["cue"] + [f"ball_{i}" for i in range(1, 16)] + ["pocket"]
    return EngineConfig(
        tracker=TrackerConfig(
            max_count_per_class=[1] * 16 + [6],
            max_distance=POOL_BALL_DIAMETER_CM * 3,
            merge_distance=POOL_BALL_DIAMETER_CM * 0.25,
            max_tracklets=20,
            max_lost_time=0.25,
        ),
        reconciler=ReconcilerConfig(pool_size=70, match_detections=True),
        detection=DetectionConfig(classes=[ClassSettings(label=label) for label in labels]),
    )


PRESETS = {
    "default": get_default_config,
    "pool": get_pool_table_config,
}


def get_preset(name: str) -> EngineConfig:
    try:
        return PRESETS[name]()
    except KeyError:
        raise ConfigError(f"unknown preset '{name}', expected one of {sorted(PRESETS)}") from None


def load_config(path: Union[str, Path], base: Optional[EngineConfig] = None) -> EngineConfig:
    """
    Load a JSON config file.

    Sections present in the file replace the matching sections of ``base``
    (defaults when omitted).

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {path}: {exc}") from exc

    if base is not None:
        if not isinstance(data, dict):
            raise ConfigError(f"config must be a JSON object, got {type(data).__name__}")
        data = {**base.to_dict(), **data}

    config = EngineConfig.from_dict(data)
    logger.info(f"Loaded config from {path}")
    return config


def save_config(config: EngineConfig, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    return path
