"""StableTrack: multi-object identity tracking and bounded visual reconciliation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stabletrack")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from stabletrack.types import (
    Detection,
    IDScore,
    Prediction,
    ScoredClass,
    ScreenRect,
    SlotState,
    TrackedObject,
    TrackletState,
)
from stabletrack.geometry import iou, nms
from stabletrack.smoothing import OneEuroFilter
from stabletrack.merge import merge_predictions
from stabletrack.allocator import ClassCapacityAllocator, ClassVoteCache
from stabletrack.tracker import MultiObjectTracker, Tracklet
from stabletrack.reconciler import NullVisualHandle, VisualHandle, VisualPoolReconciler
from stabletrack.labels import ClassRegistry, ClassSettings
from stabletrack.decoder import YoloV7Decoder
from stabletrack.config import (
    ConfigError,
    DetectionConfig,
    EngineConfig,
    FilterConfig,
    ReconcilerConfig,
    TrackerConfig,
    get_default_config,
    get_pool_table_config,
    load_config,
    save_config,
)
from stabletrack.engine import DetectionPipeline, FrameResult, TrackingEngine

__all__ = [
    # Version
    "__version__",
    # Types
    "Detection",
    "IDScore",
    "Prediction",
    "ScoredClass",
    "ScreenRect",
    "SlotState",
    "TrackedObject",
    "TrackletState",
    # Core
    "iou",
    "nms",
    "OneEuroFilter",
    "merge_predictions",
    "ClassCapacityAllocator",
    "ClassVoteCache",
    "MultiObjectTracker",
    "Tracklet",
    "NullVisualHandle",
    "VisualHandle",
    "VisualPoolReconciler",
    "ClassRegistry",
    "ClassSettings",
    "YoloV7Decoder",
    # Config
    "ConfigError",
    "DetectionConfig",
    "EngineConfig",
    "FilterConfig",
    "ReconcilerConfig",
    "TrackerConfig",
    "get_default_config",
    "get_pool_table_config",
    "load_config",
    "save_config",
    # Engine
    "DetectionPipeline",
    "FrameResult",
    "TrackingEngine",
]
