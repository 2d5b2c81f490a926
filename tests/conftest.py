import sys
from pathlib import Path

import pytest

# Add repository root to sys.path so 'stabletrack' can be imported in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stabletrack.types import Detection  # noqa: E402


@pytest.fixture
def ball():
    """Single stationary detection at the image center."""
    return Detection((0.5, 0.5, 0.1, 0.1), 0.9, 0, label="ball")


@pytest.fixture
def frame_times():
    """Ten frame timestamps at 30 fps."""
    return [i / 30.0 for i in range(10)]
