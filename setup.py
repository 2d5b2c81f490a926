"""
StableTrack - Multi-Object Identity Tracking
Stable identities, smoothed positions and bounded visuals from noisy detections
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="stabletrack",
    version="0.1.0",
    description="Multi-object identity tracking and bounded visual reconciliation for per-frame detections",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["stabletrack", "stabletrack.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI/UI
        "rich>=14.1.0",

        # Utilities
        "numpy>=1.26.4",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=23.0.0",
            "ruff>=0.13.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "stabletrack=stabletrack.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Image Recognition",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
