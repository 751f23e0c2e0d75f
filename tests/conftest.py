"""
Shared fixtures for the PanoSearch test suite.
"""

import copy
import json
import sys
import warnings
from pathlib import Path

import pytest

# Filter deprecation warnings from pytest-asyncio; we cannot fix the library.
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    module="pytest_asyncio",
)

# Ensure the src/ directory is on the import path so that
# panosearch.core.config / panosearch.core.engine / etc. can be imported.
SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(SRC_ROOT))

from panosearch.core.config import build_config  # noqa: E402
from panosearch.core.scheduler import ManualScheduler  # noqa: E402
from panosearch.core.storage import MemoryStorage  # noqa: E402
from panosearch.host import load_scene  # noqa: E402


# =============================================================================
# Fixtures — scene exports
# =============================================================================

TOUR_SCENE = {
    "panoramas": [
        {
            "id": "pano-lobby",
            "label": "Lobby",
            "subtitle": "Ground floor",
            "tags": ["entrance"],
            "overlays": [
                {"id": "hs-info-desk", "class": "HotspotPanoramaOverlay",
                 "data": {"label": "info-desk", "hasPanoramaAction": True}},
                {"id": "vid-welcome", "class": "QuadVideoPanoramaOverlay",
                 "data": {"label": "Welcome video"}},
            ],
        },
        {
            "id": "pano-kitchen",
            "label": "Kitchen",
            "media_overlays": [
                {"id": "web-menu", "class": "FramePanoramaOverlay",
                 "data": {"label": "Menu page", "tags": ["food"]}},
            ],
        },
        {
            "id": "pano-storage",
            "label": "Storage Room",
            "subtitle": "Basement",
            "item_overlays": [
                {"id": "txt-note", "class": "TextPanoramaOverlay",
                 "text": "Please keep the storage room door closed at all times"},
            ],
        },
        {"id": "pano-blank"},
    ]
}

# 4 panoramas + 4 overlays
TOUR_ITEM_COUNT = 8


@pytest.fixture
def tour_scene() -> dict:
    """A fresh, mutable copy of the standard four-panorama scene."""
    return copy.deepcopy(TOUR_SCENE)


@pytest.fixture
def tour(tour_scene):
    """The standard scene loaded into a JSON host tour."""
    return load_scene(tour_scene)


@pytest.fixture
def scene_file(tmp_path: Path, tour_scene) -> Path:
    """The standard scene written to disk, for CLI tests."""
    path = tmp_path / "tour.json"
    path.write_text(json.dumps(tour_scene), encoding="utf-8")
    return path


# =============================================================================
# Fixtures — config, storage, timers
# =============================================================================

@pytest.fixture
def config():
    """Default configuration snapshot."""
    return build_config()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual clock starting at 0 ms."""
    return ManualScheduler()
