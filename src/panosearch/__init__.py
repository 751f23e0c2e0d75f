"""
PanoSearch — fuzzy content search for virtual-tour scene graphs.

Extracts panoramas and their overlays from a tour player, filters them per
configurable rules, indexes them for fuzzy search and, on selection,
navigates to or clicks the matching scene element.

Quick start (programmatic API)::

    from panosearch import TourSearch
    from panosearch.host import load_scene

    search = TourSearch()
    search.initialize_search(load_scene("tour.json"))
    outcome = search.search("lobby")

Quick start (CLI)::

    panosearch index tour.json
    panosearch search tour.json "lobby"

Configuration override::

    from panosearch import TourSearch, build_config

    search = TourSearch(config=build_config({"minSearchChars": 3}))
"""

__version__ = "2.0.1"

# Primary public API — the TourSearch facade
from panosearch.client import TourSearch

# Configuration
from panosearch.core.config import SearchConfig, build_config, validate_config

# Core data types that callers interact with
from panosearch.core.engine import ContentItem, SearchMatch
from panosearch.core.search import QueryOutcome, QueryStatus

# Exception hierarchy
from panosearch.exceptions import (
    ConfigValidationError,
    ElementLookupError,
    ElementTriggerError,
    ExtractionError,
    IndexBuildError,
    PanoSearchError,
    SceneLoadError,
    StorageError,
    StorageQuotaExceeded,
    StorageUnavailableError,
)


def health(config: SearchConfig | None = None) -> dict:
    """
    Return a small status dict for agents or status endpoints (no tour needed).

    When *config* is None, uses :meth:`SearchConfig.from_env()` for the snapshot.
    """
    cfg = config or SearchConfig.from_env()
    return {
        "version": __version__,
        "min_search_chars": cfg.min_search_chars,
        "log_level": cfg.log_level,
    }


__all__ = [
    "__version__",
    # Facade
    "TourSearch",
    # Config
    "SearchConfig",
    "build_config",
    "validate_config",
    # Data types
    "ContentItem",
    "SearchMatch",
    "QueryOutcome",
    "QueryStatus",
    # Exceptions
    "PanoSearchError",
    "ConfigValidationError",
    "ExtractionError",
    "IndexBuildError",
    "ElementLookupError",
    "ElementTriggerError",
    "StorageError",
    "StorageUnavailableError",
    "StorageQuotaExceeded",
    "SceneLoadError",
    # Status
    "health",
]
