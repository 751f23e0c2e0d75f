"""
PanoSearch Core — configuration, scene extraction, filtering, indexing, search and triggering.

Re-exports the primary classes for convenience::

    from panosearch.core import SearchConfig, SearchIndexBuilder, QueryEngine
"""

from panosearch.core.classifier import ElementClassifier
from panosearch.core.config import SearchConfig, build_config, validate_config
from panosearch.core.engine import ContentItem, FuzzyIndex, KeyOption, SearchMatch
from panosearch.core.filters import ContentFilterPipeline
from panosearch.core.history import SearchHistoryStore
from panosearch.core.indexer import IndexResult, SearchIndexBuilder
from panosearch.core.scene import SceneGraphAdapter
from panosearch.core.scheduler import AsyncioScheduler, BlockingScheduler, ManualScheduler
from panosearch.core.search import Debouncer, QueryEngine, ResultFormatter, ResultOrganizer
from panosearch.core.storage import ConfigSnapshotStore, FileStorage, MemoryStorage
from panosearch.core.trigger import ActionTrigger, backoff_schedule

__all__ = [
    "SearchConfig",
    "build_config",
    "validate_config",
    "SceneGraphAdapter",
    "ElementClassifier",
    "ContentFilterPipeline",
    "ContentItem",
    "FuzzyIndex",
    "KeyOption",
    "SearchMatch",
    "SearchIndexBuilder",
    "IndexResult",
    "QueryEngine",
    "Debouncer",
    "ResultOrganizer",
    "ResultFormatter",
    "ActionTrigger",
    "backoff_schedule",
    "ManualScheduler",
    "BlockingScheduler",
    "AsyncioScheduler",
    "MemoryStorage",
    "FileStorage",
    "ConfigSnapshotStore",
    "SearchHistoryStore",
]
