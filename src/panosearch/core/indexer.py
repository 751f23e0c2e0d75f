"""
PanoSearch Index Builder

Walks the tour playlist, extracts every panorama and its overlays through
the scene adapter, classifies and filters them, and hands the surviving
records to a :class:`~panosearch.core.engine.FuzzyIndex`.

- Panoramas are filtered before their overlays are expanded
- A single item or overlay that fails is logged and skipped
- A missing or empty playlist yields an empty index over ``label`` so
  searches still answer "no results"
- Optional tqdm progress bar and per-build statistics
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from panosearch.core.classifier import ElementClassifier
from panosearch.core.config import SearchConfig
from panosearch.core.engine import PANORAMA, ContentItem, FuzzyIndex, KeyOption
from panosearch.core.filters import ContentFilterPipeline
from panosearch.core.scene import SceneGraphAdapter
from panosearch.exceptions import ExtractionError, IndexBuildError

logger = logging.getLogger(__name__)

INDEX_KEYS = (
    KeyOption("label", 2.0),
    KeyOption("subtitle", 1.5),
    KeyOption("tags", 1.0),
    KeyOption("parentLabel", 0.7),
    KeyOption("description", 0.5),
)

LABELED_PANORAMA_BOOST = 1.5
PANORAMA_BOOST = 1.0
OVERLAY_BOOST = 0.8


def create_index(config: SearchConfig, items: List[ContentItem]) -> FuzzyIndex:
    """Fuzzy index over *items* tuned from *config*."""
    return FuzzyIndex(
        INDEX_KEYS,
        threshold=config.fuzzy_threshold,
        distance=config.fuzzy_distance,
        ignore_location=True,
        min_match_char_length=config.min_match_char_length,
        include_score=True,
        include_matches=True,
        use_extended_search=True,
    ).index(items)


def empty_index() -> FuzzyIndex:
    """Fallback used when a build fails outright."""
    return FuzzyIndex([KeyOption("label")], include_score=True)


@dataclass
class IndexResult:
    items: List[ContentItem]
    index: FuzzyIndex
    stats: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SearchIndexBuilder:
    """
    Builds the searchable item list for one config snapshot.

    The config is captured at construction; a config update means a new
    builder.
    """

    def __init__(self, config: SearchConfig, show_progress: bool = False):
        self.config = config
        self.show_progress = show_progress
        self.adapter = SceneGraphAdapter(config)
        self.classifier = ElementClassifier()
        self.filters = ContentFilterPipeline(config)
        self.stats = self._fresh_stats()

    @staticmethod
    def _fresh_stats() -> Dict[str, int]:
        return {
            "panoramas_seen": 0,
            "panoramas_indexed": 0,
            "overlays_seen": 0,
            "overlays_indexed": 0,
            "skipped": 0,
            "errors": 0,
        }

    def build(self, tour: Any) -> IndexResult:
        """Extract, filter and index the tour.  Never raises."""
        self.stats = self._fresh_stats()
        try:
            items = self.collect(tour)
        except IndexBuildError as e:
            logger.error(f"Index build failed: {e}")
            return IndexResult(items=[], index=empty_index(), stats=dict(self.stats), error=str(e))
        except Exception as e:
            logger.error(f"Index build failed unexpectedly: {e}", exc_info=True)
            return IndexResult(items=[], index=empty_index(), stats=dict(self.stats), error=str(e))

        logger.info(f"Indexed {len(items)} items for search")
        return IndexResult(items=items, index=create_index(self.config, items), stats=dict(self.stats))

    def collect(self, tour: Any) -> List[ContentItem]:
        """Return the filtered content items; raises :class:`IndexBuildError`."""
        playlist_items = self.adapter.playlist_items(tour)
        if not playlist_items:
            raise IndexBuildError("Tour playlist items not available or empty")

        items: List[ContentItem] = []
        for index, entry in enumerate(tqdm(playlist_items, desc="Indexing panoramas",
                                           unit="pano", disable=not self.show_progress)):
            self.stats["panoramas_seen"] += 1
            try:
                self._process_panorama(tour, entry, index, items)
            except Exception as e:
                logger.warning(f"Error processing item at index {index}: {e}")
                self.stats["errors"] += 1
        return items

    def _process_panorama(self, tour: Any, entry: Any, index: int,
                          items: List[ContentItem]) -> None:
        media = self.adapter.media_of(entry)
        if media is None:
            raise ExtractionError(f"No media found for item at index {index}")

        meta = self.adapter.panorama_metadata(media)
        if not self.filters.should_include_panorama(meta.label, meta.subtitle, meta.tags, index):
            self.stats["skipped"] += 1
            return

        display_label = self.adapter.display_label(meta.label, meta.subtitle, meta.tags)
        items.append(ContentItem(
            type=PANORAMA,
            label=display_label,
            subtitle=meta.subtitle,
            tags=meta.tags,
            index=index,
            boost=LABELED_PANORAMA_BOOST if meta.label else PANORAMA_BOOST,
            original_label=meta.label,
            node=entry,
        ))
        self.stats["panoramas_indexed"] += 1

        for position, overlay in enumerate(self.adapter.overlays(media, tour, entry)):
            self.stats["overlays_seen"] += 1
            try:
                item = self._process_overlay(overlay, index, position, display_label)
            except Exception as e:
                logger.warning(f"Error processing overlay at index {position}: {e}")
                self.stats["errors"] += 1
                continue
            if item is None:
                self.stats["skipped"] += 1
                continue
            items.append(item)
            self.stats["overlays_indexed"] += 1

    def _process_overlay(self, overlay: Any, parent_index: int, position: int,
                         parent_label: str) -> Optional[ContentItem]:
        label = self.adapter.overlay_label(overlay)
        if not label and self.config.include_content.elements.skip_empty_labels:
            return None

        element_type = self.classifier.classify(overlay, label)
        tags = self.adapter.overlay_tags(overlay)
        if not self.filters.should_include_element(element_type, label, tags):
            logger.debug(f"Filtered out {element_type} {label!r}")
            return None

        return ContentItem(
            type=element_type,
            label=label or f"{element_type} {parent_index}.{position}",
            tags=tags,
            parent_index=parent_index,
            parent_label=parent_label,
            id=self.adapter.overlay_id(overlay),
            boost=OVERLAY_BOOST,
            original_label=label,
            description=self.adapter.overlay_text(overlay),
            node=overlay,
        )
