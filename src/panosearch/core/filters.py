"""
Content filter pipeline.

Decides which panoramas and overlays make it into the search index.  Each
filter is driven by a mode (``none``, ``whitelist`` or ``blacklist``); an
unknown mode string behaves as ``none``.  Filters are pure functions of the
config snapshot, so running :meth:`ContentFilterPipeline.filter_items` on
its own output changes nothing.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from panosearch.core.config import FilterMode, SearchConfig, to_snake
from panosearch.core.engine import ContentItem

logger = logging.getLogger(__name__)

TYPE_TOGGLES = {
    "Hotspot": "include_hotspots",
    "Polygon": "include_polygons",
    "Video": "include_videos",
    "Webframe": "include_webframes",
    "Image": "include_images",
    "Text": "include_text",
    "ProjectedImage": "include_projected_images",
    "Element": "include_elements",
}


def _active(mode: str, values: Sequence) -> Optional[FilterMode]:
    """The effective mode of a list filter, or None when it cannot exclude anything."""
    parsed = FilterMode.parse(mode)
    if parsed is FilterMode.NONE or not values:
        return None
    return parsed


class ContentFilterPipeline:
    """Per-item include/exclude decisions for one config snapshot."""

    def __init__(self, config: SearchConfig):
        self.config = config

    # ── Overlays ──────────────────────────────────────────────────

    def should_include_element(self, element_type: str, label: str,
                               tags: Sequence[str] = ()) -> bool:
        """Apply the overlay stages in order; the first failing stage excludes."""
        label = label or ""
        tags = list(tags or ())
        return (
            self._passes_label_policy(label)
            and self._passes_type_filter(element_type)
            and self._passes_label_filter(label)
            and self._passes_tag_filter(tags)
            and self._type_enabled(element_type)
        )

    def _passes_label_policy(self, label: str) -> bool:
        elements = self.config.include_content.elements
        if not label and elements.skip_empty_labels:
            return False
        min_length = elements.min_label_length or 0
        if label and min_length > 0 and len(label) < min_length:
            return False
        return True

    def _passes_type_filter(self, element_type: str) -> bool:
        types = self.config.filter.element_types
        if _active(types.mode, types.allowed_types) is FilterMode.WHITELIST:
            return element_type in types.allowed_types
        if _active(types.mode, types.blacklisted_types) is FilterMode.BLACKLIST:
            return element_type not in types.blacklisted_types
        return True

    def _passes_label_filter(self, label: str) -> bool:
        if not label:
            return True
        labels = self.config.filter.element_labels
        if _active(labels.mode, labels.allowed_values) is FilterMode.WHITELIST:
            return any(value in label for value in labels.allowed_values)
        if _active(labels.mode, labels.blacklisted_values) is FilterMode.BLACKLIST:
            return not any(value in label for value in labels.blacklisted_values)
        return True

    def _passes_tag_filter(self, tags: List[str]) -> bool:
        tag_filter = self.config.filter.tag_filtering
        if _active(tag_filter.mode, tag_filter.allowed_tags) is FilterMode.WHITELIST:
            return any(tag in tag_filter.allowed_tags for tag in tags)
        if _active(tag_filter.mode, tag_filter.blacklisted_tags) is FilterMode.BLACKLIST:
            return not any(tag in tag_filter.blacklisted_tags for tag in tags)
        return True

    def _type_enabled(self, element_type: str) -> bool:
        elements = self.config.include_content.elements
        toggle = TYPE_TOGGLES.get(element_type)
        if toggle:
            return getattr(elements, toggle) is not False
        for key in (to_snake(f"include{element_type}s"), f"include{element_type}s"):
            if key in elements.extra:
                return bool(elements.extra[key])
        return True

    # ── Panoramas ─────────────────────────────────────────────────

    def should_include_panorama(self, label: str, subtitle: str,
                                tags: Sequence[str], index: int) -> bool:
        """
        Panorama-level decision, made before its overlays are expanded.

        Value lists match by exact membership of the label or subtitle.
        Media-index lists are only consulted for completely blank panoramas.
        """
        f = self.config.filter
        content = self.config.include_content
        mode = FilterMode.parse(f.mode)
        has_tags = bool(tags)

        if mode is FilterMode.WHITELIST:
            if label:
                if label not in f.allowed_values and (not subtitle or subtitle not in f.allowed_values):
                    return False
            elif subtitle and subtitle not in f.allowed_values:
                return False
        elif mode is FilterMode.BLACKLIST:
            if label and label in f.blacklisted_values:
                return False
            if subtitle and subtitle in f.blacklisted_values:
                return False

        if not label and not subtitle and not has_tags:
            if mode is FilterMode.WHITELIST and f.allowed_media_indexes:
                if index not in f.allowed_media_indexes:
                    return False
            if mode is FilterMode.BLACKLIST and f.blacklisted_media_indexes:
                if index in f.blacklisted_media_indexes:
                    return False
            if not content.completely_blank:
                return False

        if not label:
            return (
                (bool(subtitle) and content.unlabeled_with_subtitles)
                or (has_tags and content.unlabeled_with_tags)
                or (not subtitle and not has_tags and content.completely_blank)
            )
        return True

    # ── Bulk ──────────────────────────────────────────────────────

    def filter_items(self, items: Iterable[ContentItem]) -> List[ContentItem]:
        """Keep the items that pass their panorama or overlay filter."""
        kept = []
        for item in items:
            if item.is_panorama:
                ok = self.should_include_panorama(
                    item.original_label, item.subtitle, item.tags,
                    item.index if item.index is not None else -1,
                )
            else:
                ok = self.should_include_element(item.type, item.original_label, item.tags)
            if ok:
                kept.append(item)
            else:
                logger.debug(f"Filtered out {item.type} {item.label!r}")
        return kept
