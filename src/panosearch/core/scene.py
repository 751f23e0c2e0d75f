"""
Scene graph adapter.

The tour player exposes its scene through objects whose shape varies between
player versions: a value may live on an attribute, behind ``.get(key)``, or
not exist at all.  Every read here goes through small probe functions that
return ``None`` instead of raising, and every multi-source lookup is an
ordered list of such probes where the first non-empty result wins.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from panosearch.core.config import SearchConfig

logger = logging.getLogger(__name__)

PANORAMA_OVERLAY_CLASS = "PanoramaOverlay"
TEXT_LABEL_LIMIT = 30


# =============================================================================
# Probes
# =============================================================================

def read_attr(obj: Any, name: str) -> Any:
    """``obj.name`` (or ``obj[name]`` for mappings); None when absent or failing."""
    if obj is None:
        return None
    try:
        if isinstance(obj, Mapping):
            return obj.get(name)
        return getattr(obj, name, None)
    except Exception as e:
        logger.debug(f"Attribute probe {name!r} failed: {e}")
        return None


def read_get(obj: Any, key: str) -> Any:
    """``obj.get(key)`` when the object has a callable ``get``; None otherwise."""
    if obj is None:
        return None
    try:
        getter = getattr(obj, "get", None)
        if not callable(getter):
            return None
        return getter(key)
    except Exception as e:
        logger.debug(f"get({key!r}) probe failed: {e}")
        return None


def first_result(strategies: Iterable[Callable[[], Optional[Any]]]) -> Optional[Any]:
    """Run *strategies* in order and return the first non-empty result."""
    for strategy in strategies:
        try:
            result = strategy()
        except Exception as e:
            logger.debug(f"Strategy {getattr(strategy, '__name__', strategy)} failed: {e}")
            continue
        if result:
            return result
    return None


def get_data(obj: Any) -> Any:
    """Data probe: ``.data`` attribute, then ``.get("data")``, else ``{}``."""
    if obj is None:
        return {}
    return first_result([
        lambda: read_attr(obj, "data"),
        lambda: read_get(obj, "data"),
    ]) or {}


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_tags(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(t) for t in value if t is not None)
    return ()


# =============================================================================
# Adapter
# =============================================================================

@dataclass(frozen=True)
class PanoramaMeta:
    label: str
    subtitle: str
    tags: Tuple[str, ...]

    @property
    def is_blank(self) -> bool:
        return not self.label and not self.subtitle and not self.tags


class SceneGraphAdapter:
    """Reads panoramas, overlays and their metadata from a host tour."""

    def __init__(self, config: SearchConfig):
        self.config = config

    # ── Playlist ──────────────────────────────────────────────────

    def playlist(self, tour: Any) -> Any:
        return first_result([
            lambda: read_attr(tour, "mainPlayList"),
            lambda: read_get(tour, "mainPlayList"),
        ])

    def playlist_items(self, tour: Any) -> List[Any]:
        """Ordered playlist items; empty when the tour exposes none."""
        items = read_get(self.playlist(tour), "items")
        return list(items) if isinstance(items, (list, tuple)) else []

    def media_of(self, item: Any) -> Any:
        return read_get(item, "media")

    # ── Panorama metadata ─────────────────────────────────────────

    def panorama_metadata(self, media: Any) -> PanoramaMeta:
        data = get_data(media)
        return PanoramaMeta(
            label=_as_text(read_attr(data, "label")),
            subtitle=_as_text(read_attr(data, "subtitle")),
            tags=_as_tags(read_attr(data, "tags")),
        )

    def display_label(self, label: str, subtitle: str, tags: Sequence[str],
                      element_type: str = "Panorama") -> str:
        """
        Label shown for a panorama.

        ``display.only_subtitles`` wins when a subtitle exists; otherwise an
        empty label falls back through the ``use_as_label`` precedence:
        subtitle, joined tags, the type name, then the custom text.
        """
        if self.config.display.only_subtitles and subtitle:
            return subtitle
        if label:
            return label
        fallback = self.config.use_as_label
        if subtitle and fallback.subtitles:
            return subtitle
        if tags and fallback.tags:
            return ", ".join(tags)
        if fallback.element_type:
            return element_type
        return fallback.custom_text

    # ── Overlays ──────────────────────────────────────────────────

    def overlays(self, media: Any, tour: Any = None, item: Any = None) -> List[Any]:
        """Overlays attached to *media*, from the first source that has any."""
        found = first_result([
            lambda: _list_or_none(read_get(media, "overlays")),
            lambda: _list_or_none(read_attr(media, "overlays")),
            lambda: _list_or_none(read_attr(item, "overlays")),
            lambda: _overlays_by_tags(media),
            lambda: self._overlays_by_class_scan(media, tour),
        ])
        return list(found) if found else []

    def _overlays_by_class_scan(self, media: Any, tour: Any) -> Optional[List[Any]]:
        player = read_attr(tour, "player")
        scan = getattr(player, "getByClassName", None) if player is not None else None
        if not callable(scan):
            return None
        candidates = scan(PANORAMA_OVERLAY_CLASS)
        if not isinstance(candidates, (list, tuple)):
            return None
        media_id = read_get(media, "id")
        owned = []
        for overlay in candidates:
            parent = read_get(overlay, "media")
            if parent is not None and read_get(parent, "id") == media_id:
                owned.append(overlay)
        return owned

    def overlay_label(self, overlay: Any) -> str:
        """
        Label for an overlay: ``data.label``, ``.label``, ``.get("label")``,
        else the first 30 characters of its text (with an ellipsis).
        """
        data = get_data(overlay)
        label = first_result([
            lambda: _as_text(read_attr(data, "label")),
            lambda: _as_text(read_attr(overlay, "label")),
            lambda: _as_text(read_get(overlay, "label")),
        ])
        if label:
            return label
        text = self.overlay_text(overlay)
        if text:
            return text[:TEXT_LABEL_LIMIT] + ("..." if len(text) > TEXT_LABEL_LIMIT else "")
        return ""

    def overlay_text(self, overlay: Any) -> str:
        text = read_get(overlay, "text")
        return text if isinstance(text, str) else ""

    def overlay_tags(self, overlay: Any) -> Tuple[str, ...]:
        return _as_tags(read_attr(get_data(overlay), "tags"))

    def overlay_id(self, overlay: Any) -> Optional[str]:
        value = first_result([
            lambda: read_attr(overlay, "id"),
            lambda: read_get(overlay, "id"),
        ])
        return str(value) if value is not None else None


def _list_or_none(value: Any) -> Optional[List[Any]]:
    if isinstance(value, (list, tuple)) and value:
        return list(value)
    return None


def _overlays_by_tags(media: Any) -> Optional[List[Any]]:
    groups = read_get(media, "overlaysByTags")
    if not isinstance(groups, Mapping):
        return None
    flattened: List[Any] = []
    for group in groups.values():
        if isinstance(group, (list, tuple)):
            flattened.extend(group)
    return flattened or None
