"""
JSON-backed tour host.

A small stand-in for the tour player, built from a JSON scene export.  It
exposes the same duck-typed surface the search reads from a live player
(``.get(key)`` accessors, plain attributes, ``getById`` and friends) and
records every activation, which makes it usable from the CLI, the MCP
server and tests.

Scene format::

    {
      "panoramas": [
        {
          "id": "pano-lobby",
          "label": "Lobby", "subtitle": "Ground floor", "tags": ["entrance"],
          "overlays": [
            {"id": "hs-1", "class": "HotspotPanoramaOverlay",
             "data": {"label": "info-desk", "hasPanoramaAction": true}}
          ]
        }
      ]
    }

Overlays may instead be listed under ``media_overlays`` (attribute only),
``item_overlays`` (on the playlist item) or ``overlaysByTags`` (a mapping
of tag to overlay list) or ``scan_overlays`` (only reachable through the
player's class scan).  ``appears_after: n`` makes an overlay invisible
to ``getById`` for its first *n* lookups; ``hide: ["class", ...]`` keeps a
field off the attributes so it is only reachable through ``.get``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from panosearch.exceptions import SceneLoadError

logger = logging.getLogger(__name__)

_ATTRIBUTE_FIELDS = ("id", "label", "data", "class", "url", "video", "vertices", "polygon")


class JsonNode:
    """A scene object with ``.get``/``.set`` properties and plain attributes."""

    def __init__(self, properties: Optional[Dict[str, Any]] = None,
                 attributes: Optional[Dict[str, Any]] = None,
                 activatable: bool = True):
        self._properties: Dict[str, Any] = dict(properties or {})
        self.activatable = activatable
        self.activations: List[str] = []
        for name, value in (attributes or {}).items():
            setattr(self, name, value)

    def get(self, key: str) -> Any:
        return self._properties.get(key)

    def set(self, key: str, value: Any) -> None:
        self._properties[key] = value

    def trigger(self, event: str) -> None:
        self._activate(f"trigger:{event}")

    def click(self) -> None:
        self._activate("click")

    def _activate(self, how: str) -> None:
        if not self.activatable:
            raise RuntimeError(f"{self!r} cannot be activated")
        self.activations.append(how)
        logger.debug(f"Activated {self!r} via {how}")

    def __repr__(self) -> str:
        ident = self._properties.get("id") or getattr(self, "id", None)
        return f"JsonNode({ident!r})"


class JsonPlayer:
    """Element registry answering the player lookup calls."""

    def __init__(self, nodes: Mapping[str, JsonNode], overlays: Iterable[JsonNode],
                 delays: Optional[Mapping[str, int]] = None):
        self._nodes = dict(nodes)
        self._overlays = list(overlays)
        self._delays = dict(delays or {})
        self.lookups: Dict[str, int] = {}

    def _visible(self, element_id: str) -> bool:
        seen = self.lookups.get(element_id, 0)
        self.lookups[element_id] = seen + 1
        return seen >= self._delays.get(element_id, 0)

    def getById(self, element_id: str) -> Optional[JsonNode]:  # noqa: N802
        node = self._nodes.get(element_id)
        if node is None or not self._visible(element_id):
            return None
        return node

    def get(self, element_id: str) -> Optional[JsonNode]:
        return None

    def getAllIDs(self) -> List[str]:  # noqa: N802
        return list(self._nodes)

    def getByClassName(self, class_name: str) -> List[JsonNode]:  # noqa: N802
        if class_name == "PanoramaOverlay":
            return list(self._overlays)
        return [o for o in self._overlays if o.get("class") == class_name]


class JsonTour:
    """The tour object: ``mainPlayList`` plus ``player``."""

    def __init__(self, playlist: JsonNode, player: JsonPlayer, source: Optional[str] = None):
        self.mainPlayList = playlist
        self.player = player
        self.source = source

    def get(self, key: str) -> Any:
        if key == "mainPlayList":
            return self.mainPlayList
        return None

    @property
    def selected_index(self) -> Optional[int]:
        return self.mainPlayList.get("selectedIndex")


# =============================================================================
# Loading
# =============================================================================

def _make_overlay(raw: Mapping[str, Any], media: JsonNode) -> JsonNode:
    if not isinstance(raw, Mapping):
        raise SceneLoadError(f"Overlay must be an object, got {type(raw).__name__}")
    hidden = set(raw.get("hide") or ())
    properties = {k: v for k, v in raw.items() if k not in ("hide", "appears_after", "activatable")}
    properties["media"] = media
    attributes = {k: raw[k] for k in _ATTRIBUTE_FIELDS if k in raw and k not in hidden}
    return JsonNode(properties, attributes, activatable=raw.get("activatable", True))


def _register(raw_overlays: Any, media: JsonNode, nodes: Dict[str, JsonNode],
              delays: Dict[str, int], all_overlays: List[JsonNode]) -> List[JsonNode]:
    built = []
    for raw in raw_overlays or ():
        node = _make_overlay(raw, media)
        element_id = node.get("id")
        if element_id:
            nodes[str(element_id)] = node
            if raw.get("appears_after"):
                delays[str(element_id)] = int(raw["appears_after"])
        built.append(node)
    all_overlays.extend(built)
    return built


def build_tour(scene: Mapping[str, Any], source: Optional[str] = None) -> JsonTour:
    """Build a :class:`JsonTour` from an already-parsed scene mapping."""
    panoramas = scene.get("panoramas") if isinstance(scene, Mapping) else None
    if not isinstance(panoramas, list):
        raise SceneLoadError("Scene must contain a 'panoramas' list")

    items: List[JsonNode] = []
    nodes: Dict[str, JsonNode] = {}
    all_overlays: List[JsonNode] = []
    delays: Dict[str, int] = {}

    for position, pano in enumerate(panoramas):
        if not isinstance(pano, Mapping):
            raise SceneLoadError(f"Panorama #{position} must be an object")
        media_id = pano.get("id") or f"panorama_{position}"
        data = dict(pano.get("data") or {})
        for name in ("label", "subtitle", "tags"):
            if name in pano:
                data.setdefault(name, pano[name])
        media = JsonNode({"id": media_id, "class": "Panorama", "data": data},
                         {"id": media_id, "data": data})
        nodes[media_id] = media

        item_attrs: Dict[str, Any] = {}
        if pano.get("overlays"):
            media.set("overlays", _register(pano.get("overlays"), media, nodes, delays, all_overlays))
        if pano.get("media_overlays"):
            media.overlays = _register(pano.get("media_overlays"), media, nodes, delays, all_overlays)
        if pano.get("item_overlays"):
            item_attrs["overlays"] = _register(pano.get("item_overlays"), media, nodes, delays, all_overlays)
        by_tags = pano.get("overlaysByTags")
        if isinstance(by_tags, Mapping):
            grouped = {}
            for tag, group in by_tags.items():
                grouped[tag] = _register(group, media, nodes, delays, all_overlays)
            media.set("overlaysByTags", grouped)
        if pano.get("scan_overlays"):
            _register(pano.get("scan_overlays"), media, nodes, delays, all_overlays)

        items.append(JsonNode({"media": media}, item_attrs))

    playlist = JsonNode({"items": items, "selectedIndex": 0})
    return JsonTour(playlist, JsonPlayer(nodes, all_overlays, delays), source=source)


def load_scene(source: Union[str, Path, Mapping[str, Any]]) -> JsonTour:
    """
    Load a scene from a JSON file path or mapping.

    Raises:
        SceneLoadError: unreadable file, invalid JSON or wrong structure.
    """
    if isinstance(source, Mapping):
        return build_tour(source)
    path = Path(source)
    try:
        scene = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SceneLoadError(f"Cannot read scene file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SceneLoadError(f"Scene file {path} is not valid JSON: {e}") from e
    logger.debug(f"Loaded scene from {path}")
    return build_tour(scene, source=str(path))
