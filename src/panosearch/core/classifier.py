"""
Overlay type classification.

Infers a semantic type for a scene overlay from, in order of specificity:
the player class name, the generic hotspot's data flags, the class read
through ``.get("class")``, tell-tale properties, and label keywords.
"""

import logging
from typing import Any, Optional

from panosearch.core.scene import get_data, read_attr, read_get

logger = logging.getLogger(__name__)

HOTSPOT = "Hotspot"
POLYGON = "Polygon"
VIDEO = "Video"
WEBFRAME = "Webframe"
IMAGE = "Image"
TEXT = "Text"
PROJECTED_IMAGE = "ProjectedImage"
ELEMENT = "Element"

ELEMENT_TYPES = (HOTSPOT, POLYGON, VIDEO, WEBFRAME, IMAGE, TEXT, PROJECTED_IMAGE, ELEMENT)

CLASS_NAME_MAP = {
    "FramePanoramaOverlay": WEBFRAME,
    "QuadVideoPanoramaOverlay": VIDEO,
    "ImagePanoramaOverlay": IMAGE,
    "TextPanoramaOverlay": TEXT,
}

GENERIC_HOTSPOT_CLASS = "HotspotPanoramaOverlay"

# (properties, type); "data.x" looks inside the overlay's data.
PROPERTY_CHECKS = (
    (("url", "data.url"), WEBFRAME),
    (("video", "data.video"), VIDEO),
    (("vertices", "polygon", "data.vertices", "data.polygon"), POLYGON),
)

LABEL_KEYWORDS = (
    ("web", WEBFRAME),
    ("video", VIDEO),
    ("image", IMAGE),
    ("text", TEXT),
    ("polygon", POLYGON),
    ("goto", HOTSPOT),
    ("info", HOTSPOT),
)

HOTSPOT_LABEL_MARKERS = ("info-", "info_")


class ElementClassifier:
    """Maps host overlays to one of :data:`ELEMENT_TYPES`."""

    def classify(self, overlay: Any, label: str = "") -> str:
        """
        Return the overlay's type.  Never raises.

        Labels containing ``info-`` or ``info_`` are always ``Hotspot``,
        whatever the other signals say.
        """
        try:
            element_type = self._infer(overlay, label or "")
        except Exception as e:
            logger.debug(f"Classification failed for overlay {overlay!r}: {e}")
            element_type = ELEMENT
        if label and any(marker in label for marker in HOTSPOT_LABEL_MARKERS):
            return HOTSPOT
        return element_type

    def _infer(self, overlay: Any, label: str) -> str:
        if overlay is None:
            return ELEMENT

        class_name = read_attr(overlay, "class")
        if class_name in CLASS_NAME_MAP:
            return CLASS_NAME_MAP[class_name]
        if class_name == GENERIC_HOTSPOT_CLASS:
            return self._hotspot_type(read_attr(overlay, "data"), overlay, label)

        getter_class = read_get(overlay, "class")
        if getter_class in CLASS_NAME_MAP:
            return CLASS_NAME_MAP[getter_class]
        if getter_class == GENERIC_HOTSPOT_CLASS:
            return self._hotspot_type(read_get(overlay, "data"), overlay, label)

        by_property = self._type_from_properties(overlay)
        if by_property:
            return by_property

        return self._type_from_label(self._heuristic_label(overlay, label)) or ELEMENT

    def _hotspot_type(self, data: Any, overlay: Any, label: str) -> str:
        if data:
            if read_attr(data, "hasPanoramaAction"):
                return HOTSPOT
            if read_attr(data, "hasText"):
                return TEXT
            if read_attr(data, "isPolygon"):
                return POLYGON
        text = self._heuristic_label(overlay, label)
        if "polygon" in text:
            return POLYGON
        if text == "image":
            return IMAGE
        return HOTSPOT

    @staticmethod
    def _type_from_properties(overlay: Any) -> Optional[str]:
        data = get_data(overlay)
        for props, element_type in PROPERTY_CHECKS:
            for prop in props:
                if prop.startswith("data."):
                    value = read_attr(data, prop[5:])
                else:
                    value = read_attr(overlay, prop)
                if value:
                    return element_type
        return None

    @staticmethod
    def _type_from_label(text: str) -> Optional[str]:
        if not text:
            return None
        for keyword, element_type in LABEL_KEYWORDS:
            if keyword in text:
                return element_type
        return None

    @staticmethod
    def _heuristic_label(overlay: Any, label: str) -> str:
        own = read_attr(overlay, "label")
        text = own if isinstance(own, str) and own else label
        return (text or "").lower()
