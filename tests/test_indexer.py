"""
Tests for panosearch.core.indexer — extraction, filtering and index build.
"""

from conftest import TOUR_ITEM_COUNT

from panosearch.core.config import build_config
from panosearch.core.indexer import (
    LABELED_PANORAMA_BOOST,
    OVERLAY_BOOST,
    PANORAMA_BOOST,
    SearchIndexBuilder,
)
from panosearch.host import JsonNode, JsonPlayer, JsonTour, load_scene


def _by_label(items):
    return {item.label: item for item in items}


# =============================================================================
# Extraction
# =============================================================================

class TestCollect:
    """Records extracted from the standard scene."""

    def test_item_count_and_stats(self, config, tour):
        result = SearchIndexBuilder(config).build(tour)
        assert result.ok
        assert len(result.items) == TOUR_ITEM_COUNT
        assert result.stats == {
            "panoramas_seen": 4,
            "panoramas_indexed": 4,
            "overlays_seen": 4,
            "overlays_indexed": 4,
            "skipped": 0,
            "errors": 0,
        }

    def test_panorama_records(self, config, tour):
        items = _by_label(SearchIndexBuilder(config).build(tour).items)
        lobby = items["Lobby"]
        assert lobby.type == "Panorama"
        assert lobby.index == 0
        assert lobby.subtitle == "Ground floor"
        assert lobby.tags == ("entrance",)
        assert lobby.boost == LABELED_PANORAMA_BOOST

    def test_blank_panorama_uses_type_label(self, config, tour):
        items = _by_label(SearchIndexBuilder(config).build(tour).items)
        blank = items["Panorama"]
        assert blank.index == 3
        assert blank.original_label == ""
        assert blank.boost == PANORAMA_BOOST

    def test_overlay_records(self, config, tour):
        items = _by_label(SearchIndexBuilder(config).build(tour).items)
        desk = items["info-desk"]
        assert desk.type == "Hotspot"
        assert desk.id == "hs-info-desk"
        assert desk.parent_index == 0
        assert desk.parent_label == "Lobby"
        assert desk.boost == OVERLAY_BOOST
        assert items["Welcome video"].type == "Video"
        assert items["Menu page"].type == "Webframe"
        assert items["Menu page"].tags == ("food",)

    def test_text_overlay_label_and_description(self, config, tour):
        items = _by_label(SearchIndexBuilder(config).build(tour).items)
        note = items["Please keep the storage room d..."]
        assert note.type == "Text"
        assert note.description == "Please keep the storage room door closed at all times"
        assert note.parent_label == "Storage Room"

    def test_unlabeled_panorama_with_tags(self, config):
        tour = load_scene({"panoramas": [{"id": "p", "tags": ["lobby"]}]})
        [item] = SearchIndexBuilder(config).build(tour).items
        assert item.label == "lobby"
        assert item.original_label == ""

    def test_unlabeled_overlay_gets_positional_label(self, config):
        tour = load_scene({"panoramas": [{"id": "p", "label": "Hall", "overlays": [
            {"id": "a", "data": {"label": "Sign"}},
            {"id": "b", "class": "ImagePanoramaOverlay"},
        ]}]})
        labels = [i.label for i in SearchIndexBuilder(config).build(tour).items]
        assert labels == ["Hall", "Sign", "Image 0.1"]


# =============================================================================
# Filtering during the build
# =============================================================================

class TestBuildFilters:
    """Filters applied while walking the playlist."""

    def test_blacklisted_panorama_skips_its_overlays(self, tour):
        config = build_config({"filter": {"mode": "blacklist", "blacklistedValues": ["Storage Room"]}})
        result = SearchIndexBuilder(config).build(tour)
        labels = {i.label for i in result.items}
        assert "Storage Room" not in labels
        assert "Please keep the storage room d..." not in labels
        assert len(result.items) == TOUR_ITEM_COUNT - 2
        assert result.stats["skipped"] == 1
        assert result.stats["overlays_seen"] == 3

    def test_element_type_blacklist(self, tour):
        config = build_config({"filter": {"elementTypes": {"mode": "blacklist", "blacklistedTypes": ["Video"]}}})
        result = SearchIndexBuilder(config).build(tour)
        assert all(i.type != "Video" for i in result.items)
        assert result.stats["skipped"] == 1

    def test_skip_empty_labels(self, config):
        config = build_config({"includeContent": {"elements": {"skipEmptyLabels": True}}})
        tour = load_scene({"panoramas": [{"id": "p", "label": "Hall", "overlays": [{"id": "b"}]}]})
        assert [i.label for i in SearchIndexBuilder(config).build(tour).items] == ["Hall"]


# =============================================================================
# Failure handling
# =============================================================================

class TestBuildFailures:
    """Builds never raise."""

    def test_empty_playlist_yields_empty_index(self, config):
        result = SearchIndexBuilder(config).build(load_scene({"panoramas": []}))
        assert not result.ok
        assert result.items == []
        assert result.index.search("anything") == []

    def test_tour_without_playlist(self, config):
        result = SearchIndexBuilder(config).build(object())
        assert not result.ok

    def test_item_without_media_is_counted_as_error(self, config):
        playlist = JsonNode({"items": [JsonNode()]})
        tour = JsonTour(playlist, JsonPlayer({}, []))
        result = SearchIndexBuilder(config).build(tour)
        assert result.ok
        assert result.items == []
        assert result.stats["errors"] == 1

    def test_index_searches_built_items(self, config, tour):
        result = SearchIndexBuilder(config).build(tour)
        assert result.index.search("kitchen")[0].item.label == "Kitchen"

    def test_progress_bar_enabled(self, config, tour):
        result = SearchIndexBuilder(config, show_progress=True).build(tour)
        assert len(result.items) == TOUR_ITEM_COUNT
