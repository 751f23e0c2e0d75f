"""
Tests for the PanoSearch client API (panosearch.client.TourSearch).

Covers the public facade: initialization, config updates, search, history,
selection/triggering, async variants and health.
"""

import logging

import pytest

from conftest import TOUR_ITEM_COUNT

from panosearch import TourSearch, __version__, build_config, health
from panosearch.core.search import QueryStatus
from panosearch.core.storage import ConfigSnapshotStore


# =============================================================================
# Fixtures — initialized client
# =============================================================================

@pytest.fixture
def search(tour, storage, scheduler):
    """TourSearch attached to the standard scene."""
    client = TourSearch(storage=storage, scheduler=scheduler)
    assert client.initialize_search(tour)
    return client


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    """Config sources and defaults."""

    def test_defaults(self):
        client = TourSearch()
        assert client.config == build_config()
        assert not client.initialized
        assert not client.visible

    def test_overrides(self):
        assert TourSearch(overrides={"minSearchChars": 3}).config.min_search_chars == 3

    def test_stored_snapshot_is_used(self, storage):
        ConfigSnapshotStore(storage).save(build_config({"minSearchChars": 5}))
        assert TourSearch(storage=storage).config.min_search_chars == 5

    def test_explicit_config_wins_over_snapshot(self, storage):
        ConfigSnapshotStore(storage).save(build_config({"minSearchChars": 5}))
        client = TourSearch(build_config({"minSearchChars": 2}), storage=storage)
        assert client.config.min_search_chars == 2

    def test_initialize_without_tour(self):
        assert not TourSearch().initialize_search(None)

    def test_search_before_initialize(self):
        assert TourSearch().search("kitchen").status is QueryStatus.NO_RESULTS

    def test_instances_are_independent(self, tour):
        first = TourSearch(overrides={"filter": {"mode": "blacklist", "blacklistedValues": ["Kitchen"]}})
        second = TourSearch()
        first.initialize_search(tour)
        second.initialize_search(tour)
        assert len(first.items) < len(second.items)


# =============================================================================
# Configuration
# =============================================================================

class TestConfiguration:
    """update_config(), get_config() and log levels."""

    def test_update_rebuilds_index(self, search):
        assert len(search.items) == TOUR_ITEM_COUNT
        updated = search.update_config({"filter": {"mode": "blacklist", "blacklistedValues": ["Storage Room"]}})
        assert updated.filter.blacklisted_values == ["Storage Room"]
        assert len(search.items) == TOUR_ITEM_COUNT - 2

    def test_get_config_returns_copy(self, search):
        copy = search.get_config()
        copy.min_search_chars = 99
        assert search.config.min_search_chars == 2

    def test_update_applies_history_cap(self, search):
        search.update_config({"historyMaxItems": 2})
        assert search.search_history.max_items == 2

    def test_update_applies_trigger_settings(self, search):
        search.update_config({"elementTriggering": {"maxRetries": 7}})
        assert search.config.element_triggering.max_retries == 7

    def test_update_before_initialize(self):
        client = TourSearch()
        assert client.update_config({"minSearchChars": 4}).min_search_chars == 4
        assert client.search("abc").status is QueryStatus.TOO_SHORT

    def test_persist_config(self, storage):
        TourSearch(storage=storage, persist_config=True).update_config({"minSearchChars": 4})
        assert TourSearch(storage=storage).config.min_search_chars == 4

    def test_set_log_level(self, search):
        package_logger = logging.getLogger("panosearch")
        previous = package_logger.level
        try:
            assert search.set_log_level(0)
            assert package_logger.level == logging.DEBUG
            assert search.set_log_level(4)
            assert package_logger.level > logging.CRITICAL
            assert not search.set_log_level(5)
            assert not search.set_log_level(True)
            assert not search.set_log_level("debug")
        finally:
            package_logger.setLevel(previous)


# =============================================================================
# Search & history
# =============================================================================

class TestSearch:
    """search(), search_debounced(), organize() and history."""

    def test_search(self, search):
        outcome = search.search("kitchen")
        assert outcome.status is QueryStatus.FUZZY
        assert outcome.matches[0].item.label == "Kitchen"

    def test_history_recorded_only_with_results(self, search):
        search.search("kitchen", record_history=True)
        search.search("xylophone", record_history=True)
        search.search("lobby")
        assert search.search_history.get() == ["kitchen"]

    def test_debounced(self, search, scheduler):
        received = []
        search.search_debounced("kit", received.append)
        search.search_debounced("kitchen", received.append)
        scheduler.advance(150)
        assert len(received) == 1
        assert received[0].term == "kitchen"

    def test_hiding_cancels_pending_search(self, search, scheduler):
        received = []
        assert search.toggle_search() is True
        search.search_debounced("kitchen", received.append)
        assert search.toggle_search(False) is False
        scheduler.advance(1000)
        assert received == []

    def test_organize(self, search):
        groups = search.organize(search.search("kitchen").matches)
        assert set(groups) == {"Panorama", "Webframe"}

    def test_search_fields(self, search):
        assert [m.item.id for m in search.search_fields({"label": "welcome"})] == ["vid-welcome"]


# =============================================================================
# Selection
# =============================================================================

class TestSelection:
    """Navigating to panoramas and clicking overlays."""

    def test_select_panorama(self, search, tour):
        results = []
        match = search.search("kitchen").matches[0]
        assert search.select(match, results.append) is None
        assert tour.selected_index == 1
        assert results == [True]

    def test_select_overlay_navigates_then_triggers(self, search, tour, scheduler):
        results = []
        tour.mainPlayList.set("selectedIndex", 2)
        match = search.search("info-desk").matches[0]
        run = search.select(match, results.append, term="info-desk")
        assert tour.selected_index == 0
        assert results == []
        scheduler.run_until_idle()
        assert results == [True]
        assert run.method == "trigger"
        assert tour.player.getById("hs-info-desk").activations == ["trigger:click"]
        assert search.search_history.get() == ["info-desk"]

    def test_trigger_element_missing(self, search, scheduler):
        results = []
        search.trigger_element("nope", results.append, {"maxRetries": 1})
        scheduler.run_until_idle()
        assert results == [False]

    def test_trigger_before_initialize(self):
        results = []
        assert TourSearch().trigger_element("x", results.append) is None
        assert results == [False]


# =============================================================================
# Async API
# =============================================================================

class TestAsyncApi:
    """Async variants mirror the sync methods."""

    @pytest.mark.asyncio
    async def test_asearch_returns_same_as_search(self, search):
        sync = search.search("kitchen")
        result = await search.asearch("kitchen")
        assert [m.item for m in result.matches] == [m.item for m in sync.matches]

    @pytest.mark.asyncio
    async def test_arebuild(self, search):
        assert await search.arebuild_search_index()


# =============================================================================
# Health
# =============================================================================

class TestHealth:
    """Status dictionaries."""

    def test_client_health(self, search):
        status = search.health()
        assert status["version"] == __version__
        assert status["initialized"] is True
        assert status["items_indexed"] == TOUR_ITEM_COUNT
        assert status["index_ok"] is True

    def test_package_health(self):
        status = health(build_config({"minSearchChars": 3}))
        assert status == {"version": __version__, "min_search_chars": 3, "log_level": "WARNING"}
