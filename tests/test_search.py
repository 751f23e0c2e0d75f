"""
Tests for panosearch.core.search — query engine, debouncing, grouping, formatting.
"""

import json

import pytest

from panosearch.core.config import build_config
from panosearch.core.engine import ContentItem, SearchMatch
from panosearch.core.indexer import SearchIndexBuilder
from panosearch.core.search import (
    Debouncer,
    QueryEngine,
    QueryOutcome,
    QueryStatus,
    ResultFormatter,
    ResultOrganizer,
    preprocess_term,
)


@pytest.fixture
def engine(config, tour, scheduler):
    result = SearchIndexBuilder(config).build(tour)
    return QueryEngine(config, result.index, scheduler)


def _match(element_type, label, parent_label=None, score=0.1, ref=0):
    item = ContentItem(element_type, label, parent_label=parent_label)
    return SearchMatch(item=item, score=score, ref_index=ref)


# =============================================================================
# Term handling
# =============================================================================

class TestPreprocess:
    """Literal-include escaping."""

    @pytest.mark.parametrize("term, expected", [
        ("lobby", "lobby"),
        ("room 2", "'room 2"),
        ("east-wing", "'east-wing"),
        ("info_desk", "'info_desk"),
        ("", ""),
    ])
    def test_preprocess(self, term, expected):
        assert preprocess_term(term) == expected


class TestQueryEngine:
    """Status classification and execution."""

    def test_empty(self, engine):
        assert engine.execute("").status is QueryStatus.EMPTY
        assert engine.execute("   ").status is QueryStatus.EMPTY
        assert engine.execute(None).status is QueryStatus.EMPTY

    def test_too_short(self, engine):
        outcome = engine.execute("k")
        assert outcome.status is QueryStatus.TOO_SHORT
        assert outcome.message == "Please type at least 2 characters to search"
        assert outcome.matches == []

    def test_wildcard_returns_everything(self, engine):
        outcome = engine.execute("*")
        assert outcome.status is QueryStatus.ALL
        assert outcome.count == 8
        assert all(m.score == 0.0 for m in outcome.matches)
        assert [m.ref_index for m in outcome.matches] == list(range(8))

    def test_exact(self, engine):
        outcome = engine.execute("=kitchen")
        assert outcome.status is QueryStatus.EXACT
        assert [m.item.label for m in outcome.matches] == ["Kitchen"]

    def test_fuzzy(self, engine):
        outcome = engine.execute("kitchen")
        assert outcome.status is QueryStatus.FUZZY
        assert outcome.matches[0].item.label == "Kitchen"
        assert outcome.message == 'Found 2 search results for "kitchen"'

    def test_overlay_found_by_label(self, engine):
        top = engine.execute("welcome").matches[0]
        assert top.item.label == "Welcome video"
        assert top.item.type == "Video"

    def test_literal_terms_match_substrings(self, engine):
        outcome = engine.execute("info-desk")
        assert outcome.status is QueryStatus.FUZZY
        assert [m.item.id for m in outcome.matches] == ["hs-info-desk"]

    def test_no_results(self, engine):
        outcome = engine.execute("xylophone")
        assert outcome.status is QueryStatus.NO_RESULTS
        assert outcome.message == "No results found"

    def test_term_is_trimmed(self, engine):
        assert engine.execute("  kitchen  ").term == "kitchen"

    def test_without_index(self, config):
        assert QueryEngine(config).execute("kitchen").status is QueryStatus.NO_RESULTS

    def test_min_chars_from_config(self, tour):
        config = build_config({"minSearchChars": 4})
        engine = QueryEngine(config, SearchIndexBuilder(config).build(tour).index)
        assert engine.execute("kit").status is QueryStatus.TOO_SHORT

    def test_search_fields(self, engine):
        matches = engine.search_fields({"label": "menu", "parentLabel": "kitchen"})
        assert [m.item.id for m in matches] == ["web-menu"]
        assert engine.search_fields({}) == []


# =============================================================================
# Debouncing
# =============================================================================

class TestDebouncer:
    """Only the last call in a burst runs."""

    def test_collapses_bursts(self, scheduler):
        calls = []
        debouncer = Debouncer(scheduler, 150)
        debouncer.schedule(calls.append, "a")
        scheduler.advance(100)
        debouncer.schedule(calls.append, "b")
        scheduler.advance(100)
        assert calls == []
        scheduler.advance(50)
        assert calls == ["b"]
        assert not debouncer.pending

    def test_cancel_pending(self, scheduler):
        calls = []
        debouncer = Debouncer(scheduler, 150)
        debouncer.schedule(calls.append, "a")
        debouncer.cancel_pending()
        scheduler.advance(1000)
        assert calls == []

    def test_flush(self, scheduler):
        calls = []
        debouncer = Debouncer(scheduler, 150)
        assert not debouncer.flush()
        debouncer.schedule(calls.append, "a")
        assert debouncer.flush()
        scheduler.advance(1000)
        assert calls == ["a"]

    def test_engine_delivers_only_latest(self, engine, scheduler):
        received = []
        engine.search_debounced("ki", received.append)
        engine.search_debounced("kit", received.append)
        token = engine.search_debounced("kitchen", received.append)
        scheduler.advance(150)
        assert [o.term for o in received] == ["kitchen"]
        assert token == 3

    def test_stale_dispatch_is_discarded(self, engine):
        received = []
        engine.search_debounced("kitchen", received.append)
        engine._sequence += 1
        engine.debouncer.flush()
        assert received == []

    def test_without_scheduler_runs_immediately(self, config, tour):
        engine = QueryEngine(config, SearchIndexBuilder(config).build(tour).index)
        received = []
        engine.search_debounced("kitchen", received.append)
        assert received[0].status is QueryStatus.FUZZY


# =============================================================================
# Organizing
# =============================================================================

class TestResultOrganizer:
    """Grouping, ordering and the display type filter."""

    def test_groups_in_first_seen_order(self, config):
        matches = [_match("Video", "Intro"), _match("Panorama", "Lobby"), _match("Video", "Alpha")]
        groups = ResultOrganizer(config).group(matches)
        assert list(groups) == ["Video", "Panorama"]

    def test_sorts_by_label_then_parent(self, config):
        matches = [
            _match("Hotspot", "door", parent_label="Lobby"),
            _match("Hotspot", "Door", parent_label="Attic"),
            _match("Hotspot", "Bell"),
        ]
        members = ResultOrganizer(config).group(matches)["Hotspot"]
        assert [(m.item.label, m.item.parent_label) for m in members] == [
            ("Bell", None), ("Door", "Attic"), ("door", "Lobby"),
        ]

    def test_accented_labels_sort_with_their_base_letter(self, config):
        matches = [_match("Panorama", "Zoo"), _match("Panorama", "\u00c9clair"), _match("Panorama", "Entry")]
        members = ResultOrganizer(config).group(matches)["Panorama"]
        assert [m.item.label for m in members] == ["\u00c9clair", "Entry", "Zoo"]

    def test_type_filter_whitelist(self):
        config = build_config({"filter": {"typeFilter": {"mode": "whitelist", "allowedTypes": ["Panorama"]}}})
        groups = ResultOrganizer(config).organize([_match("Video", "Intro"), _match("Panorama", "Lobby")])
        assert list(groups) == ["Panorama"]

    def test_type_filter_blacklist(self):
        config = build_config({"filter": {"typeFilter": {"mode": "blacklist", "blacklistedTypes": ["Video"]}}})
        groups = ResultOrganizer(config).organize([_match("Video", "Intro"), _match("Panorama", "Lobby")])
        assert list(groups) == ["Panorama"]

    def test_type_filter_is_independent_of_element_types(self):
        config = build_config({"filter": {"elementTypes": {"mode": "blacklist", "blacklistedTypes": ["Video"]}}})
        groups = ResultOrganizer(config).organize([_match("Video", "Intro")])
        assert list(groups) == ["Video"]

    def test_group_title(self, config):
        organizer = ResultOrganizer(config)
        assert organizer.group_title("ProjectedImage") == "Projected Image"
        assert organizer.group_title("Audio") == "Audio"


# =============================================================================
# Formatting
# =============================================================================

class TestResultFormatter:
    """Console, JSON and compact output."""

    def test_json(self, engine, config):
        payload = json.loads(ResultFormatter.format_json(engine.execute("kitchen"), config))
        assert payload["status"] == "fuzzy"
        assert payload["term"] == "kitchen"
        assert payload["groups"]["Panorama"][0]["item"]["label"] == "Kitchen"
        assert payload["groups"]["Webframe"][0]["item"]["id"] == "web-menu"

    def test_console(self, engine, config):
        text = ResultFormatter.format_console(engine.execute("kitchen"), config)
        assert "Kitchen" in text
        assert "Panorama (1)" in text
        assert "in: Kitchen" in text

    def test_console_messages(self, config):
        text = ResultFormatter.format_console(QueryOutcome(QueryStatus.NO_RESULTS, "x"), config)
        assert "No results found" in text

    def test_compact(self, engine, config):
        lines = ResultFormatter.format_compact(engine.execute("kitchen"), config).splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("Panorama")
        assert "#1" in lines[0]
        assert "web-menu@1" in lines[1]
