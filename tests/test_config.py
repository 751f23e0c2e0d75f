"""
Tests for panosearch.core.config — defaults, deep merge, validation, files.
"""

import json

import pytest

from panosearch.core.config import (
    CONFIG_SCHEMA_VERSION,
    FilterMode,
    SearchConfig,
    build_config,
    deep_merge,
    load_config_file,
    read_config_file,
    safe_set_nested,
    to_snake,
    validate_config,
)
from panosearch.exceptions import ConfigValidationError


# =============================================================================
# Defaults
# =============================================================================

class TestDefaults:
    """Verify the hard-coded defaults."""

    def test_query_defaults(self):
        cfg = SearchConfig()
        assert cfg.min_search_chars == 2
        assert cfg.search_debounce_ms == 150
        assert cfg.history_max_items == 5

    def test_trigger_defaults(self):
        t = SearchConfig().element_triggering
        assert (t.initial_delay, t.max_retries, t.base_retry_interval, t.max_retry_interval) == (
            300, 3, 300, 1000)

    def test_filters_default_to_none(self):
        f = SearchConfig().filter
        assert f.mode == "none"
        assert f.element_types.mode == "none"
        assert f.type_filter.mode == "none"

    def test_defaults_are_valid(self):
        assert validate_config(SearchConfig()).valid

    def test_build_config_without_overrides_equals_defaults(self):
        assert build_config() == SearchConfig()


# =============================================================================
# Merging
# =============================================================================

class TestMerge:
    """Deep merge of caller overrides onto defaults."""

    def test_camel_case_keys_are_normalised(self):
        cfg = build_config({"minSearchChars": 3, "filter": {"allowedValues": ["Lobby"]}})
        assert cfg.min_search_chars == 3
        assert cfg.filter.allowed_values == ["Lobby"]

    def test_nested_merge_keeps_sibling_defaults(self):
        cfg = build_config({"elementTriggering": {"maxRetries": 5}})
        assert cfg.element_triggering.max_retries == 5
        assert cfg.element_triggering.initial_delay == 300

    def test_trigger_numbers_are_coerced(self):
        cfg = build_config({"elementTriggering": {"maxRetries": "4", "initialDelay": None}})
        assert cfg.element_triggering.max_retries == 4
        assert cfg.element_triggering.initial_delay == 300

    def test_lists_replace_rather_than_concatenate(self):
        base = build_config({"filter": {"allowedValues": ["A", "B"]}})
        merged = base.merged({"filter": {"allowedValues": ["C"]}})
        assert merged.filter.allowed_values == ["C"]

    def test_none_override_resets_list_field(self):
        base = build_config({"filter": {"allowedValues": ["A"]}})
        assert base.merged({"filter": {"allowedValues": None}}).filter.allowed_values == []

    def test_merged_returns_new_snapshot(self):
        base = build_config()
        merged = base.merged({"minSearchChars": 4})
        assert merged is not base
        assert base.min_search_chars == 2
        assert merged.min_search_chars == 4

    def test_display_label_keys_are_not_case_converted(self):
        cfg = build_config({"displayLabels": {"ProjectedImage": "Decal"}})
        assert cfg.display_labels["ProjectedImage"] == "Decal"
        assert cfg.display_labels["Panorama"] == "Panorama"

    def test_unknown_include_flag_lands_in_extra(self):
        cfg = build_config({"includeContent": {"elements": {"includeAudios": False}}})
        assert cfg.include_content.elements.extra == {"include_audios": False}
        assert cfg.to_dict()["include_content"]["elements"]["include_audios"] is False

    def test_reserved_keys_are_ignored(self):
        data = deep_merge({}, {"__proto__": {"polluted": True}, "constructor": 1, "ok": 1})
        assert data == {"ok": 1}

    def test_unknown_mode_parses_as_none(self):
        cfg = build_config({"filter": {"mode": "sideways"}})
        assert cfg.filter.mode == "none"
        assert FilterMode.parse("WHITELIST") is FilterMode.WHITELIST

    def test_to_snake(self):
        assert to_snake("allowedMediaIndexes") == "allowed_media_indexes"
        assert to_snake("already_snake") == "already_snake"

    def test_to_dict_round_trip(self):
        cfg = build_config({"filter": {"mode": "blacklist", "blacklistedValues": ["x"]}})
        assert SearchConfig.from_dict(cfg.to_dict()) == cfg


class TestSafeSetNested:
    """Dotted-path setter."""

    def test_creates_intermediate_dicts(self):
        data = {}
        assert safe_set_nested(data, "a.b.c", 1)
        assert data == {"a": {"b": {"c": 1}}}

    def test_rejects_reserved_segment(self):
        data = {}
        assert not safe_set_nested(data, "a.__proto__.b", 1)
        assert data == {}

    def test_refuses_to_traverse_scalar(self):
        data = {"a": 5}
        assert not safe_set_nested(data, "a.b", 1)
        assert data == {"a": 5}


class TestPositionConflicts:
    """Search-bar position normalisation."""

    def test_right_wins_over_left(self):
        pos = build_config({"searchBar": {"position": {"left": 10, "right": 20}}}).search_bar.position
        assert pos.left is None
        assert pos.right == 20

    def test_top_wins_over_bottom(self):
        pos = build_config({"searchBar": {"position": {"top": 5, "bottom": 5}}}).search_bar.position
        assert pos.bottom is None
        assert pos.top == 5

    def test_left_kept_when_right_cleared(self):
        pos = build_config({"searchBar": {"position": {"left": "50%", "right": None}}}).search_bar.position
        assert pos.left == "50%"


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Advisory validation reports."""

    def _data(self, **overrides):
        return deep_merge(SearchConfig().to_dict(), overrides)

    def test_min_search_chars_must_be_positive(self):
        report = validate_config(self._data(min_search_chars=0))
        assert not report.valid
        assert "min_search_chars must be a positive number" in report.errors

    def test_illegal_mode_reported(self):
        report = validate_config(self._data(filter={"element_types": {"mode": "sideways"}}))
        assert any("filter.element_types.mode" in e for e in report.errors)

    def test_font_size_range(self):
        report = validate_config(self._data(theme={"typography": {"font_size": 40}}))
        assert any("font_size" in e for e in report.errors)

    def test_negative_trigger_timing(self):
        report = validate_config(self._data(element_triggering={"initial_delay": -1}))
        assert "element_triggering.initial_delay must be a non-negative integer" in report.errors

    def test_collects_every_error(self):
        report = validate_config(self._data(min_search_chars=0, theme={"typography": {"letter_spacing": 20}}))
        assert len(report.errors) == 2

    def test_raise_if_invalid(self):
        report = validate_config(self._data(min_search_chars=0))
        with pytest.raises(ConfigValidationError) as exc_info:
            report.raise_if_invalid()
        assert isinstance(exc_info.value, ValueError)
        assert exc_info.value.errors == report.errors

    def test_invalid_overrides_still_build(self):
        cfg = build_config({"minSearchChars": 0})
        assert cfg.min_search_chars == 0


# =============================================================================
# Environment & files
# =============================================================================

class TestEnvironmentAndFiles:
    """from_env() and settings exports on disk."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PANOSEARCH_MIN_SEARCH_CHARS", "4")
        monkeypatch.setenv("PANOSEARCH_LOG_LEVEL", "debug")
        cfg = SearchConfig.from_env()
        assert cfg.min_search_chars == 4
        assert cfg.log_level == "DEBUG"

    def test_read_bare_settings(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"minSearchChars": 3}), encoding="utf-8")
        assert read_config_file(path) == {"minSearchChars": 3}

    def test_read_envelope(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"version": CONFIG_SCHEMA_VERSION,
                                    "settings": {"minSearchChars": 3}}), encoding="utf-8")
        assert load_config_file(path).min_search_chars == 3

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            read_config_file(path)

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            read_config_file(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigValidationError):
            read_config_file(tmp_path / "absent.json")
