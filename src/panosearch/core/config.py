"""
PanoSearch Configuration Module

Instance-based configuration for the tour search pipeline.  A
:class:`SearchConfig` is a tree of small dataclasses built by deep-merging
caller overrides onto hard-coded defaults.  It is treated as an immutable
snapshot: updates produce a new instance (:meth:`SearchConfig.merged`) which
the facade swaps in wholesale, so an index rebuild never reads a config that
is half-way through an update.

Overrides may come straight from the settings dashboard, which speaks
camelCase (``minSearchChars``, ``allowedValues``); keys are normalised to
snake_case while merging.

Validation is advisory: :func:`validate_config` reports problems and
:func:`build_config` logs them, but the config is used as-is.
"""

import copy
import enum
import json
import logging
import os
import re
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from panosearch.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = "2.0.1"

# Keys that must never be written through a merge or a dotted-path setter.
FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})


class FilterMode(str, enum.Enum):
    """How an allow/deny list is interpreted."""

    NONE = "none"
    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"

    @classmethod
    def parse(cls, value: Any) -> "FilterMode":
        """Return the matching mode; anything unknown behaves as ``NONE``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


LEGAL_MODES = frozenset(m.value for m in FilterMode)


# =============================================================================
# Dataclass tree
# =============================================================================

@dataclass
class TypeFilter:
    mode: str = "none"
    allowed_types: List[str] = field(default_factory=list)
    blacklisted_types: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> List[str]:
        return self.allowed_types

    @property
    def blacklisted(self) -> List[str]:
        return self.blacklisted_types


@dataclass
class LabelFilter:
    mode: str = "none"
    allowed_values: List[str] = field(default_factory=list)
    blacklisted_values: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> List[str]:
        return self.allowed_values

    @property
    def blacklisted(self) -> List[str]:
        return self.blacklisted_values


@dataclass
class TagFilter:
    mode: str = "none"
    allowed_tags: List[str] = field(default_factory=list)
    blacklisted_tags: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> List[str]:
        return self.allowed_tags

    @property
    def blacklisted(self) -> List[str]:
        return self.blacklisted_tags


@dataclass
class FilterConfig:
    """Content-level filters plus the presentation-level ``type_filter``."""

    mode: str = "none"
    allowed_values: List[str] = field(default_factory=list)
    blacklisted_values: List[str] = field(default_factory=list)
    allowed_media_indexes: List[int] = field(default_factory=list)
    blacklisted_media_indexes: List[int] = field(default_factory=list)
    element_types: TypeFilter = field(default_factory=TypeFilter)
    element_labels: LabelFilter = field(default_factory=LabelFilter)
    tag_filtering: TagFilter = field(default_factory=TagFilter)
    type_filter: TypeFilter = field(default_factory=TypeFilter)


@dataclass
class ElementToggles:
    """Per-type include flags.  Unknown ``include_<type>s`` flags land in *extra*."""

    include_hotspots: bool = True
    include_polygons: bool = True
    include_videos: bool = True
    include_webframes: bool = True
    include_images: bool = True
    include_text: bool = True
    include_projected_images: bool = True
    include_elements: bool = True
    skip_empty_labels: bool = False
    min_label_length: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ContentConfig:
    unlabeled_with_subtitles: bool = True
    unlabeled_with_tags: bool = True
    completely_blank: bool = True
    elements: ElementToggles = field(default_factory=ElementToggles)


@dataclass
class LabelFallback:
    """Precedence used to synthesise a label: subtitle > tags > type > text."""

    subtitles: bool = True
    tags: bool = True
    element_type: bool = True
    parent_with_type: bool = False
    custom_text: str = "[Unnamed Item]"


@dataclass
class TriggerSettings:
    """Element activation timing, in milliseconds (``max_retries`` is a count)."""

    initial_delay: int = 300
    max_retries: int = 3
    retry_interval: int = 300
    base_retry_interval: int = 300
    max_retry_interval: int = 1000

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (int, float)):
                continue
            try:
                setattr(self, f.name, int(value))
            except (TypeError, ValueError):
                logger.warning(f"element_triggering.{f.name}={value!r} is not a number, using {f.default}")
                setattr(self, f.name, f.default)


@dataclass
class DisplayOptions:
    show_group_headers: bool = True
    show_group_count: bool = True
    show_icons_in_results: bool = True
    only_subtitles: bool = False
    show_subtitles_in_results: bool = True
    show_parent_label: bool = True
    show_parent_info: bool = True
    show_parent_tags: bool = True
    show_parent_type: bool = True


@dataclass
class BarPosition:
    top: Union[int, float, str, None] = 70
    right: Union[int, float, str, None] = 70
    left: Union[int, float, str, None] = None
    bottom: Union[int, float, str, None] = None


@dataclass
class SearchBarOptions:
    placeholder: str = "Search..."
    position: BarPosition = field(default_factory=BarPosition)


@dataclass
class Typography:
    font_size: Union[int, float] = 16
    letter_spacing: Union[int, float] = 0


@dataclass
class ThemeOptions:
    typography: Typography = field(default_factory=Typography)


def _default_display_labels() -> Dict[str, str]:
    return {
        "Panorama": "Panorama",
        "Hotspot": "Hotspot",
        "Polygon": "Polygon",
        "Video": "Video",
        "Webframe": "Webframe",
        "Image": "Image",
        "Text": "Text",
        "ProjectedImage": "Projected Image",
        "Element": "Element",
    }


@dataclass
class SearchConfig:
    """
    Configuration snapshot for one :class:`~panosearch.TourSearch` instance.

    Build from overrides (deep-merged onto defaults)::

        config = build_config({"filter": {"mode": "blacklist"}})

    Or from environment variables::

        config = SearchConfig.from_env()
    """

    # ── Filtering & content ───────────────────────────────────────
    filter: FilterConfig = field(default_factory=FilterConfig)
    include_content: ContentConfig = field(default_factory=ContentConfig)
    use_as_label: LabelFallback = field(default_factory=LabelFallback)

    # ── Triggering ────────────────────────────────────────────────
    element_triggering: TriggerSettings = field(default_factory=TriggerSettings)

    # ── Display ───────────────────────────────────────────────────
    display: DisplayOptions = field(default_factory=DisplayOptions)
    display_labels: Dict[str, str] = field(default_factory=_default_display_labels)
    show_tags_in_results: bool = True
    search_bar: SearchBarOptions = field(default_factory=SearchBarOptions)
    theme: ThemeOptions = field(default_factory=ThemeOptions)

    # ── Query engine ──────────────────────────────────────────────
    min_search_chars: int = 2
    search_debounce_ms: int = 150
    fuzzy_threshold: float = 0.3
    fuzzy_distance: int = 40
    min_match_char_length: int = 2

    # ── History ───────────────────────────────────────────────────
    history_max_items: int = 5

    # ── Logging ───────────────────────────────────────────────────
    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # ── Factory ───────────────────────────────────────────────────

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Build a config snapshot from current environment variables."""
        overrides: Dict[str, Any] = {
            "log_level": os.getenv("PANOSEARCH_LOG_LEVEL", "WARNING").upper(),
        }
        if os.getenv("PANOSEARCH_MIN_SEARCH_CHARS"):
            overrides["min_search_chars"] = int(os.environ["PANOSEARCH_MIN_SEARCH_CHARS"])
        if os.getenv("PANOSEARCH_DEBOUNCE_MS"):
            overrides["search_debounce_ms"] = int(os.environ["PANOSEARCH_DEBOUNCE_MS"])
        return build_config(overrides)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchConfig":
        """Construct from a (snake_case) mapping; unknown keys are ignored."""
        return _from_mapping(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dict, suitable for JSON persistence."""
        return _to_mapping(self)

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "SearchConfig":
        """Return a new snapshot with *overrides* deep-merged onto this one."""
        if not overrides or not isinstance(overrides, Mapping):
            return copy.deepcopy(self)
        data = deep_merge(self.to_dict(), overrides)
        _fix_position_conflicts(data)
        report = validate_config(data)
        if not report.valid:
            logger.warning(f"Config validation failed: {report.errors}")
        return SearchConfig.from_dict(data)

    def copy(self) -> "SearchConfig":
        return copy.deepcopy(self)


# =============================================================================
# Building & merging
# =============================================================================

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake(key: str) -> str:
    """``allowedMediaIndexes`` -> ``allowed_media_indexes``; snake keys pass through."""
    return _CAMEL_RE.sub(r"_\1", key).lower()


def _is_forbidden(key: Any) -> bool:
    key = str(key)
    return key in FORBIDDEN_KEYS or (key.startswith("__") and key.endswith("__"))


def deep_merge(target: Dict[str, Any], source: Mapping[str, Any],
               normalize_keys: bool = True) -> Dict[str, Any]:
    """
    Merge *source* into *target* field by field and return *target*.

    Mappings are merged recursively; lists are copied; everything else
    replaces the target value.  A mapping only replaces a target value
    wholesale when the target value is not itself a mapping.

    ``display_labels`` keys are type names and are never case-converted.
    """
    if not isinstance(source, Mapping):
        return target
    for raw_key, value in source.items():
        if _is_forbidden(raw_key):
            logger.warning(f"Refusing to merge reserved config key {raw_key!r}")
            continue
        key = to_snake(str(raw_key)) if normalize_keys else str(raw_key)
        if isinstance(value, Mapping):
            current = target.get(key)
            if not isinstance(current, dict):
                current = {}
                target[key] = current
            deep_merge(current, value, normalize_keys=normalize_keys and key != "display_labels")
        elif isinstance(value, (list, tuple, set, frozenset)):
            target[key] = list(value)
        else:
            target[key] = value
    return target


def safe_set_nested(mapping: Dict[str, Any], path: str, value: Any) -> bool:
    """
    Set ``mapping["a"]["b"]["c"] = value`` for ``path="a.b.c"``.

    Intermediate dicts are created as needed.  Returns False (and writes
    nothing) when any segment is a reserved key or traverses a non-dict.
    """
    parts = [p for p in str(path).split(".") if p]
    if not parts or any(_is_forbidden(p) for p in parts):
        logger.warning(f"Refusing to set reserved config path {path!r}")
        return False
    node = mapping
    for part in parts[:-1]:
        nxt = node.get(part)
        if nxt is None:
            nxt = {}
            node[part] = nxt
        elif not isinstance(nxt, dict):
            return False
        node = nxt
    node[parts[-1]] = value
    return True


def build_config(overrides: Optional[Mapping[str, Any]] = None) -> SearchConfig:
    """Deep-merge *overrides* onto the defaults, validate (advisory) and build."""
    data = SearchConfig().to_dict()
    if overrides and isinstance(overrides, Mapping):
        deep_merge(data, overrides)
    _fix_position_conflicts(data)
    report = validate_config(data)
    if not report.valid:
        logger.warning(f"Config validation failed: {report.errors}")
    return SearchConfig.from_dict(data)


def _fix_position_conflicts(data: Dict[str, Any]) -> None:
    """Clear ``left`` when ``right`` is also set, ``bottom`` when ``top`` is."""
    position = (data.get("search_bar") or {}).get("position")
    if not isinstance(position, dict):
        return
    if position.get("left") is not None and position.get("right") is not None:
        logger.warning("Position conflict: both left and right set. Prioritizing right.")
        position["left"] = None
    if position.get("top") is not None and position.get("bottom") is not None:
        logger.warning("Position conflict: both top and bottom set. Prioritizing top.")
        position["bottom"] = None


def _from_mapping(cls, data: Any):
    """Recursively build dataclass *cls* from *data*."""
    if not isinstance(data, Mapping):
        return cls()
    kwargs: Dict[str, Any] = {}
    known = {f.name: f for f in fields(cls)}
    extra: Dict[str, Any] = {}
    for key, value in data.items():
        f = known.get(key)
        if f is None or key == "extra":
            if key == "extra" and isinstance(value, Mapping):
                extra.update(value)
            elif "extra" in known:
                extra[key] = value
            else:
                logger.debug(f"Ignoring unknown config key {cls.__name__}.{key}")
            continue
        if is_dataclass(f.type):
            kwargs[key] = _from_mapping(f.type, value)
        elif f.name == "mode":
            kwargs[key] = FilterMode.parse(value).value
        elif f.default_factory is list:
            kwargs[key] = list(value) if isinstance(value, (list, tuple, set, frozenset)) else []
        elif f.default_factory is not MISSING and isinstance(f.default_factory(), dict):
            merged = f.default_factory()
            if isinstance(value, Mapping):
                merged.update(value)
            kwargs[key] = merged
        else:
            kwargs[key] = value
    if "extra" in known:
        kwargs["extra"] = extra
    return cls(**kwargs)


def _to_mapping(obj) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if f.name == "extra" and isinstance(value, dict):
            out.update(copy.deepcopy(value))
        elif is_dataclass(value):
            out[f.name] = _to_mapping(value)
        else:
            out[f.name] = copy.deepcopy(value)
    return out


# =============================================================================
# Validation
# =============================================================================

@dataclass
class ValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)

    def raise_if_invalid(self) -> None:
        if not self.valid:
            raise ConfigValidationError(self.errors)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _get(data: Mapping[str, Any], path: str) -> Any:
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


_MODE_PATHS = (
    "filter.mode",
    "filter.element_types.mode",
    "filter.element_labels.mode",
    "filter.tag_filtering.mode",
    "filter.type_filter.mode",
)


def validate_config(config: Union[SearchConfig, Mapping[str, Any]]) -> ValidationReport:
    """Check a config (or raw config mapping) and report every problem found."""
    data = config.to_dict() if isinstance(config, SearchConfig) else config
    errors: List[str] = []

    min_chars = data.get("min_search_chars")
    if not _is_number(min_chars) or min_chars < 1:
        errors.append("min_search_chars must be a positive number")

    position = _get(data, "search_bar.position")
    if isinstance(position, Mapping):
        for side in ("top", "right", "bottom"):
            value = position.get(side)
            if value is not None and (not _is_number(value) or value < 0):
                errors.append(f"position.{side} must be a non-negative number")
        left = position.get("left")
        if left is not None and left != "50%" and (not _is_number(left) or left < 0):
            errors.append('position.left must be a non-negative number or "50%"')

    typography = _get(data, "theme.typography")
    if isinstance(typography, Mapping):
        size = typography.get("font_size")
        if size is not None and (not _is_number(size) or not 8 <= size <= 30):
            errors.append("typography.font_size must be a number between 8 and 30")
        spacing = typography.get("letter_spacing")
        if spacing is not None and (not _is_number(spacing) or not -5 <= spacing <= 10):
            errors.append("typography.letter_spacing must be a number between -5 and 10")

    for path in _MODE_PATHS:
        mode = _get(data, path)
        if mode is not None and mode not in LEGAL_MODES:
            errors.append(f"{path} must be one of: {', '.join(sorted(LEGAL_MODES))}")

    triggering = data.get("element_triggering")
    if isinstance(triggering, Mapping):
        for name, value in triggering.items():
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"element_triggering.{name} must be a non-negative integer")

    return ValidationReport(valid=not errors, errors=errors)


# =============================================================================
# Files & environment
# =============================================================================

DEFAULT_STORAGE_PATH = "~/.panosearch/storage.json"


def default_storage_path() -> Path:
    """``$PANOSEARCH_STORAGE_PATH`` or ``~/.panosearch/storage.json``."""
    return Path(os.getenv("PANOSEARCH_STORAGE_PATH") or DEFAULT_STORAGE_PATH).expanduser()


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a settings export and return its overrides mapping.

    Accepts either a bare settings object or the ``{"version", "settings"}``
    envelope written by the config snapshot store.

    Raises:
        ConfigValidationError: unreadable file, invalid JSON or not an object.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigValidationError([f"Cannot read config file {path}: {e}"]) from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError([f"Config file {path} is not valid JSON: {e}"]) from e
    if isinstance(raw, dict) and isinstance(raw.get("settings"), dict) and "version" in raw:
        if raw["version"] != CONFIG_SCHEMA_VERSION:
            logger.warning(
                f"Config file {path} was written for version {raw['version']}, "
                f"current is {CONFIG_SCHEMA_VERSION}"
            )
        raw = raw["settings"]
    if not isinstance(raw, dict):
        raise ConfigValidationError([f"Config file {path} must contain a JSON object"])
    return raw


def load_config_file(path: Union[str, Path]) -> SearchConfig:
    """Build a config from a settings export (see :func:`read_config_file`)."""
    return build_config(read_config_file(path))
