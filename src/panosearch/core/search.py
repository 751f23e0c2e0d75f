"""
PanoSearch Query Engine

Runs search terms against a built index, groups the hits for display and
renders them for the CLI.

Term handling:
- empty term              -> EMPTY (the caller shows recent searches)
- shorter than the min    -> TOO_SHORT (no engine call)
- ``*``                   -> ALL (every indexed item, score 0)
- ``=label``              -> EXACT (exact query on the label key)
- anything else           -> FUZZY (digits, ``-`` and ``_`` force a literal match)
"""

import enum
import functools
import json
import locale
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from panosearch.core.config import FilterMode, SearchConfig
from panosearch.core.engine import FuzzyIndex, SearchMatch
from panosearch.core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

WILDCARD = "*"
EXACT_PREFIX = "="
_LITERAL_CHARS = re.compile(r"[0-9\-_]")


class QueryStatus(str, enum.Enum):
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    ALL = "all"
    EXACT = "exact"
    FUZZY = "fuzzy"
    NO_RESULTS = "no_results"


@dataclass
class QueryOutcome:
    status: QueryStatus
    term: str
    matches: List[SearchMatch] = field(default_factory=list)
    min_chars: int = 0

    @property
    def count(self) -> int:
        return len(self.matches)

    @property
    def message(self) -> str:
        if self.status is QueryStatus.TOO_SHORT:
            return f"Please type at least {self.min_chars} characters to search"
        if self.status is QueryStatus.NO_RESULTS:
            return "No results found"
        if self.status is QueryStatus.EMPTY:
            return ""
        return f'Found {self.count} search results for "{self.term}"'


def preprocess_term(term: str) -> str:
    """Prefix with ``'`` (literal include) when the term holds a digit, ``-`` or ``_``."""
    if not term:
        return ""
    if _LITERAL_CHARS.search(term):
        return f"'{term}"
    return term


# =============================================================================
# Debouncer
# =============================================================================

class Debouncer:
    """
    Collapses bursts of calls into one call after *delay_ms* of quiet.

    Holds at most one pending timer and the arguments of the latest call.
    """

    def __init__(self, scheduler: Scheduler, delay_ms: float = 150):
        self.scheduler = scheduler
        self.delay_ms = delay_ms
        self._timer: Optional[TimerHandle] = None
        self._pending: Optional[Tuple[Callable[..., Any], Tuple[Any, ...]]] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, fn: Callable[..., Any], *args: Any) -> None:
        self.cancel_pending()
        self._pending = (fn, args)
        self._timer = self.scheduler.call_later(self.delay_ms, self._fire)

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def flush(self) -> bool:
        """Run the pending call now.  Returns False when nothing was pending."""
        if self._pending is None:
            return False
        if self._timer is not None:
            self._timer.cancel()
        self._fire()
        return True

    def _fire(self) -> None:
        pending, self._pending, self._timer = self._pending, None, None
        if pending is None:
            return
        fn, args = pending
        fn(*args)


# =============================================================================
# Query engine
# =============================================================================

class QueryEngine:
    """Executes terms against the current index."""

    def __init__(self, config: SearchConfig, index: Optional[FuzzyIndex] = None,
                 scheduler: Optional[Scheduler] = None):
        self.config = config
        self.index = index
        self.debouncer = Debouncer(scheduler, config.search_debounce_ms) if scheduler else None
        self._sequence = 0

    def reset(self, config: SearchConfig, index: Optional[FuzzyIndex]) -> None:
        """Swap in a new config snapshot and index together."""
        self.config = config
        self.index = index
        if self.debouncer is not None:
            self.debouncer.delay_ms = config.search_debounce_ms

    def execute(self, term: Any) -> QueryOutcome:
        """Classify and run *term*.  Engine errors come back as NO_RESULTS."""
        term = term.strip() if isinstance(term, str) else ""
        min_chars = self.config.min_search_chars
        if not term:
            return QueryOutcome(QueryStatus.EMPTY, term, min_chars=min_chars)
        if term != WILDCARD and len(term) < min_chars:
            return QueryOutcome(QueryStatus.TOO_SHORT, term, min_chars=min_chars)
        if self.index is None:
            logger.warning("Search index not initialized")
            return QueryOutcome(QueryStatus.NO_RESULTS, term, min_chars=min_chars)

        try:
            if term == WILDCARD:
                status = QueryStatus.ALL
                matches = [SearchMatch(item=item, score=0.0, ref_index=i)
                           for i, item in enumerate(self.index.docs)]
            elif term.startswith(EXACT_PREFIX):
                status = QueryStatus.EXACT
                matches = self.index.search({"label": term})
            else:
                status = QueryStatus.FUZZY
                matches = self.index.search(preprocess_term(term))
        except Exception as e:
            logger.error(f"Search failed for {term!r}: {e}", exc_info=True)
            return QueryOutcome(QueryStatus.NO_RESULTS, term, min_chars=min_chars)

        if not matches:
            return QueryOutcome(QueryStatus.NO_RESULTS, term, min_chars=min_chars)
        return QueryOutcome(status, term, matches, min_chars=min_chars)

    def search_fields(self, query: Mapping[str, str]) -> List[SearchMatch]:
        """Run a ``{key: pattern}`` query restricted to the listed keys."""
        if self.index is None or not query:
            return []
        try:
            return self.index.search(query)
        except Exception as e:
            logger.error(f"Field search failed for {dict(query)!r}: {e}", exc_info=True)
            return []

    def search_debounced(self, term: Any, callback: Callable[[QueryOutcome], Any]) -> int:
        """
        Queue *term*; only the latest queued term reaches *callback*.

        Returns the sequence token of this dispatch.
        """
        self._sequence += 1
        token = self._sequence
        if self.debouncer is None:
            self._dispatch(term, token, callback)
        else:
            self.debouncer.schedule(self._dispatch, term, token, callback)
        return token

    def _dispatch(self, term: Any, token: int, callback: Callable[[QueryOutcome], Any]) -> None:
        outcome = self.execute(term)
        if token != self._sequence:
            logger.debug(f"Discarding stale results for {term!r} (token {token} < {self._sequence})")
            return
        callback(outcome)


# =============================================================================
# Result organizer
# =============================================================================

def _collation_key(text: str) -> str:
    """Accents folded onto their base letters, then casefolded and collated."""
    decomposed = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return locale.strxfrm(folded.casefold())


def _locale_cmp(a: str, b: str) -> int:
    ka, kb = _collation_key(a), _collation_key(b)
    return (ka > kb) - (ka < kb)


def _compare_matches(a: SearchMatch, b: SearchMatch) -> int:
    result = _locale_cmp(a.item.label, b.item.label)
    if result:
        return result
    if a.item.parent_label and b.item.parent_label:
        return _locale_cmp(a.item.parent_label, b.item.parent_label)
    return 0


class ResultOrganizer:
    """Groups matches by type for display and applies the display-level type filter."""

    def __init__(self, config: SearchConfig):
        self.config = config

    def group(self, matches: List[SearchMatch]) -> Dict[str, List[SearchMatch]]:
        grouped: Dict[str, List[SearchMatch]] = {}
        for match in matches:
            grouped.setdefault(match.item.type, []).append(match)
        for members in grouped.values():
            members.sort(key=functools.cmp_to_key(_compare_matches))
        return grouped

    def apply_type_filter(self, groups: Dict[str, List[SearchMatch]]) -> Dict[str, List[SearchMatch]]:
        """
        Drop whole groups per ``filter.type_filter``.

        Independent of the index-time ``element_types`` filter.
        """
        type_filter = self.config.filter.type_filter
        mode = FilterMode.parse(type_filter.mode)
        if mode is FilterMode.WHITELIST and type_filter.allowed_types:
            return {t: m for t, m in groups.items() if t in type_filter.allowed_types}
        if mode is FilterMode.BLACKLIST and type_filter.blacklisted_types:
            return {t: m for t, m in groups.items() if t not in type_filter.blacklisted_types}
        return dict(groups)

    def organize(self, matches: List[SearchMatch]) -> Dict[str, List[SearchMatch]]:
        return self.apply_type_filter(self.group(matches))

    def group_title(self, element_type: str) -> str:
        return self.config.display_labels.get(element_type) or element_type


# =============================================================================
# Output formatting
# =============================================================================

class ResultFormatter:
    """Format search results for different output modes."""

    # ── Console (human-friendly) ──────────────────────────────────

    @staticmethod
    def format_console(outcome: QueryOutcome, config: SearchConfig) -> str:
        """Grouped output with optional headers, counts, subtitles, tags and parent info."""
        if outcome.status in (QueryStatus.EMPTY, QueryStatus.TOO_SHORT, QueryStatus.NO_RESULTS):
            return f"\n  {outcome.message}.\n" if outcome.message else ""

        import shutil
        width = min(shutil.get_terminal_size().columns, 78)
        thin = "─" * width

        organizer = ResultOrganizer(config)
        groups = organizer.organize(outcome.matches)
        display = config.display
        shown = sum(len(m) for m in groups.values())

        out: List[str] = [f"\n{thin}",
                          f"  PANOSEARCH — {shown} result{'s' if shown != 1 else ''} for \"{outcome.term}\"",
                          thin]
        for element_type, members in groups.items():
            if display.show_group_headers:
                title = organizer.group_title(element_type)
                count = f" ({len(members)})" if display.show_group_count else ""
                out.append("")
                out.append(f"  {title}{count}")
                out.append(f"  {'─' * (width - 2)}")
            for match in members:
                item = match.item
                out.append(f"    {item.label}")
                if display.show_subtitles_in_results and item.subtitle:
                    out.append(f"      {item.subtitle}")
                if config.show_tags_in_results and item.tags:
                    out.append(f"      tags: {', '.join(item.tags)}")
                if display.show_parent_info and item.parent_label:
                    out.append(f"      in: {item.parent_label}")
        out.append(f"\n{thin}")
        return "\n".join(out)

    # ── JSON ──────────────────────────────────────────────────────

    @staticmethod
    def format_json(outcome: QueryOutcome, config: SearchConfig) -> str:
        organizer = ResultOrganizer(config)
        groups = organizer.organize(outcome.matches)
        payload = {
            "status": outcome.status.value,
            "term": outcome.term,
            "message": outcome.message,
            "groups": {t: [m.to_dict() for m in members] for t, members in groups.items()},
        }
        return json.dumps(payload, indent=2, allow_nan=False)

    # ── Compact (one line per result) ─────────────────────────────

    @staticmethod
    def format_compact(outcome: QueryOutcome, config: SearchConfig) -> str:
        if not outcome.matches:
            return outcome.message or "No results found"
        groups = ResultOrganizer(config).organize(outcome.matches)
        lines: List[str] = []
        for element_type, members in groups.items():
            for match in members:
                item = match.item
                where = f"#{item.index}" if item.index is not None else f"{item.id or '-'}@{item.parent_index}"
                lines.append(f"{element_type:<10} {where:<16} {match.score:.3f}  {item.label}")
        return "\n".join(lines)
