"""
PanoSearch Engine Primitives

Data types shared by every pipeline stage, plus :class:`FuzzyIndex`, a thin
Fuse-style facade over RapidFuzz.  The approximate matching itself is
RapidFuzz's; this module only maps the index options the tour search uses
(weighted keys, score threshold, match spans, minimum match length and the
extended query syntax) onto it.

Scores follow the Fuse convention: ``0.0`` is a perfect match, ``1.0`` a
complete mismatch.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

# Fuse uses a tiny epsilon instead of 0 so a perfect key does not zero the product.
EPSILON = 1e-3

PANORAMA = "Panorama"


# =============================================================================
# Data types
# =============================================================================

@dataclass(frozen=True)
class ContentItem:
    """
    One searchable record: a panorama or one of its overlays.

    Rebuilt from scratch on every index build.  ``index`` is only set for
    panoramas; ``parent_index``, ``parent_label`` and ``id`` only for
    overlays.  ``node`` keeps the host object for navigation and is
    excluded from equality.
    """

    type: str
    label: str
    subtitle: str = ""
    tags: Tuple[str, ...] = ()
    index: Optional[int] = None
    parent_index: Optional[int] = None
    parent_label: Optional[str] = None
    id: Optional[str] = None
    boost: float = 1.0
    original_label: str = ""
    description: str = ""
    node: Any = field(default=None, compare=False, repr=False)

    @property
    def is_panorama(self) -> bool:
        return self.type == PANORAMA

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "label": self.label,
            "subtitle": self.subtitle,
            "tags": list(self.tags),
            "boost": self.boost,
        }
        if self.index is not None:
            out["index"] = self.index
        if self.parent_index is not None:
            out["parent_index"] = self.parent_index
            out["parent_label"] = self.parent_label
        if self.id is not None:
            out["id"] = self.id
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True)
class MatchSpan:
    """Where a query matched: the key, the matched value and inclusive index pairs."""

    key: str
    value: str
    indices: Tuple[Tuple[int, int], ...] = ()


@dataclass
class SearchMatch:
    """A scored hit returned by :meth:`FuzzyIndex.search`."""

    item: ContentItem
    score: float
    ref_index: int
    matches: List[MatchSpan] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "score": round(self.score, 4),
            "ref_index": self.ref_index,
            "matches": [
                {"key": m.key, "value": m.value, "indices": [list(p) for p in m.indices]}
                for m in self.matches
            ],
        }


@dataclass(frozen=True)
class KeyOption:
    """An indexed field and its relative weight."""

    name: str
    weight: float = 1.0


# =============================================================================
# Extended query syntax
# =============================================================================

@dataclass(frozen=True)
class _Token:
    op: str  # fuzzy | include | exact | inverse | prefix | suffix | inverse-prefix | inverse-suffix
    text: str


def parse_extended(query: str) -> List[List[_Token]]:
    """
    Split *query* into OR-groups (``" | "``) of AND-tokens (whitespace).

    Token operators::

        'x   include (literal substring)     =x   exact
        !x   inverse include                 ^x   prefix
        x$   suffix                          !^x  inverse prefix
        !x$  inverse suffix                  x    fuzzy
    """
    groups: List[List[_Token]] = []
    for chunk in re.split(r"\s+\|\s+", query.strip()):
        tokens: List[_Token] = []
        for raw in chunk.split():
            tokens.append(_classify_token(raw))
        if tokens:
            groups.append(tokens)
    return groups


def _classify_token(raw: str) -> _Token:
    if raw.startswith("!^") and len(raw) > 2:
        return _Token("inverse-prefix", raw[2:])
    if raw.startswith("!") and raw.endswith("$") and len(raw) > 2:
        return _Token("inverse-suffix", raw[1:-1])
    if raw.startswith("!") and len(raw) > 1:
        return _Token("inverse", raw[1:])
    if raw.startswith("'") and len(raw) > 1:
        return _Token("include", raw[1:])
    if raw.startswith("=") and len(raw) > 1:
        return _Token("exact", raw[1:])
    if raw.startswith("^") and len(raw) > 1:
        return _Token("prefix", raw[1:])
    if raw.endswith("$") and len(raw) > 1:
        return _Token("suffix", raw[:-1])
    return _Token("fuzzy", raw)


# =============================================================================
# Fuzzy index
# =============================================================================

class FuzzyIndex:
    """
    Weighted multi-key fuzzy index over :class:`ContentItem` records.

    Location is always ignored (a match anywhere in a value scores the same),
    so *distance* is accepted for parity with the Fuse options the tour
    search was tuned with but has no effect.
    """

    def __init__(
        self,
        keys: Sequence[Union[KeyOption, str]],
        *,
        threshold: float = 0.6,
        distance: int = 100,
        ignore_location: bool = True,
        min_match_char_length: int = 1,
        include_score: bool = True,
        include_matches: bool = False,
        use_extended_search: bool = False,
    ):
        self.keys: List[KeyOption] = [
            k if isinstance(k, KeyOption) else KeyOption(str(k)) for k in keys
        ]
        total = sum(k.weight for k in self.keys) or 1.0
        self._norm_weights = {k.name: k.weight / total for k in self.keys}
        self.threshold = threshold
        self.distance = distance
        self.ignore_location = ignore_location
        self.min_match_char_length = max(1, int(min_match_char_length))
        self.include_score = include_score
        self.include_matches = include_matches
        self.use_extended_search = use_extended_search
        self._docs: List[ContentItem] = []

    # ── Indexing ──────────────────────────────────────────────────

    def index(self, records: Iterable[ContentItem]) -> "FuzzyIndex":
        self._docs = list(records)
        return self

    @property
    def docs(self) -> List[ContentItem]:
        return list(self._docs)

    def __len__(self) -> int:
        return len(self._docs)

    # ── Search ────────────────────────────────────────────────────

    def search(self, query: Union[str, Mapping[str, str]],
               limit: Optional[int] = None) -> List[SearchMatch]:
        """
        Run *query* against the index.

        A string is matched against every key.  A mapping ``{key: pattern}``
        restricts each pattern to its key and requires all of them to match.
        """
        if isinstance(query, Mapping):
            field_queries = [(str(k), str(v)) for k, v in query.items()]
        else:
            field_queries = [(None, str(query))]
        if not any(q.strip() for _, q in field_queries):
            return []

        hits: List[SearchMatch] = []
        for ref_index, record in enumerate(self._docs):
            match = self._match_record(record, field_queries)
            if match is None:
                continue
            score, spans = match
            boost = record.boost if record.boost and record.boost > 0 else 1.0
            hits.append(SearchMatch(
                item=record,
                score=score ** boost if self.include_score else 0.0,
                ref_index=ref_index,
                matches=spans if self.include_matches else [],
            ))

        hits.sort(key=lambda m: (m.score, m.ref_index))
        return hits[:limit] if limit else hits

    def _match_record(self, record: ContentItem,
                      field_queries: List[Tuple[Optional[str], str]]
                      ) -> Optional[Tuple[float, List[MatchSpan]]]:
        total = 1.0
        spans: List[MatchSpan] = []
        for key_name, pattern in field_queries:
            keys = [k for k in self.keys if key_name is None or k.name == key_name]
            if key_name is not None and not keys:
                keys = [KeyOption(key_name)]
            matched_any = False
            for key in keys:
                best = self._best_value_match(record, key.name, pattern)
                if best is None:
                    continue
                matched_any = True
                score, span = best
                weight = self._norm_weights.get(key.name, 1.0)
                total *= max(score, EPSILON) ** weight
                if span is not None:
                    spans.append(span)
            if not matched_any:
                return None
        return total, spans

    def _best_value_match(self, record: ContentItem, key: str,
                          pattern: str) -> Optional[Tuple[float, Optional[MatchSpan]]]:
        best: Optional[Tuple[float, Optional[MatchSpan]]] = None
        for value in field_values(record, key):
            result = self._match_value(pattern, value)
            if result is None:
                continue
            score, indices = result
            if best is None or score < best[0]:
                span = MatchSpan(key=key, value=value, indices=tuple(indices)) if indices else None
                best = (score, span)
        return best

    def _match_value(self, pattern: str, value: str
                     ) -> Optional[Tuple[float, List[Tuple[int, int]]]]:
        if not value:
            return None
        if not self.use_extended_search:
            return self._fuzzy(pattern.strip(), value)

        for group in parse_extended(pattern):
            scores: List[float] = []
            indices: List[Tuple[int, int]] = []
            for token in group:
                result = self._match_token(token, value)
                if result is None:
                    break
                scores.append(result[0])
                indices.extend(result[1])
            else:
                return sum(scores) / len(scores), indices
        return None

    def _match_token(self, token: _Token, value: str
                     ) -> Optional[Tuple[float, List[Tuple[int, int]]]]:
        needle = token.text.lower()
        text = value.lower()
        op = token.op
        if op == "fuzzy":
            return self._fuzzy(token.text, value)
        if op == "include":
            pos = text.find(needle)
            return (0.0, self._span(pos, len(needle))) if pos >= 0 else None
        if op == "exact":
            return (0.0, self._span(0, len(text))) if text == needle else None
        if op == "prefix":
            return (0.0, self._span(0, len(needle))) if text.startswith(needle) else None
        if op == "suffix":
            return ((0.0, self._span(len(text) - len(needle), len(needle)))
                    if text.endswith(needle) else None)
        if op == "inverse":
            return (0.0, []) if needle not in text else None
        if op == "inverse-prefix":
            return (0.0, []) if not text.startswith(needle) else None
        if op == "inverse-suffix":
            return (0.0, []) if not text.endswith(needle) else None
        return None

    def _fuzzy(self, pattern: str, value: str
               ) -> Optional[Tuple[float, List[Tuple[int, int]]]]:
        needle = pattern.lower()
        text = value.lower()
        if len(needle) < self.min_match_char_length:
            return None
        if len(needle) > len(text):
            ratio = fuzz.ratio(needle, text)
            start, end = 0, len(text)
        else:
            alignment = fuzz.partial_ratio_alignment(needle, text)
            if alignment is None:
                return None
            ratio = alignment.score
            start, end = alignment.dest_start, alignment.dest_end
        score = 1.0 - ratio / 100.0
        # A window clipped at the edge of the text still owes the missing characters.
        missing = len(needle) - (end - start)
        if missing > 0:
            score = min(1.0, score + missing / len(needle))
        if score > self.threshold:
            return None
        return score, self._span(start, end - start)

    def _span(self, start: int, length: int) -> List[Tuple[int, int]]:
        if start < 0 or length < self.min_match_char_length:
            return []
        return [(start, start + length - 1)]


def field_values(record: Any, key: str) -> List[str]:
    """Return the string values of *key* on *record* (camelCase keys accepted)."""
    if isinstance(record, Mapping):
        raw = record.get(key)
    else:
        attr = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key).lower()
        raw = getattr(record, attr, None)
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw] if raw else []
    if isinstance(raw, (list, tuple)):
        return [str(v) for v in raw if v]
    return [str(raw)]
