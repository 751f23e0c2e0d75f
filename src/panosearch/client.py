"""
PanoSearch Client Facade

Single entry point for embedding the tour search.  A :class:`TourSearch`
instance owns one config snapshot, the current index, the recent-search
history and the element trigger; nothing is module-global, so several
tours can be searched side by side.

Usage::

    from panosearch import TourSearch
    from panosearch.host import load_scene

    search = TourSearch(overrides={"filter": {"mode": "blacklist",
                                              "blacklisted_values": ["Storage"]}})
    search.initialize_search(load_scene("tour.json"))

    outcome = search.search("lobby")
    for match in outcome.matches:
        print(match.item.type, match.item.label, round(match.score, 3))

    # Navigate / click the element behind a result
    search.select(outcome.matches[0], term="lobby")

    # Async variant (for asyncio hosts)
    outcome = await search.asearch("lobby")

Public methods never raise; failures are logged and a safe value is
returned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from panosearch.core.config import SearchConfig, build_config
from panosearch.core.engine import ContentItem, SearchMatch
from panosearch.core.history import SearchHistoryStore
from panosearch.core.indexer import IndexResult, SearchIndexBuilder
from panosearch.core.scene import read_attr, read_get
from panosearch.core.scheduler import ManualScheduler, Scheduler
from panosearch.core.search import QueryEngine, QueryOutcome, QueryStatus, ResultOrganizer
from panosearch.core.storage import ConfigSnapshotStore, MemoryStorage, Storage
from panosearch.core.trigger import ActionTrigger, TriggerRun

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "panosearch"

# 0=debug, 1=info, 2=warn, 3=error, 4=none
LOG_LEVELS = {
    0: logging.DEBUG,
    1: logging.INFO,
    2: logging.WARNING,
    3: logging.ERROR,
    4: logging.CRITICAL + 1,
}


class TourSearch:
    """
    Search context for one tour.

    Args:
        config: Explicit configuration snapshot.  When *None*, the stored
            snapshot (if *storage* holds a current one) or the defaults are
            used, with *overrides* merged on top.
        overrides: Partial settings merged onto the starting config.
        storage: Backend for history and the config snapshot.  Defaults
            to an in-memory store.
        scheduler: Timer source for debouncing and element triggering.
            Defaults to a :class:`ManualScheduler` the caller drives.
        persist_config: Save a snapshot to *storage* on every update.
        show_progress: Show a tqdm progress bar while indexing.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        storage: Optional[Storage] = None,
        scheduler: Optional[Scheduler] = None,
        persist_config: bool = False,
        show_progress: bool = False,
    ):
        self._storage = storage if storage is not None else MemoryStorage()
        self._snapshots = ConfigSnapshotStore(self._storage)
        if config is None:
            config = self._snapshots.load() or build_config()
        if overrides:
            config = config.merged(overrides)
        self._config = config
        self._scheduler = scheduler if scheduler is not None else ManualScheduler()
        self._persist_config = persist_config
        self._show_progress = show_progress

        self.search_history = SearchHistoryStore(self._storage, config.history_max_items)
        self._trigger = ActionTrigger(self._scheduler, config.element_triggering)
        self._engine = QueryEngine(config, None, self._scheduler)
        self._tour: Any = None
        self._result: Optional[IndexResult] = None
        self._visible = False

    # ── Properties ────────────────────────────────────────────────

    @property
    def config(self) -> SearchConfig:
        """The live snapshot.  Treat as read-only; use :meth:`update_config`."""
        return self._config

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def initialized(self) -> bool:
        return self._tour is not None

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def items(self) -> List[ContentItem]:
        return list(self._result.items) if self._result else []

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._result.stats) if self._result else {}

    # ── Lifecycle ─────────────────────────────────────────────────

    def initialize_search(self, tour: Any) -> bool:
        """Attach to *tour* and build the first index."""
        if tour is None:
            logger.warning("initialize_search called without a tour")
            return False
        self._tour = tour
        logger.info("Initializing tour search")
        return self.rebuild_search_index()

    def toggle_search(self, show: Optional[bool] = None) -> bool:
        """Show, hide or flip the search; hiding drops any queued query."""
        self._visible = (not self._visible) if show is None else bool(show)
        if not self._visible and self._engine.debouncer is not None:
            self._engine.debouncer.cancel_pending()
        return self._visible

    # ── Configuration ─────────────────────────────────────────────

    def get_config(self) -> SearchConfig:
        """A deep copy of the current snapshot."""
        return self._config.copy()

    def update_config(self, partial: Optional[Mapping[str, Any]]) -> SearchConfig:
        """
        Merge *partial* into a new snapshot, swap it in and re-index.

        Returns a copy of the snapshot now in effect.
        """
        try:
            new_config = self._config.merged(partial)
        except Exception as e:
            logger.error(f"Config update failed: {e}", exc_info=True)
            return self.get_config()

        self._config = new_config
        self.search_history.max_items = max(1, int(new_config.history_max_items))
        self._trigger.settings = new_config.element_triggering
        if self._persist_config:
            self._snapshots.save(new_config)
        if self.initialized:
            self.rebuild_search_index()
        else:
            self._engine.reset(new_config, self._engine.index)
        return self.get_config()

    def set_log_level(self, level: Any) -> bool:
        """Set package verbosity on a 0 (debug) to 4 (silent) scale."""
        if isinstance(level, bool) or not isinstance(level, int) or level not in LOG_LEVELS:
            return False
        logging.getLogger(PACKAGE_LOGGER).setLevel(LOG_LEVELS[level])
        return True

    # ── Indexing ──────────────────────────────────────────────────

    def rebuild_search_index(self) -> bool:
        """Rebuild from the attached tour using the current snapshot."""
        if self._tour is None:
            logger.warning("Cannot rebuild index: search not initialized")
            return False
        config = self._config
        try:
            result = SearchIndexBuilder(config, show_progress=self._show_progress).build(self._tour)
        except Exception as e:
            logger.error(f"Index rebuild failed: {e}", exc_info=True)
            return False
        self._result = result
        self._engine.reset(config, result.index)
        return result.ok

    # ── Search ────────────────────────────────────────────────────

    def search(self, term: Any, *, record_history: bool = False) -> QueryOutcome:
        """Run *term* now.  See :class:`~panosearch.core.search.QueryStatus`."""
        try:
            outcome = self._engine.execute(term)
        except Exception as e:
            logger.error(f"Search failed: {e}", exc_info=True)
            return QueryOutcome(QueryStatus.NO_RESULTS, str(term or ""))
        if record_history and outcome.matches:
            self.search_history.save(outcome.term)
        return outcome

    def search_debounced(self, term: Any, callback: Callable[[QueryOutcome], Any]) -> int:
        """Queue *term*; *callback* receives only the latest queued term's outcome."""
        try:
            return self._engine.search_debounced(term, callback)
        except Exception as e:
            logger.error(f"Debounced search failed: {e}", exc_info=True)
            return 0

    def search_fields(self, query: Mapping[str, str]) -> List[SearchMatch]:
        return self._engine.search_fields(query)

    def organize(self, matches: List[SearchMatch]) -> Dict[str, List[SearchMatch]]:
        """Group *matches* by type for display, after the display type filter."""
        return ResultOrganizer(self._config).organize(matches)

    # ── Selection ─────────────────────────────────────────────────

    def select(self, match: SearchMatch | ContentItem,
               callback: Optional[Callable[[bool], Any]] = None,
               *, term: Optional[str] = None) -> Optional[TriggerRun]:
        """
        Navigate to the result's panorama and, for overlays, click the element.

        Panoramas report success to *callback* immediately; overlays report
        once the trigger run finishes.  *term*, when given, is recorded in
        the search history.
        """
        item = match.item if isinstance(match, SearchMatch) else match
        run: Optional[TriggerRun] = None
        try:
            if item.is_panorama:
                ok = self._navigate(item.index)
                if callback is not None:
                    callback(ok)
            else:
                if item.parent_index is not None:
                    self._navigate(item.parent_index)
                if item.id:
                    run = self._trigger.trigger(self._tour, item.id, callback)
                elif callback is not None:
                    callback(False)
        except Exception as e:
            logger.error(f"Selecting {item.label!r} failed: {e}", exc_info=True)
        if term:
            self.search_history.save(term)
        return run

    def trigger_element(self, element_id: str,
                        callback: Optional[Callable[[bool], Any]] = None,
                        options: Optional[Mapping[str, Any]] = None) -> Optional[TriggerRun]:
        """Click *element_id* with the configured retry policy."""
        return self._trigger.trigger(self._tour, element_id, callback, options)

    def _navigate(self, index: Optional[int]) -> bool:
        if index is None or self._tour is None:
            return False
        playlist = read_attr(self._tour, "mainPlayList") or read_get(self._tour, "mainPlayList")
        setter = getattr(playlist, "set", None)
        if not callable(setter):
            logger.warning("Playlist does not support navigation")
            return False
        setter("selectedIndex", index)
        logger.info(f"Navigated to panorama at index {index}")
        return True

    # ── Async variants ────────────────────────────────────────────
    # asyncio.to_thread() keeps index work off the event loop.

    async def asearch(self, term: Any, *, record_history: bool = False) -> QueryOutcome:
        """Async variant of :meth:`search`."""
        return await asyncio.to_thread(self.search, term, record_history=record_history)

    async def arebuild_search_index(self) -> bool:
        """Async variant of :meth:`rebuild_search_index`."""
        return await asyncio.to_thread(self.rebuild_search_index)

    # ── Health ────────────────────────────────────────────────────

    def health(self) -> Dict[str, object]:
        """Small status dict for agents or status endpoints."""
        from panosearch import __version__

        return {
            "version": __version__,
            "initialized": self.initialized,
            "visible": self._visible,
            "items_indexed": len(self._result.items) if self._result else 0,
            "index_ok": self._result.ok if self._result else False,
            "history_items": len(self.search_history.get()),
        }
