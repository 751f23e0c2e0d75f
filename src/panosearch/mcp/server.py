"""
PanoSearch MCP Server

Exposes tour search as tools that AI agents can invoke natively via the
Model Context Protocol.  The server attaches to one scene export, named by
``PANOSEARCH_SCENE``, and keeps a single :class:`TourSearch` for its
lifetime.

Start with::

    PANOSEARCH_SCENE=tour.json panosearch mcp                  # stdio
    PANOSEARCH_SCENE=tour.json panosearch mcp --transport sse  # SSE

Or programmatically::

    from panosearch.mcp.server import create_server
    server = create_server(scene="tour.json")
    server.run()
"""

from __future__ import annotations

import json
import logging
import os
from typing import Annotated, Any, Dict

# FastMCP uses pydantic for validation, so Field should be available
from pydantic import Field  # type: ignore[import-untyped]

from panosearch.client import TourSearch
from panosearch.core.config import SearchConfig
from panosearch.core.scheduler import BlockingScheduler
from panosearch.core.search import ResultFormatter
from panosearch.core.storage import FileStorage, MemoryStorage
from panosearch.host import load_scene

logger = logging.getLogger(__name__)


def create_server(config: SearchConfig | None = None, scene: str | None = None,
                  storage_path: str | None = None):
    """
    Build and return a configured FastMCP server instance.

    Args:
        config: Starting configuration.  Defaults to
            ``SearchConfig.from_env()``.
        scene: Scene export to load.  Defaults to ``$PANOSEARCH_SCENE``.
        storage_path: File backing history and config snapshots.  When
            omitted (and ``$PANOSEARCH_STORAGE_PATH`` is unset) an in-memory
            store is used.

    Raises ``ImportError`` if ``fastmcp`` is not installed (install
    via ``pip install 'panosearch[mcp]'``).
    """
    from fastmcp import FastMCP  # type: ignore[import-untyped]

    cfg = config or SearchConfig.from_env()
    scene_path = scene or os.environ.get("PANOSEARCH_SCENE", "").strip() or None
    storage_path = storage_path or os.environ.get("PANOSEARCH_STORAGE_PATH", "").strip() or None
    storage = FileStorage(storage_path) if storage_path else MemoryStorage()

    mcp = FastMCP("PanoSearch")
    state: Dict[str, Any] = {"search": None}

    # ==================================================================
    # Helpers
    # ==================================================================

    def _search() -> TourSearch:
        """Lazily load the scene on first use.

        Raises ``FileNotFoundError`` (reported by FastMCP as a tool error)
        when no scene is configured.
        """
        if state["search"] is None:
            if not scene_path:
                raise FileNotFoundError(
                    "No scene configured. Set PANOSEARCH_SCENE to a scene JSON export."
                )
            tour_search = TourSearch(cfg, storage=storage, scheduler=BlockingScheduler(),
                                     persist_config=storage_path is not None)
            tour_search.initialize_search(load_scene(scene_path))
            state["search"] = tour_search
        return state["search"]

    # ==================================================================
    # Tool: search_tour
    # ==================================================================

    @mcp.tool()
    def search_tour(
        query: Annotated[
            str,
            Field(default="", description="Search term. Fuzzy by default; '*' lists every indexed item and '=Label' matches a label exactly. Terms containing digits, '-' or '_' are matched literally.")
        ] = "",
        record_history: Annotated[
            bool,
            Field(default=False, description="Record the term in the recent-search history when it returns results.")
        ] = False,
    ) -> str:
        """Search the tour's panoramas and overlay elements.

        Returns:
            JSON object with status, message and results grouped by element
            type (Panorama, Hotspot, Video, ...).
        """
        try:
            tour_search = _search()
            outcome = tour_search.search(query, record_history=record_history)
            return ResultFormatter.format_json(outcome, tour_search.config)
        except Exception as e:
            return json.dumps({"error": str(e), "groups": {}}, allow_nan=False)

    # ==================================================================
    # Tool: rebuild_index
    # ==================================================================

    @mcp.tool()
    def rebuild_index() -> str:
        """Rebuild the search index from the loaded scene.

        Returns:
            JSON with ``ok`` and the indexing statistics.
        """
        tour_search = _search()
        ok = tour_search.rebuild_search_index()
        return json.dumps({"ok": ok, "items": len(tour_search.items), "stats": tour_search.stats})

    # ==================================================================
    # Tools: configuration
    # ==================================================================

    @mcp.tool()
    def get_search_config() -> str:
        """Return the settings currently in effect as JSON."""
        return json.dumps(_search().get_config().to_dict(), indent=2, sort_keys=True)

    @mcp.tool()
    def update_search_config(
        settings: Annotated[
            Dict[str, Any],
            Field(description="Partial settings to merge, e.g. {\"filter\": {\"mode\": \"blacklist\", \"blacklisted_values\": [\"Storage\"]}}. camelCase keys are accepted. The index is rebuilt afterwards.")
        ],
    ) -> str:
        """Merge partial settings into the current configuration and re-index.

        Returns:
            JSON of the settings now in effect.
        """
        return json.dumps(_search().update_config(settings).to_dict(), indent=2, sort_keys=True)

    # ==================================================================
    # Tool: get_search_history
    # ==================================================================

    @mcp.tool()
    def get_search_history(
        clear: Annotated[
            bool,
            Field(default=False, description="Forget all recent searches instead of listing them.")
        ] = False,
    ) -> str:
        """List recent search terms, most recent first."""
        history = _search().search_history
        if clear:
            return json.dumps({"cleared": history.clear(), "history": []})
        return json.dumps({"history": history.get()})

    # ==================================================================
    # Tool: trigger_element
    # ==================================================================

    @mcp.tool()
    def trigger_element(
        element_id: Annotated[
            str,
            Field(description="Id of the overlay element to click, as returned in search results.")
        ],
        max_retries: Annotated[
            int | None,
            Field(default=None, description="Override the configured retry count for this call.")
        ] = None,
    ) -> str:
        """Click an element, retrying with backoff until it appears.

        Returns:
            JSON with ``ok``, the final state, attempts made and the
            activation method used.
        """
        tour_search = _search()
        outcome: Dict[str, bool] = {}
        options = {"max_retries": max_retries} if max_retries is not None else None
        run = tour_search.trigger_element(element_id, lambda ok: outcome.setdefault("ok", ok), options)
        tour_search.scheduler.run_until_idle()
        if run is None:
            return json.dumps({"ok": False, "state": "invalid", "attempts": 0, "method": None})
        return json.dumps({
            "ok": bool(outcome.get("ok")),
            "state": run.state.value,
            "attempts": run.attempt + (1 if run.result else 0),
            "method": run.method,
        })

    # ==================================================================
    # Tool: health (readiness check)
    # ==================================================================

    @mcp.tool()
    def health() -> str:
        """Check that the PanoSearch MCP server is running and responsive."""
        from panosearch import __version__

        payload: Dict[str, Any] = {"status": "ok", "version": __version__, "scene": scene_path}
        if state["search"] is not None:
            payload.update(state["search"].health())
        return json.dumps(payload)

    return mcp
