"""
PanoSearch CLI

Command-line interface for indexing and searching tour scene exports.

Usage::

    panosearch index tour.json                 # Build the index, print stats
    panosearch search tour.json "lobby"        # Fuzzy search
    panosearch trigger tour.json hs-info-desk  # Click an element (with retries)
    panosearch history                         # Recent searches
    panosearch config validate settings.json   # Check a settings export
    panosearch mcp                             # Start the MCP server
"""

import json
import logging
import time
from pathlib import Path

import click

from panosearch.client import TourSearch
from panosearch.core.config import (
    SearchConfig,
    build_config,
    deep_merge,
    default_storage_path,
    read_config_file,
    validate_config,
)
from panosearch.core.scheduler import BlockingScheduler
from panosearch.core.search import ResultFormatter
from panosearch.core.storage import ConfigSnapshotStore, FileStorage
from panosearch.core.trigger import backoff_schedule
from panosearch.exceptions import ConfigValidationError, SceneLoadError
from panosearch.host import load_scene


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool, config: SearchConfig | None = None) -> None:
    """Set up logging for the CLI session."""
    config = config or SearchConfig.from_env()
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format=config.log_format)


# ---------------------------------------------------------------------------
# Top-level group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(package_name="panosearch")
@click.option(
    "--storage",
    type=click.Path(dir_okay=False),
    default=None,
    envvar="PANOSEARCH_STORAGE_PATH",
    help="Storage file for history and config (default: ~/.panosearch/storage.json).",
)
@click.pass_context
def cli(ctx: click.Context, storage: str | None):
    """PanoSearch — fuzzy search for virtual-tour scenes."""
    ctx.ensure_object(dict)
    ctx.obj["storage"] = FileStorage(Path(storage) if storage else default_storage_path())


def _load_config(ctx: click.Context, config_file: str | None) -> SearchConfig:
    """Settings file when given, else the stored snapshot, else environment defaults."""
    if config_file:
        try:
            return build_config(read_config_file(config_file))
        except ConfigValidationError as exc:
            click.echo(f"Error: {exc}", err=True)
            raise SystemExit(1)
    return ConfigSnapshotStore(ctx.obj["storage"]).load() or SearchConfig.from_env()


def _open_search(ctx: click.Context, scene: str, config: SearchConfig,
                 show_progress: bool = False) -> TourSearch:
    try:
        tour = load_scene(scene)
    except SceneLoadError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    search = TourSearch(config, storage=ctx.obj["storage"], scheduler=BlockingScheduler(),
                        show_progress=show_progress)
    search.initialize_search(tour)
    return search


# ---------------------------------------------------------------------------
# panosearch index
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("scene", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Settings JSON export to apply.")
@click.option("--progress", is_flag=True, help="Show a progress bar while indexing.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def index(ctx: click.Context, scene: str, config_file: str | None,
          progress: bool, verbose: bool):
    """Build the search index for SCENE and print statistics."""
    config = _load_config(ctx, config_file)
    _configure_logging(verbose, config)
    t0 = time.perf_counter()
    tour_search = _open_search(ctx, scene, config, show_progress=progress)
    elapsed = time.perf_counter() - t0

    s = tour_search.stats
    click.echo("─" * 50)
    click.echo("  PANOSEARCH — Index Statistics")
    click.echo("─" * 50)
    click.echo(f"  Scene : {scene}")
    click.echo()
    click.echo(f"  Panoramas seen     {s.get('panoramas_seen', 0):>8,}")
    click.echo(f"  Panoramas indexed  {s.get('panoramas_indexed', 0):>8,}")
    click.echo(f"  Overlays seen      {s.get('overlays_seen', 0):>8,}")
    click.echo(f"  Overlays indexed   {s.get('overlays_indexed', 0):>8,}")
    click.echo(f"  Skipped            {s.get('skipped', 0):>8,}")
    click.echo(f"  Errors             {s.get('errors', 0):>8,}")
    click.echo(f"  Items in index     {len(tour_search.items):>8,}")
    click.echo(f"  Completed in {elapsed:.3f} seconds")
    click.echo("─" * 50)
    if not tour_search.health()["index_ok"]:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# panosearch search
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("scene", type=click.Path(exists=True, dir_okay=False))
@click.argument("query")
@click.option("-f", "--format", "fmt",
              type=click.Choice(["console", "json", "compact"]),
              default="console", help="Output format.")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Settings JSON export to apply.")
@click.option("--no-history", is_flag=True, help="Do not record QUERY in the search history.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def search(ctx: click.Context, scene: str, query: str, fmt: str,
           config_file: str | None, no_history: bool, verbose: bool):
    """Search SCENE for QUERY (``*`` lists everything, ``=label`` is exact)."""
    config = _load_config(ctx, config_file)
    _configure_logging(verbose, config)
    tour_search = _open_search(ctx, scene, config)
    outcome = tour_search.search(query, record_history=not no_history)

    formatter = ResultFormatter()
    if fmt == "json":
        click.echo(formatter.format_json(outcome, tour_search.config))
    elif fmt == "compact":
        click.echo(formatter.format_compact(outcome, tour_search.config))
    else:
        click.echo(formatter.format_console(outcome, tour_search.config))


# ---------------------------------------------------------------------------
# panosearch trigger
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("scene", type=click.Path(exists=True, dir_okay=False))
@click.argument("element_id")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Settings JSON export to apply.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def trigger(ctx: click.Context, scene: str, element_id: str,
            config_file: str | None, verbose: bool):
    """Click ELEMENT_ID in SCENE, retrying with backoff until it appears."""
    config = _load_config(ctx, config_file)
    _configure_logging(verbose, config)
    tour_search = _open_search(ctx, scene, config)

    outcome = {}
    run = tour_search.trigger_element(element_id, lambda ok: outcome.setdefault("ok", ok))
    tour_search.scheduler.run_until_idle()

    if run is not None and outcome.get("ok"):
        click.echo(f"Triggered {element_id} via {run.method} (attempt {run.attempt + 1})")
        return
    planned = ", ".join(f"{d:g}" for d in backoff_schedule(tour_search.config.element_triggering))
    click.echo(f"Failed to trigger {element_id} (backoff schedule: {planned} ms)", err=True)
    raise SystemExit(1)


# ---------------------------------------------------------------------------
# panosearch history
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--clear", is_flag=True, help="Forget all recent searches.")
@click.pass_context
def history(ctx: click.Context, clear: bool):
    """Show (or clear) recent searches."""
    tour_search = TourSearch(storage=ctx.obj["storage"])
    if clear:
        ok = tour_search.search_history.clear()
        click.echo("History cleared." if ok else "Could not clear history.")
        return
    entries = tour_search.search_history.get()
    if not entries:
        click.echo("No recent searches.")
        return
    for i, term in enumerate(entries, start=1):
        click.echo(f"  {i}. {term}")


# ---------------------------------------------------------------------------
# panosearch config
# ---------------------------------------------------------------------------

@cli.group()
def config():
    """Inspect and validate search settings."""


@config.command("validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def config_validate(file: str):
    """Validate a settings FILE without applying it."""
    try:
        raw = read_config_file(file)
    except ConfigValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    # Validate the merged result so camelCase keys are checked too.
    report = validate_config(deep_merge(SearchConfig().to_dict(), raw))
    if report.valid:
        click.echo("Configuration is valid.")
        return
    click.echo("Configuration has problems:", err=True)
    for error in report.errors:
        click.echo(f"  - {error}", err=True)
    raise SystemExit(1)


@config.command("show")
@click.argument("file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def config_show(ctx: click.Context, file: str | None):
    """Print the effective settings (FILE, else the stored snapshot, else defaults)."""
    cfg = _load_config(ctx, file)
    click.echo(json.dumps(cfg.to_dict(), indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# panosearch mcp
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--transport", type=click.Choice(["stdio", "sse"]),
              default="stdio", help="MCP transport (default: stdio).")
@click.option("-v", "--verbose", is_flag=True)
def mcp(transport: str, verbose: bool):
    """Start the PanoSearch MCP server over the scene in $PANOSEARCH_SCENE."""
    _configure_logging(verbose)
    try:
        from panosearch.mcp.server import create_server  # noqa: E402
    except ImportError:
        click.echo(
            "Error: MCP dependencies not installed.\n"
            "Install with:  pip install 'panosearch[mcp]'",
            err=True,
        )
        raise SystemExit(1)

    server = create_server()
    server.run(transport=transport)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
