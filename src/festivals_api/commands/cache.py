"""Cache commands -- inspect and wipe the response cache.

Provides the ``festivals cache`` sub-command group. Both commands open the
cache directly from the effective configuration; no network access and no
credentials are needed.
"""

from __future__ import annotations

import typer

from festivals_api.config import build_cache, resolve_config
from festivals_api.output import get_output, info, success

cache_app = typer.Typer(no_args_is_help=True)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show the cache directory, lifetimes and disk footprint.

    Example::

        festivals cache stats --json
    """
    obj = ctx.obj or {}
    config = resolve_config(config_path=obj.get("config_path"))
    cache = build_cache(config)
    if cache is None:
        info("Response caching is disabled.")
        return
    with cache:
        stats = cache.stats()
        stats["disk_bytes"] = cache.total_disk_footprint().result()
    get_output().print_json(stats)


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Delete every cached response from disk.

    Example::

        festivals cache clear
    """
    obj = ctx.obj or {}
    config = resolve_config(config_path=obj.get("config_path"))
    cache = build_cache(config)
    if cache is None:
        info("Response caching is disabled.")
        return
    with cache:
        cache.clear_all().result()
    success(f"Cleared response cache at {cache.directory}")
