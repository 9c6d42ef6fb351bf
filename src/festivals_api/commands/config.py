"""Config commands -- view the effective configuration.

Provides the ``festivals config`` sub-command group. Settings live in
``config.json`` in the festivals-api config directory (or the file named by
``--config`` / ``$FESTIVALS_API_CONFIG``).
"""

from __future__ import annotations

import typer

from festivals_api.config import get_config_path, get_request_cache_dir, resolve_config
from festivals_api.output import get_output, info

config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Prints the config file path and cache directory to stderr, followed by
    the merged configuration (file, environment and CLI flags) as JSON.

    Example::

        festivals config show
        festivals --base-url https://localhost:10439 config show
    """
    obj = ctx.obj or {}
    config_path = obj.get("config_path")
    config = resolve_config(cli_base_url=obj.get("base_url"), config_path=config_path)
    info(f"Config file: {get_config_path(config_path)}")
    info(f"Cache directory: {config.cache.directory or get_request_cache_dir()}")
    get_output().print_json(config.model_dump(mode="json"))
