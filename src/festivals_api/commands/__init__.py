"""Built-in CLI sub-commands for the ``festivals`` tool.

This package groups the Typer command modules that form the CLI's command
tree:

* :mod:`~festivals_api.commands.data` -- ``fetch``, ``search`` and
  ``related`` read commands against the web service.
* :mod:`~festivals_api.commands.cache` -- inspect and wipe the response
  cache.
* :mod:`~festivals_api.commands.config` -- show the effective
  configuration.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``cache`` and ``config``) or plain callback
functions registered directly on the root app.
"""
