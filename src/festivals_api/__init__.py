"""festivals_api -- Client SDK for the Festivals web service.

The package talks to the Festivals REST API, which manages festivals,
artists, locations, events, places, tags, links and images plus the
relationships between them. Every read goes through a two-tier response
cache (memory, then disk) and every connection authenticates with mutual
TLS against a single pinned root authority.

Typical use::

    from festivals_api import FestivalsClient

    with FestivalsClient(base_url, api_key, trust=evaluator, cache=cache) as client:
        festival = client.festivals.get(1)

The ``festivals`` command line tool wraps the same client for shell use.

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic configuration models.
    config: XDG-aware configuration loading and client construction.
    entities: Pydantic models of the web service records.
    handlers: Typed CRUD handlers per entity type.
    cache: The two-tier response cache.
    tls: Trust material loading and pinned-root evaluation.
    client: Sync and async request dispatchers.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes of the CLI.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"

from festivals_api.client.festivals import FestivalsClient

__all__ = ["FestivalsClient", "__version__"]
