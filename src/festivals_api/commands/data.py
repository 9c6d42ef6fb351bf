"""Read commands -- ``fetch``, ``search`` and ``related``.

Every command resolves the effective configuration from the root options
stored in ``ctx.obj``, builds a
:class:`~festivals_api.client.festivals.FestivalsClient` and prints the
decoded records through the global output manager. Library errors are
reported on stderr and mapped to their exit codes.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional

import typer

from festivals_api.client.envelope import single_record
from festivals_api.client.festivals import FestivalsClient
from festivals_api.config import build_client, resolve_config
from festivals_api.entities import Entity
from festivals_api.exceptions import FestivalsAPIError
from festivals_api.exit_codes import EXIT_INVALID_USAGE
from festivals_api.handlers import decode_records
from festivals_api.output import error, print_records


class ObjectType(str, Enum):
    """Object types accepted on the command line."""

    FESTIVAL = "festival"
    ARTIST = "artist"
    LOCATION = "location"
    EVENT = "event"
    IMAGE = "image"
    TAG = "tag"
    PLACE = "place"
    LINK = "link"


@contextmanager
def client_session(ctx: typer.Context) -> Iterator[FestivalsClient]:
    """Yield a client for the root options, translating library errors into exits."""
    obj = ctx.obj or {}
    try:
        config = resolve_config(
            cli_base_url=obj.get("base_url"), config_path=obj.get("config_path")
        )
        with build_client(config) as client:
            yield client
    except FestivalsAPIError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _columns(model: type[Entity]) -> list[str]:
    relations = {attribute for attribute, _ in model.include_fields.values()}
    return [name for name in model.model_fields if name not in relations]


def _show(entities: list[Entity], model: type[Entity]) -> None:
    records: list[dict[str, Any]] = [
        entity.model_dump(mode="json", exclude_none=True) for entity in entities
    ]
    print_records(records, columns=_columns(model), title=f"{model.object_type}s")


def fetch_command(
    ctx: typer.Context,
    object_type: ObjectType = typer.Argument(help="Object type to fetch."),
    ids: Optional[list[int]] = typer.Option(
        None, "--id", help="ID to fetch (repeatable). Omit to fetch all."
    ),
    include: Optional[list[str]] = typer.Option(
        None, "--include", help="Related object to embed (repeatable)."
    ),
) -> None:
    """Fetch objects, optionally by ID and with related objects embedded.

    Asking for exactly one ID that does not exist exits with
    ``EXIT_NOT_FOUND``.

    Example::

        festivals fetch festival --id 1 --id 2 --include place
    """
    with client_session(ctx) as client:
        handler = client.handler(object_type.value)
        includes = include if include else handler.includes
        records = client.webservice.fetch(object_type.value, ids or None, includes or None)
        if ids and len(set(ids)) == 1:
            records = [single_record(records, f"{object_type.value} {ids[0]}")]
        _show(decode_records(handler.model, records), handler.model)


def search_command(
    ctx: typer.Context,
    object_type: ObjectType = typer.Argument(help="Object type to search."),
    name: str = typer.Argument(help="Name to search for."),
) -> None:
    """Search objects by name.

    Example::

        festivals search festival krach
    """
    with client_session(ctx) as client:
        handler = client.handler(object_type.value)
        _show(handler.search(name), handler.model)


def related_command(
    ctx: typer.Context,
    object_type: ObjectType = typer.Argument(help="Object type owning the relationship."),
    object_id: int = typer.Argument(help="ID of the owning object."),
    resource: str = typer.Argument(help="Relationship name, e.g. events or place."),
    include: bool = typer.Option(
        True, "--include/--no-include", help="Embed the related objects' own relations."
    ),
) -> None:
    """Fetch the objects related to one object.

    Example::

        festivals related festival 1 events
    """
    with client_session(ctx) as client:
        handler = client.handler(object_type.value)
        try:
            relationship = handler.relationships[resource]
        except KeyError:
            known = ", ".join(sorted(handler.relationships)) or "none"
            error(f"{object_type.value} has no relationship {resource!r} (known: {known})")
            raise typer.Exit(code=EXIT_INVALID_USAGE) from None
        if relationship.single:
            related = [handler.related_one(resource, object_id, include)]
        else:
            related = handler.related(resource, object_id, include)
        _show(related, relationship.model)
