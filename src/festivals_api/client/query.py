"""Request targets for the web service's REST API.

Every logical operation maps to one :class:`Query`: an HTTP method, a path
relative to the service base URL, and the object and resource types the
operation touches. Object types are singular (``festival``); collection
paths pluralise them by appending ``s``.

Read paths are built from normalised IDs and include names (see
:mod:`festivals_api.cache.keys`) so the same logical read always yields
the same path, and therefore the same cache key.

Examples::

    fetch_query("festival")                       # GET /festivals
    fetch_query("festival", [1], ["tag", "image"])  # GET /festivals/1?include=image,tag
    fetch_query("festival", [2, 1])               # GET /festivals?ids=1,2
    fetch_resource_query("location", "event", 62) # GET /events/62/location
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from urllib.parse import quote

from festivals_api.cache.keys import normalize_ids, normalize_includes


@dataclass(frozen=True)
class Query:
    """One request target.

    Attributes:
        method: HTTP method.
        path: Path plus query string, relative to the base URL.
        object_type: The singular object type the path is rooted at.
        resource: The related resource addressed below the object, if any.
        includes: Normalised include names.
        body: JSON body for create and update requests.
    """

    method: str
    path: str
    object_type: str
    resource: Optional[str] = None
    includes: tuple[str, ...] = ()
    body: Optional[dict[str, Any]] = field(default=None, compare=False)

    @property
    def is_read(self) -> bool:
        """``True`` for idempotent reads, the only requests that are cached."""
        return self.method == "GET"


def collection_path(object_type: str) -> str:
    return f"/{object_type}s"


def fetch_query(
    object_type: str,
    ids: Optional[Iterable[int]] = None,
    includes: Optional[Iterable[str]] = None,
) -> Query:
    """Build the query listing objects of *object_type*.

    A single ID addresses the object directly (``/festivals/1``); several
    IDs filter the collection (``/festivals?ids=1,2``).
    """
    id_list = normalize_ids(ids)
    include_list = normalize_includes(includes)

    params: list[str] = []
    if id_list is None:
        path = collection_path(object_type)
    elif len(id_list) == 1:
        path = f"{collection_path(object_type)}/{id_list[0]}"
    else:
        path = collection_path(object_type)
        params.append("ids=" + ",".join(str(object_id) for object_id in id_list))
    if include_list:
        params.append("include=" + ",".join(include_list))
    if params:
        path = f"{path}?{'&'.join(params)}"

    return Query("GET", path, object_type, includes=tuple(include_list or ()))


def search_query(object_type: str, name: str) -> Query:
    """Build the query searching *object_type* by name."""
    path = f"{collection_path(object_type)}?name={quote(name, safe='')}"
    return Query("GET", path, object_type)


def fetch_resource_query(
    resource: str,
    object_type: str,
    object_id: int,
    includes: Optional[Iterable[str]] = None,
) -> Query:
    """Build the query fetching the *resource* related to one object."""
    include_list = normalize_includes(includes)
    path = f"{collection_path(object_type)}/{int(object_id)}/{resource}"
    if include_list:
        path = f"{path}?include={','.join(include_list)}"
    return Query(
        "GET", path, object_type, resource=resource, includes=tuple(include_list or ())
    )


def create_query(object_type: str, body: dict[str, Any]) -> Query:
    return Query("POST", collection_path(object_type), object_type, body=body)


def update_query(object_type: str, object_id: int, body: dict[str, Any]) -> Query:
    path = f"{collection_path(object_type)}/{int(object_id)}"
    return Query("PATCH", path, object_type, body=body)


def delete_query(object_type: str, object_id: int) -> Query:
    path = f"{collection_path(object_type)}/{int(object_id)}"
    return Query("DELETE", path, object_type)


def set_resource_query(
    resource: str, resource_id: int, object_type: str, object_id: int
) -> Query:
    """Build the query linking resource *resource_id* to an object."""
    path = f"{collection_path(object_type)}/{int(object_id)}/{resource}/{int(resource_id)}"
    return Query("POST", path, object_type, resource=resource)


def remove_resource_query(
    resource: str, resource_id: int, object_type: str, object_id: int
) -> Query:
    """Build the query unlinking resource *resource_id* from an object."""
    path = f"{collection_path(object_type)}/{int(object_id)}/{resource}/{int(resource_id)}"
    return Query("DELETE", path, object_type, resource=resource)
