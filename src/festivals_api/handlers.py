"""Typed CRUD handlers, one per entity type.

Each handler turns the raw records returned by
:class:`~festivals_api.client.webservice.Webservice` into
:mod:`festivals_api.entities` models. The handlers are table-driven: a
concrete handler only declares its model, the includes embedded on fetch,
and the relationships reachable below one of its objects.

Example::

    festivals = FestivalHandler(webservice)
    festival = festivals.get(1)
    events = festivals.related("events", festival.id)
    festivals.set_related("tags", 4, festival.id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Iterable, Optional, TypeVar, Union

from pydantic import ValidationError

from festivals_api.client.envelope import single_record
from festivals_api.client.webservice import Webservice
from festivals_api.entities import (
    Artist,
    Entity,
    Event,
    Festival,
    ImageRef,
    Link,
    Location,
    Place,
    Tag,
)
from festivals_api.exceptions import ParsingFailedError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Entity)


@dataclass(frozen=True)
class Relationship:
    """A resource reachable below one object, e.g. ``/festivals/1/events``.

    Attributes:
        model: Entity type of the related records.
        single: ``True`` when at most one record is related.
        includes: Includes requested when the caller asks for related
            objects of the related records.
    """

    model: type[Entity]
    single: bool = False
    includes: tuple[str, ...] = ()


def decode_records(model: type[M], records: Iterable[Any]) -> list[M]:
    """Validate raw *records* into *model* instances.

    Raises:
        ParsingFailedError: If any record does not match the model.
    """
    try:
        return [model.model_validate(record) for record in records]
    except ValidationError as exc:
        raise ParsingFailedError(
            f"Could not decode {model.object_type} records: {exc}"
        ) from exc


class EntityHandler(Generic[M]):
    """Generic handler for one entity type.

    Args:
        webservice: The dispatcher requests are sent through.
    """

    model: ClassVar[type[Entity]]
    includes: ClassVar[tuple[str, ...]] = ()
    relationships: ClassVar[dict[str, Relationship]] = {}

    def __init__(self, webservice: Webservice) -> None:
        self._webservice = webservice

    @property
    def object_type(self) -> str:
        return self.model.object_type

    # ------------------------------------------------------------------ #
    # Objects
    # ------------------------------------------------------------------ #

    def all(self) -> list[M]:
        """Fetch every object of this type."""
        return self.fetch()

    def fetch(self, ids: Optional[Iterable[int]] = None) -> list[M]:
        """Fetch the objects with the given *ids*, with their default includes."""
        records = self._webservice.fetch(self.object_type, ids, self.includes or None)
        return self._decode(records)

    def get(self, object_id: int) -> M:
        """Fetch a single object.

        Raises:
            RecordDoesNotExistError: If no object has *object_id*.
        """
        return single_record(self.fetch([object_id]), f"{self.object_type} {object_id}")

    def search(self, name: str) -> list[M]:
        return self._decode(self._webservice.search(self.object_type, name))

    def create(self, obj: M) -> M:
        """Create *obj* on the service and return the stored object."""
        record = self._webservice.create(self.object_type, obj.to_json())
        return self._decode([record])[0]

    def update(self, obj: M) -> M:
        """Send *obj* as the new state of the object with ``obj.id``."""
        record = self._webservice.update(self.object_type, obj.id, obj.to_json())
        return self._decode([record])[0]

    def delete(self, obj: Union[M, int]) -> None:
        object_id = obj if isinstance(obj, int) else obj.id
        self._webservice.delete(self.object_type, object_id)

    # ------------------------------------------------------------------ #
    # Relationships
    # ------------------------------------------------------------------ #

    def related(self, resource: str, object_id: int, include: bool = True) -> list[Entity]:
        """Fetch the *resource* related to object *object_id*.

        Args:
            resource: Relationship name, e.g. ``"events"`` or ``"place"``.
            object_id: ID of the object owning the relationship.
            include: Embed the related records' own includes.

        Raises:
            ValueError: If *resource* is not a relationship of this type.
        """
        relationship = self._relationship(resource)
        includes = relationship.includes if include else ()
        records = self._webservice.fetch_resource(
            resource, self.object_type, object_id, includes or None
        )
        return decode_records(relationship.model, records)

    def related_one(self, resource: str, object_id: int, include: bool = True) -> Entity:
        """Fetch a single related object, e.g. the place of a festival.

        Raises:
            RecordDoesNotExistError: If nothing is related.
            ValueError: If *resource* is unknown or relates many objects.
        """
        if not self._relationship(resource).single:
            raise ValueError(
                f"{self.object_type} relates many {resource}; use related() instead"
            )
        related = self.related(resource, object_id, include)
        return single_record(related, f"{resource} of {self.object_type} {object_id}")

    def set_related(self, resource: str, resource_id: int, object_id: int) -> None:
        self._relationship(resource)
        self._webservice.set_resource(resource, resource_id, self.object_type, object_id)

    def remove_related(self, resource: str, resource_id: int, object_id: int) -> None:
        self._relationship(resource)
        self._webservice.remove_resource(resource, resource_id, self.object_type, object_id)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _relationship(self, resource: str) -> Relationship:
        try:
            return self.relationships[resource]
        except KeyError:
            known = ", ".join(sorted(self.relationships)) or "none"
            raise ValueError(
                f"{self.object_type} has no relationship {resource!r} (known: {known})"
            ) from None

    def _decode(self, records: Iterable[Any]) -> list[M]:
        return decode_records(self.model, records)  # type: ignore[arg-type]


class FestivalHandler(EntityHandler[Festival]):
    model = Festival
    includes = ("image", "link", "place", "tag")
    relationships = {
        "events": Relationship(Event, includes=("artist", "location")),
        "links": Relationship(Link),
        "place": Relationship(Place, single=True),
        "tags": Relationship(Tag),
        "image": Relationship(ImageRef, single=True),
    }


class ArtistHandler(EntityHandler[Artist]):
    model = Artist
    includes = ("image", "link", "tag")
    relationships = {
        "links": Relationship(Link),
        "tags": Relationship(Tag),
        "image": Relationship(ImageRef, single=True),
    }


class LocationHandler(EntityHandler[Location]):
    model = Location
    includes = ("image", "link", "place")
    relationships = {
        "links": Relationship(Link),
        "place": Relationship(Place, single=True),
        "image": Relationship(ImageRef, single=True),
    }


class EventHandler(EntityHandler[Event]):
    model = Event
    includes = ("artist", "location")
    relationships = {
        "artist": Relationship(Artist, single=True, includes=("image", "link", "tag")),
        "location": Relationship(Location, single=True, includes=("image", "link", "place")),
    }


class TagHandler(EntityHandler[Tag]):
    model = Tag
    relationships = {
        "festivals": Relationship(Festival, includes=("image",)),
    }


class PlaceHandler(EntityHandler[Place]):
    model = Place


class LinkHandler(EntityHandler[Link]):
    model = Link


class ImageRefHandler(EntityHandler[ImageRef]):
    model = ImageRef
