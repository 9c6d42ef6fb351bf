"""Pydantic models for the records served by the Festivals web service.

Every record arrives as a flat JSON object whose keys are prefixed with the
object type (``festival_name``, ``event_start``) plus an optional
``include`` object holding related records requested with ``?include=``.
The models expose unprefixed attribute names and accept both the wire
aliases and the attribute names on input. Related records from ``include``
are lifted into typed attributes (``Festival.place``, ``Event.artist``).

Timestamps travel as integer Unix seconds and are exposed as aware
:class:`~datetime.datetime` values in UTC. :meth:`Entity.to_json` produces
the wire form used as request body for create and update calls; included
relations are never part of it.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class EventType(enum.IntEnum):
    """Kind of an :class:`Event`."""

    MUSIC = 0
    MOVIE = 1
    PERFORMANCE = 2
    THEATER = 3
    FOOD = 4
    EXHIBITION = 5
    TALK = 6
    WORKSHOP = 7


class LinkType(enum.IntEnum):
    """Service a :class:`Link` points to."""

    UNKNOWN = -1
    WEBSITE_URL = 0
    MAIL = 1
    PHONE = 2
    YOUTUBE_VIDEO_REF = 3
    YOUTUBE_USER_REF = 4
    YOUTUBE_CHANNEL_REF = 5
    YOUTUBE_PLAYLIST_REF = 6
    YOUTUBE_MUSIC_PLAYLIST_REF = 7
    SOUNDCLOUD_PROFILE_REF = 8
    BANDCAMP_PROFILE_URL = 9
    BANDCAMP_TRACK_URL = 10
    HEARTHIS_PROFILE_REF = 11
    HEARTHIS_EMBEDDED_TRACK_REF = 12
    FACEBOOK_PROFILE_REF = 13
    INSTAGRAM_PROFILE_REF = 14
    SPOTIFY_ARTIST_REF = 15
    SPOTIFY_ALBUM_REF = 16
    SPOTIFY_TRACK_REF = 17
    APPLE_MUSIC_STORE_URL = 18
    SHAZAM_PROFILE_REF = 19
    SHAZAM_TRACK_REF = 20
    DEEZER_ARTIST_REF = 21
    TWITTER_PROFILE_REF = 22
    TIKTOK_PROFILE_REF = 23
    TRIPADVISOR_URL = 24


class Entity(BaseModel):
    """Base class of all web service records.

    Subclasses set :attr:`object_type` and map include names to attributes
    in :attr:`include_fields` as ``{include: (attribute, single)}``. A
    *single* include keeps only the first related record.
    """

    model_config = ConfigDict(populate_by_name=True)

    object_type: ClassVar[str]
    include_fields: ClassVar[dict[str, tuple[str, bool]]] = {}

    @model_validator(mode="before")
    @classmethod
    def _lift_includes(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "include" not in data:
            return data
        data = dict(data)
        include = data.pop("include")
        if not isinstance(include, dict):
            return data
        for name, (attribute, single) in cls.include_fields.items():
            related = include.get(name)
            if not isinstance(related, list):
                continue
            if single:
                data[attribute] = related[0] if related else None
            else:
                data[attribute] = related
        return data

    def to_json(self) -> dict[str, Any]:
        """Return the wire representation without included relations."""
        relations = {attribute for attribute, _ in self.include_fields.values()}
        return self.model_dump(mode="json", by_alias=True, exclude=relations)


class ImageRef(Entity):
    """Reference to an image stored by the service."""

    object_type: ClassVar[str] = "image"

    id: int = Field(default=0, alias="image_id")
    hash: str = Field(default="", alias="image_hash")
    comment: str = Field(alias="image_comment")
    ref: str = Field(alias="image_ref")


class Link(Entity):
    object_type: ClassVar[str] = "link"

    id: int = Field(default=0, alias="link_id")
    version: str = Field(default="", alias="link_version")
    url: str = Field(alias="link_url")
    service: LinkType = Field(alias="link_service")


class Tag(Entity):
    object_type: ClassVar[str] = "tag"

    id: int = Field(default=0, alias="tag_id")
    name: str = Field(alias="tag_name")


class Place(Entity):
    """Postal address and coordinates of a festival or location."""

    object_type: ClassVar[str] = "place"

    id: int = Field(default=0, alias="place_id")
    version: str = Field(default="", alias="place_version")
    street: str = Field(alias="place_street")
    zip: str = Field(alias="place_zip")
    town: str = Field(alias="place_town")
    street_addition: str = Field(alias="place_street_addition")
    country: str = Field(alias="place_country")
    lat: float = Field(alias="place_lat")
    lon: float = Field(alias="place_lon")
    description: str = Field(alias="place_description")


class Artist(Entity):
    object_type: ClassVar[str] = "artist"
    include_fields: ClassVar[dict[str, tuple[str, bool]]] = {
        "image": ("image", True),
        "link": ("links", False),
        "tag": ("tags", False),
    }

    id: int = Field(default=0, alias="artist_id")
    version: str = Field(default="", alias="artist_version")
    name: str = Field(alias="artist_name")
    description: str = Field(alias="artist_description")
    image: Optional[ImageRef] = None
    links: Optional[list[Link]] = None
    tags: Optional[list[Tag]] = None


class Location(Entity):
    object_type: ClassVar[str] = "location"
    include_fields: ClassVar[dict[str, tuple[str, bool]]] = {
        "image": ("image", True),
        "link": ("links", False),
        "place": ("place", True),
    }

    id: int = Field(default=0, alias="location_id")
    version: str = Field(default="", alias="location_version")
    name: str = Field(alias="location_name")
    description: str = Field(alias="location_description")
    accessible: bool = Field(alias="location_accessible")
    openair: bool = Field(alias="location_openair")
    image: Optional[ImageRef] = None
    links: Optional[list[Link]] = None
    place: Optional[Place] = None


class Event(Entity):
    """A single programme item of a festival.

    Events with a zero or inverted time span decode with both ``start`` and
    ``end`` set to the Unix epoch.
    """

    object_type: ClassVar[str] = "event"
    include_fields: ClassVar[dict[str, tuple[str, bool]]] = {
        "artist": ("artist", True),
        "location": ("location", True),
    }

    id: int = Field(default=0, alias="event_id")
    version: str = Field(default="", alias="event_version")
    name: str = Field(alias="event_name")
    start: datetime = Field(alias="event_start")
    end: datetime = Field(alias="event_end")
    description: str = Field(alias="event_description")
    type: EventType = Field(alias="event_type")
    artist: Optional[Artist] = None
    location: Optional[Location] = None

    @model_validator(mode="after")
    def _normalize_span(self) -> Event:
        if self.start == EPOCH or self.end == EPOCH or self.start > self.end:
            self.start = EPOCH
            self.end = EPOCH
        return self

    @field_serializer("start", "end")
    def _epoch_seconds(self, value: datetime) -> int:
        return int(value.timestamp())


class Festival(Entity):
    object_type: ClassVar[str] = "festival"
    include_fields: ClassVar[dict[str, tuple[str, bool]]] = {
        "image": ("image", True),
        "link": ("links", False),
        "place": ("place", True),
        "tag": ("tags", False),
        "event": ("events", False),
    }

    id: int = Field(default=0, alias="festival_id")
    version: str = Field(default="", alias="festival_version")
    is_valid: bool = Field(alias="festival_is_valid")
    name: str = Field(alias="festival_name")
    start: datetime = Field(alias="festival_start")
    end: datetime = Field(alias="festival_end")
    description: str = Field(alias="festival_description")
    price: str = Field(alias="festival_price")
    image: Optional[ImageRef] = None
    links: Optional[list[Link]] = None
    place: Optional[Place] = None
    tags: Optional[list[Tag]] = None
    events: Optional[list[Event]] = None

    @model_validator(mode="after")
    def _check_span(self) -> Festival:
        if self.start > self.end:
            raise ValueError(f"festival {self.name!r} starts after it ends")
        return self

    @field_serializer("start", "end")
    def _epoch_seconds(self, value: datetime) -> int:
        return int(value.timestamp())
