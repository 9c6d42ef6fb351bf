"""Entry point of the SDK: one :class:`FestivalsClient` per service connection."""

from __future__ import annotations

from typing import Optional

import httpx

from festivals_api.cache import ResponseCache
from festivals_api.client.webservice import Webservice
from festivals_api.exceptions import ConfigError
from festivals_api.handlers import (
    ArtistHandler,
    EventHandler,
    FestivalHandler,
    ImageRefHandler,
    LinkHandler,
    LocationHandler,
    PlaceHandler,
    TagHandler,
)
from festivals_api.models import RequestConfig
from festivals_api.tls import TrustEvaluator

SUPPORTED_API_VERSIONS = ("0.1",)


class FestivalsClient:
    """Access to every object type of the Festivals web service.

    Each object type has a handler attribute (:attr:`festivals`,
    :attr:`artists`, ...). All handlers share one
    :class:`~festivals_api.client.webservice.Webservice` and therefore one
    response cache and one TLS identity.

    The client owns the cache it is given: :meth:`close` also waits for
    pending cache writes and stops the cache's disk executor.

    Args:
        base_url: Service base URL.
        api_key: Value of the ``API-KEY`` header.
        api_version: Web service API version.
        jwt: Optional user token.
        trust: Mutual-TLS evaluator.
        cache: Response cache, or ``None`` to disable caching.
        request: Timeout and retry settings.
        use_cold_cache: Consult the disk tier after a hot miss.
        transport: Optional httpx transport.

    Raises:
        ConfigError: If *api_version* is not supported.

    Example::

        with FestivalsClient(url, key, trust=evaluator, cache=cache) as client:
            for festival in client.festivals.all():
                print(festival.name)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        api_version: str = "0.1",
        jwt: Optional[str] = None,
        trust: Optional[TrustEvaluator] = None,
        cache: Optional[ResponseCache] = None,
        request: Optional[RequestConfig] = None,
        use_cold_cache: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if api_version not in SUPPORTED_API_VERSIONS:
            raise ConfigError(
                f"Unsupported API version {api_version!r} "
                f"(supported: {', '.join(SUPPORTED_API_VERSIONS)})"
            )
        self.api_version = api_version
        self.cache = cache
        self.webservice = Webservice(
            base_url,
            api_key,
            jwt=jwt,
            trust=trust,
            cache=cache,
            request=request,
            use_cold_cache=use_cold_cache,
            transport=transport,
        )
        self.festivals = FestivalHandler(self.webservice)
        self.artists = ArtistHandler(self.webservice)
        self.locations = LocationHandler(self.webservice)
        self.events = EventHandler(self.webservice)
        self.images = ImageRefHandler(self.webservice)
        self.tags = TagHandler(self.webservice)
        self.places = PlaceHandler(self.webservice)
        self.links = LinkHandler(self.webservice)

    def handler(self, object_type: str):
        """Return the handler for a singular *object_type* such as ``"festival"``.

        Raises:
            ValueError: If the type is unknown.
        """
        for handler in (
            self.festivals,
            self.artists,
            self.locations,
            self.events,
            self.images,
            self.tags,
            self.places,
            self.links,
        ):
            if handler.object_type == object_type:
                return handler
        raise ValueError(f"Unknown object type {object_type!r}")

    def __enter__(self) -> FestivalsClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        self.webservice.close()
        if self.cache is not None:
            self.cache.close()
