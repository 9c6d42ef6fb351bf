"""HTTP client module for festivals_api.

Provides the request dispatchers that wrap :mod:`httpx` with mutual TLS,
two-tier response caching, and retry with exponential backoff.

Classes:
    :class:`Webservice` -- blocking dispatcher backed by :class:`httpx.Client`.
    :class:`AsyncWebservice` -- non-blocking dispatcher backed by
    :class:`httpx.AsyncClient`.

Both accept the same core parameters: the service ``base_url``, the API
key, an optional :class:`~festivals_api.tls.TrustEvaluator`, an optional
:class:`~festivals_api.cache.ResponseCache` and a
:class:`~festivals_api.models.RequestConfig`. The typed entry point built on
top of :class:`Webservice` is
:class:`~festivals_api.client.festivals.FestivalsClient`.

Example::

    from festivals_api.client import Webservice

    with Webservice(base_url, api_key, cache=cache) as service:
        records = service.fetch("festival", ids=[1])
"""

from festivals_api.client.async_webservice import AsyncWebservice
from festivals_api.client.webservice import Webservice

__all__ = ["AsyncWebservice", "Webservice"]
