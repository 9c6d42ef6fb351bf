"""Asynchronous dispatcher -- mirrors :class:`~festivals_api.client.webservice.Webservice` API.

This module provides :class:`AsyncWebservice`, the non-blocking
counterpart to :class:`~festivals_api.client.webservice.Webservice`. It
wraps :class:`httpx.AsyncClient` and offers the same feature set -- mutual
TLS, two-tier response caching, invalidation on mutation and retry with
exponential backoff -- but uses ``await`` and :func:`asyncio.sleep` so it
can be used inside an event loop.

Cold cache reads run on the cache's disk executor and are awaited through
:func:`asyncio.wrap_future`, so slow storage never blocks the loop.

See Also:
    :class:`~festivals_api.client.webservice.Webservice` for the blocking
    equivalent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

import httpx

from festivals_api.cache import CacheTier, ResponseCache
from festivals_api.client.envelope import decode_response, single_record
from festivals_api.client.query import (
    Query,
    create_query,
    delete_query,
    fetch_query,
    fetch_resource_query,
    remove_resource_query,
    search_query,
    set_resource_query,
    update_query,
)
from festivals_api.client.webservice import JSONRecord, _WebserviceBase
from festivals_api.exceptions import RequestFailedError, TrustError
from festivals_api.models import RequestConfig
from festivals_api.tls import TrustEvaluator

logger = logging.getLogger(__name__)


class AsyncWebservice(_WebserviceBase):
    """Asynchronous dispatcher for the Festivals web service.

    Takes the same arguments as
    :class:`~festivals_api.client.webservice.Webservice`, except that
    *transport* must be an :class:`httpx.AsyncBaseTransport`. Must be closed
    with :meth:`aclose` or used as an async context manager.

    Example::

        async with AsyncWebservice(base_url, key, cache=cache) as service:
            festivals = await service.fetch("festival", includes=["image"])
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        jwt: Optional[str] = None,
        trust: Optional[TrustEvaluator] = None,
        cache: Optional[ResponseCache] = None,
        request: Optional[RequestConfig] = None,
        use_cold_cache: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            base_url,
            api_key,
            jwt=jwt,
            trust=trust,
            cache=cache,
            request=request,
            use_cold_cache=use_cold_cache,
        )
        event_hooks = {"response": [self._check_response]} if trust is not None else {}
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self.headers(),
            timeout=self._request.timeout,
            verify=self._verify(),
            transport=transport,
            event_hooks=event_hooks,
        )

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncWebservice:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP connection pool. The cache is left open."""
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def fetch(
        self,
        object_type: str,
        ids: Optional[Iterable[int]] = None,
        includes: Optional[Iterable[str]] = None,
    ) -> list[Any]:
        """Fetch objects of *object_type*, optionally filtered by ID."""
        return await self._read(fetch_query(object_type, ids, includes))

    async def search(self, object_type: str, name: str) -> list[Any]:
        return await self._read(search_query(object_type, name))

    async def fetch_resource(
        self,
        resource: str,
        object_type: str,
        object_id: int,
        includes: Optional[Iterable[str]] = None,
    ) -> list[Any]:
        return await self._read(
            fetch_resource_query(resource, object_type, object_id, includes)
        )

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    async def create(self, object_type: str, body: JSONRecord) -> JSONRecord:
        records = await self._mutate(create_query(object_type, body))
        return single_record(records, f"The created {object_type}")

    async def update(self, object_type: str, object_id: int, body: JSONRecord) -> JSONRecord:
        records = await self._mutate(update_query(object_type, object_id, body))
        return single_record(records, f"{object_type} {object_id}")

    async def delete(self, object_type: str, object_id: int) -> None:
        await self._mutate(delete_query(object_type, object_id))

    async def set_resource(
        self, resource: str, resource_id: int, object_type: str, object_id: int
    ) -> None:
        await self._mutate(set_resource_query(resource, resource_id, object_type, object_id))

    async def remove_resource(
        self, resource: str, resource_id: int, object_type: str, object_id: int
    ) -> None:
        await self._mutate(
            remove_resource_query(resource, resource_id, object_type, object_id)
        )

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    async def _check_response(self, response: httpx.Response) -> None:
        assert self._trust is not None
        self._trust.check_response(response)

    async def _read(self, query: Query) -> list[Any]:
        key = self.cache_key(query)
        cached = await self._cached_records(key, query)
        if cached is not None:
            return cached

        response = await self._send(query)
        records = decode_response(response)
        self._store(key, query, response.content)
        return records

    async def _cached_records(self, key: str, query: Query) -> Optional[list[Any]]:
        if self._cache is None:
            return None
        payload = self._cache.get(CacheTier.HOT, key)
        if payload is not None:
            return self._decode_cached(key, payload, CacheTier.HOT)
        if not self._use_cold_cache:
            return None
        payload = await asyncio.wrap_future(self._cache.fetch_cold(key))
        if payload is None:
            return None
        records = self._decode_cached(key, payload, CacheTier.COLD)
        if records is not None:
            self._promote(key, query, payload)
        return records

    async def _mutate(self, query: Query) -> list[Any]:
        records = decode_response(await self._send(query))
        self._invalidate(query)
        return records

    async def _send(self, query: Query) -> httpx.Response:
        """Send *query*, retrying reads on 5xx and transport errors."""
        attempts = self._attempts(query)
        for attempt in range(attempts):
            logger.debug("%s %s%s", query.method, self._base_url, query.path)
            try:
                response = await self._client.request(**self._request_kwargs(query))
            except TrustError as exc:
                raise self._request_failed(query, exc) from exc
            except httpx.TransportError as exc:
                if attempt + 1 < attempts:
                    delay = 2 ** attempt
                    logger.debug(
                        "Transport error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, attempts - 1,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise self._request_failed(query, exc) from exc

            if response.status_code >= 500 and attempt + 1 < attempts:
                delay = 2 ** attempt
                logger.debug(
                    "Server error %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, attempts - 1,
                )
                await asyncio.sleep(delay)
                continue
            return response

        raise RequestFailedError(f"{query.method} {query.path} failed")  # pragma: no cover
