"""Request dispatcher for the Festivals web service.

This module provides :class:`Webservice`, the blocking dispatcher used by
the entity handlers and the ``festivals`` CLI. It wraps
:class:`httpx.Client` and layers on:

- **Mutual TLS** -- when a :class:`~festivals_api.tls.TrustEvaluator` is
  given, connections trust only its pinned root and present its client
  identity; the peer chain is re-evaluated on every response.
- **Response caching** -- reads consult the hot tier, then the cold tier,
  of a :class:`~festivals_api.cache.ResponseCache` before touching the
  network, and successful responses are stored in both tiers.
- **Invalidation on mutation** -- a successful create, update, delete, set
  or remove evicts every cached read tagged with the object types involved,
  including reads cached by earlier processes on the same directory.
- **Retry with backoff** -- reads retry on 5xx and transport errors with
  exponential delay (1 s, 2 s, 4 s, ...). Mutations are sent once.

Error mapping: no response at all (network, timeout, TLS rejection) raises
:class:`~festivals_api.exceptions.RequestFailedError`; a response with an
unusable envelope or a non-2xx status raises
:class:`~festivals_api.exceptions.ServiceError`.

See Also:
    :class:`~festivals_api.client.async_webservice.AsyncWebservice` for the
    non-blocking equivalent.
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Any, Iterable, Optional, Union

import httpx

from festivals_api.cache import CacheTier, ResponseCache
from festivals_api.cache.keys import make_cache_key
from festivals_api.client.envelope import decode_envelope, decode_response, single_record
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
from festivals_api.exceptions import RequestFailedError, ServiceError, TrustError
from festivals_api.models import RequestConfig
from festivals_api.tls import TrustEvaluator

logger = logging.getLogger(__name__)

JSONRecord = dict[str, Any]


def _related_type(name: str) -> str:
    """Map a resource or include name (``events``, ``place``) to its object type."""
    return name[:-1] if name.endswith("s") else name


class _WebserviceBase:
    """State and helpers shared by the blocking and the async dispatcher."""

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
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._jwt = jwt
        self._trust = trust
        self._cache = cache
        self._request = request or RequestConfig()
        self._use_cold_cache = use_cold_cache

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self._cache

    @property
    def trust(self) -> Optional[TrustEvaluator]:
        return self._trust

    def headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        headers = {"API-KEY": self._api_key, "Accept": "application/json"}
        if self._jwt:
            headers["Authorization"] = f"Bearer {self._jwt}"
        return headers

    def cache_key(self, query: Query) -> str:
        """Return the cache key of a read *query*: the full request URL."""
        return make_cache_key(self._base_url, query.path)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _verify(self) -> Union[ssl.SSLContext, bool]:
        if self._trust is None:
            return True
        return self._trust.ssl_context()

    def _request_kwargs(self, query: Query) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"method": query.method, "url": query.path}
        if query.body is not None:
            kwargs["json"] = query.body
            kwargs["headers"] = {"Content-Type": "application/json"}
        return kwargs

    def _attempts(self, query: Query) -> int:
        return self._request.max_retries + 1 if query.is_read else 1

    def _decode_cached(self, key: str, payload: bytes, tier: CacheTier) -> Optional[list[Any]]:
        """Decode a cached payload, dropping the entry when it no longer decodes."""
        assert self._cache is not None
        try:
            records = decode_envelope(payload)
        except ServiceError as exc:
            logger.warning("Discarding undecodable %s cache entry for %s: %s", tier.value, key, exc)
            self._cache.remove(key)
            return None
        logger.debug("Serving %s from the %s cache", key, tier.value)
        return records

    def _read_tags(self, query: Query) -> set[str]:
        """Object types a read touches: its own, the resource's and every include's."""
        types = {query.object_type}
        if query.resource:
            types.add(_related_type(query.resource))
        types.update(_related_type(name) for name in query.includes)
        return types

    def _store(self, key: str, query: Query, payload: bytes) -> None:
        if self._cache is None:
            return
        self._cache.put(payload, key, tags=self._read_tags(query))

    def _promote(self, key: str, query: Query, payload: bytes) -> None:
        assert self._cache is not None
        self._cache.promote(payload, key, tags=self._read_tags(query))

    def _invalidate(self, query: Query) -> None:
        """Evict every cached read touching the object types a mutation changed."""
        if self._cache is None:
            return
        types = {query.object_type}
        if query.resource:
            types.add(_related_type(query.resource))
        self._cache.invalidate(types)
        logger.debug(
            "Invalidated cached reads of %s after %s %s",
            ", ".join(sorted(types)), query.method, query.path,
        )

    def _request_failed(self, query: Query, exc: Exception) -> RequestFailedError:
        return RequestFailedError(f"{query.method} {query.path} failed: {exc}")


class Webservice(_WebserviceBase):
    """Blocking dispatcher for the Festivals web service.

    Object types are passed in their singular form (``"festival"``,
    ``"artist"``); paths pluralise them. Read operations return the list of
    raw records from the ``data`` member of the response envelope.

    Args:
        base_url: Service base URL, e.g. ``https://api.festivalsapp.org``.
        api_key: Value of the ``API-KEY`` header.
        jwt: Optional user token sent as ``Authorization: Bearer``.
        trust: Mutual-TLS evaluator. When ``None`` the platform defaults
            apply (used with plain test servers only).
        cache: Response cache for reads. When ``None`` every read goes to
            the network.
        request: Timeout and retry settings.
        use_cold_cache: Consult the disk tier after a hot miss.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`.

    Example::

        with Webservice("https://api.festivalsapp.org", key, cache=cache) as service:
            festivals = service.fetch("festival", ids=[1, 2], includes=["image"])
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
        transport: Optional[httpx.BaseTransport] = None,
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
        event_hooks = {"response": [trust.check_response]} if trust is not None else {}
        self._client = httpx.Client(
            base_url=self._base_url,
            headers=self.headers(),
            timeout=self._request.timeout,
            verify=self._verify(),
            transport=transport,
            event_hooks=event_hooks,
        )

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> Webservice:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP connection pool. The cache is left open."""
        self._client.close()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def fetch(
        self,
        object_type: str,
        ids: Optional[Iterable[int]] = None,
        includes: Optional[Iterable[str]] = None,
    ) -> list[Any]:
        """Fetch objects of *object_type*, optionally filtered by ID.

        Args:
            object_type: Singular object type.
            ids: IDs to fetch. ``None`` fetches every object.
            includes: Related objects to embed in each record.

        Returns:
            The raw records.

        Raises:
            RequestFailedError: If no response was obtained.
            ServiceError: If the response envelope is unusable.
        """
        return self._read(fetch_query(object_type, ids, includes))

    def search(self, object_type: str, name: str) -> list[Any]:
        """Fetch objects of *object_type* whose name matches *name*."""
        return self._read(search_query(object_type, name))

    def fetch_resource(
        self,
        resource: str,
        object_type: str,
        object_id: int,
        includes: Optional[Iterable[str]] = None,
    ) -> list[Any]:
        """Fetch the *resource* related to object *object_id*."""
        return self._read(fetch_resource_query(resource, object_type, object_id, includes))

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def create(self, object_type: str, body: JSONRecord) -> JSONRecord:
        """Create an object and return the record the service created.

        Raises:
            RecordDoesNotExistError: If the service returned no record.
        """
        records = self._mutate(create_query(object_type, body))
        return single_record(records, f"The created {object_type}")

    def update(self, object_type: str, object_id: int, body: JSONRecord) -> JSONRecord:
        """Update object *object_id* and return the updated record."""
        records = self._mutate(update_query(object_type, object_id, body))
        return single_record(records, f"{object_type} {object_id}")

    def delete(self, object_type: str, object_id: int) -> None:
        self._mutate(delete_query(object_type, object_id))

    def set_resource(
        self, resource: str, resource_id: int, object_type: str, object_id: int
    ) -> None:
        """Link *resource* *resource_id* to object *object_id*."""
        self._mutate(set_resource_query(resource, resource_id, object_type, object_id))

    def remove_resource(
        self, resource: str, resource_id: int, object_type: str, object_id: int
    ) -> None:
        """Unlink *resource* *resource_id* from object *object_id*."""
        self._mutate(remove_resource_query(resource, resource_id, object_type, object_id))

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    def _read(self, query: Query) -> list[Any]:
        key = self.cache_key(query)
        cached = self._cached_records(key, query)
        if cached is not None:
            return cached

        response = self._send(query)
        records = decode_response(response)
        self._store(key, query, response.content)
        return records

    def _cached_records(self, key: str, query: Query) -> Optional[list[Any]]:
        if self._cache is None:
            return None
        payload = self._cache.get(CacheTier.HOT, key)
        if payload is not None:
            return self._decode_cached(key, payload, CacheTier.HOT)
        if not self._use_cold_cache:
            return None
        payload = self._cache.get(CacheTier.COLD, key)
        if payload is None:
            return None
        records = self._decode_cached(key, payload, CacheTier.COLD)
        if records is not None:
            self._promote(key, query, payload)
        return records

    def _mutate(self, query: Query) -> list[Any]:
        records = decode_response(self._send(query))
        self._invalidate(query)
        return records

    def _send(self, query: Query) -> httpx.Response:
        """Send *query*, retrying reads on 5xx and transport errors.

        The delay doubles each attempt: 1 s, 2 s, 4 s, ...
        """
        attempts = self._attempts(query)
        for attempt in range(attempts):
            logger.debug("%s %s%s", query.method, self._base_url, query.path)
            try:
                response = self._client.request(**self._request_kwargs(query))
            except TrustError as exc:
                raise self._request_failed(query, exc) from exc
            except httpx.TransportError as exc:
                if attempt + 1 < attempts:
                    delay = 2 ** attempt
                    logger.debug(
                        "Transport error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, attempts - 1,
                    )
                    time.sleep(delay)
                    continue
                raise self._request_failed(query, exc) from exc

            if response.status_code >= 500 and attempt + 1 < attempts:
                delay = 2 ** attempt
                logger.debug(
                    "Server error %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, attempts - 1,
                )
                time.sleep(delay)
                continue
            return response

        raise RequestFailedError(f"{query.method} {query.path} failed")  # pragma: no cover
