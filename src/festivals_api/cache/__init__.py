"""Two-tier response caching for festivals_api.

This package provides :class:`ResponseCache`, which keeps raw response
payloads of read requests in a short-lived in-memory tier and a long-lived
on-disk tier. Entries are keyed by the full request URL; see
:mod:`festivals_api.cache.keys` for how that URL is normalised.

The cache is consumed by :class:`~festivals_api.client.webservice.Webservice`
and is controlled by the ``cache`` section of the client configuration
(:class:`~festivals_api.models.CacheConfig`).
"""

from festivals_api.cache.cache import CacheTier, ColdStore, ResponseCache
from festivals_api.cache.keys import cache_filename

__all__ = ["CacheTier", "ColdStore", "ResponseCache", "cache_filename"]
