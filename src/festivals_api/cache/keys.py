"""Cache key derivation.

A cache key is the full URL of an idempotent read request. The URL is
built from the object type, the ID filter and the include list, so the
ID filter and include list are normalised first: IDs are de-duplicated
and sorted ascending, include names are split on commas, stripped,
de-duplicated and sorted. Two logically identical reads therefore always
produce byte-identical keys, whatever order the caller listed them in.

On disk a key is never used verbatim. Keys can exceed file name limits
and contain ``/``, ``?`` or ``&``, so cold cache files are named by the
SHA-256 of the key (:func:`cache_filename`).
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional

CACHE_FILE_SUFFIX = ".cache"


def normalize_ids(ids: Optional[Iterable[int]]) -> Optional[list[int]]:
    """Return *ids* de-duplicated and sorted, or ``None`` when no filter was given.

    An empty iterable is treated like ``None`` (no ID filter).
    """
    if ids is None:
        return None
    normalized = sorted({int(object_id) for object_id in ids})
    return normalized or None


def normalize_includes(includes: Optional[Iterable[str]]) -> Optional[list[str]]:
    """Return the include names de-duplicated and sorted, or ``None`` when empty.

    Entries that already contain a comma-joined list (``"artist,location"``)
    are split so that ``["artist,location"]`` and ``["location", "artist"]``
    normalise to the same value.
    """
    if includes is None:
        return None
    names: set[str] = set()
    for entry in includes:
        for name in str(entry).split(","):
            name = name.strip()
            if name:
                names.add(name)
    return sorted(names) or None


def make_cache_key(base_url: str, query: str) -> str:
    """Join the service base URL and a request query into a cache key."""
    return f"{base_url.rstrip('/')}{query}"


def cache_filename(key: str) -> str:
    """Return the stable on-disk file name for *key*."""
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{digest}{CACHE_FILE_SUFFIX}"
