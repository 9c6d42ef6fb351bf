"""Two-tier response cache for read requests.

The hot tier is a bounded in-memory LRU store with a short lifetime
(10 minutes by default). The cold tier is a directory of files, one per
cache key, with a long lifetime (7 days by default). Both tiers are keyed
by the full request URL (see :mod:`festivals_api.cache.keys`) and expire
independently: expiring a hot entry never touches the cold file and vice
versa.

Disk work never runs on the caller's thread. Every cold write, delete,
read, footprint scan and wipe is submitted to a single-thread executor
owned by the cache instance, so operations on one instance run in FIFO
order and two instances never contend. Disk failures are logged and
swallowed; the cache then behaves as if the entry were absent.

Cold records age from their modification time, which is stamped with the
cache clock when the record is written. Injecting a fake ``clock``
therefore controls both tiers in tests.

Entries may be stored with tags (the object types a response touches).
The tag index of the cold tier lives beside the records in
``index.json``, so :meth:`ResponseCache.invalidate` also evicts records
written by an earlier process on the same directory. Concurrent writers
in separate processes may drop each other's index updates; those records
then age out by lifetime only.

See Also:
    :class:`~festivals_api.models.CacheConfig` -- the Pydantic model that
    supplies lifetimes and capacity.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from festivals_api.cache.keys import cache_filename
from festivals_api.models import CacheConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]

INDEX_FILENAME = "index.json"


class CacheTier(str, enum.Enum):
    """The two storage tiers of :class:`ResponseCache`."""

    HOT = "hot"
    COLD = "cold"


@dataclass(frozen=True)
class CacheEntry:
    """A single in-memory cache entry."""

    key: str
    payload: bytes
    expires_at: float


class HotStore:
    """Bounded, thread-safe in-memory store with least-recently-used eviction.

    Entries pushed out by capacity are simply gone; callers cannot tell
    them apart from entries that were never stored.

    Args:
        max_entries: Number of entries kept before the least recently used
            one is evicted.
    """

    def __init__(self, max_entries: int = 512) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry
            self._entries.move_to_end(entry.key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def discard(self, key: str, entry: Optional[CacheEntry] = None) -> None:
        """Remove *key*; when *entry* is given, only if it is still the stored entry."""
        with self._lock:
            if entry is not None and self._entries.get(key) is not entry:
                return
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ColdStore:
    """Filesystem operations backing the cold tier.

    Only ever called from the cache's disk executor. Subclass and pass an
    instance to :class:`ResponseCache` to change how records hit the disk.

    Args:
        directory: Directory holding the ``*.cache`` files. Created lazily
            on the first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        """Return the deterministic file path for *key*."""
        return self.directory / cache_filename(key)

    def index_path(self) -> Path:
        """Return the path of the tag index file."""
        return self.directory / INDEX_FILENAME

    def write(self, path: Path, payload: bytes, created_at: float) -> None:
        """Atomically replace *path* with *payload* and stamp it with *created_at*.

        The payload goes to a temporary file in the same directory which is
        then renamed over *path*, so a concurrent reader sees either the old
        or the new record, never a partial one.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.utime(tmp_path, (created_at, created_at))
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def read(self, path: Path) -> bytes:
        return path.read_bytes()

    def created_at(self, path: Path) -> Optional[float]:
        """Return the record's creation timestamp, or ``None`` if it does not exist."""
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            return None

    def delete(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def files(self) -> Iterator[Path]:
        """Yield every regular file in the cache directory."""
        if not self.directory.is_dir():
            return
        for path in self.directory.iterdir():
            if path.is_file():
                yield path

    def allocated_size(self, path: Path) -> int:
        """Return the bytes allocated on disk for *path*."""
        stat = path.stat()
        blocks = getattr(stat, "st_blocks", None)
        if blocks is None:
            return stat.st_size
        return blocks * 512


class ResponseCache:
    """Hot (memory) plus cold (disk) cache for raw response payloads.

    The cache stores bytes, never decoded records. Decoding the
    ``{data: ...}`` envelope is the dispatcher's job.

    Args:
        directory: Directory for cold cache files.
        hot_lifetime: Seconds a hot entry stays valid. ``0`` means entries
            expire immediately.
        cold_lifetime: Seconds a cold record stays valid.
        max_hot_entries: Capacity of the hot tier.
        clock: Returns the current time in seconds since the epoch.
        store: Filesystem strategy for the cold tier. Defaults to a
            :class:`ColdStore` rooted at *directory*.

    Example::

        with ResponseCache("/tmp/festivals-cache") as cache:
            cache.put(b'{"data": []}', "https://api.example.com/festivals")
            hit = cache.get(CacheTier.HOT, "https://api.example.com/festivals")
    """

    def __init__(
        self,
        directory: str | Path,
        hot_lifetime: float = CacheConfig().hot_lifetime_seconds,
        cold_lifetime: float = CacheConfig().cold_lifetime_seconds,
        max_hot_entries: int = CacheConfig().max_hot_entries,
        clock: Clock = time.time,
        store: Optional[ColdStore] = None,
    ) -> None:
        self._hot_lifetime = hot_lifetime
        self._cold_lifetime = cold_lifetime
        self._clock = clock
        self._hot = HotStore(max_hot_entries)
        self._store = store if store is not None else ColdStore(directory)
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="festivals-api-cache"
        )
        self._closed = False
        # Tag -> keys this instance put or promoted; covers the hot tier.
        self._tags: dict[str, set[str]] = {}
        self._tags_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        directory: str | Path,
        clock: Clock = time.time,
    ) -> ResponseCache:
        """Build a cache from a :class:`~festivals_api.models.CacheConfig`.

        ``config.directory`` wins over *directory* when set.
        """
        return cls(
            Path(config.directory).expanduser() if config.directory else directory,
            hot_lifetime=config.hot_lifetime_seconds,
            cold_lifetime=config.cold_lifetime_seconds,
            max_hot_entries=config.max_hot_entries,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ResponseCache:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def directory(self) -> Path:
        """The cold tier directory."""
        return self._store.directory

    def cold_file_path(self, key: str) -> Path:
        """Return the file that holds (or would hold) the cold record for *key*."""
        return self._store.path_for(key)

    def get(self, tier: CacheTier, key: str) -> Optional[bytes]:
        """Return the payload cached for *key* in *tier*, or ``None``.

        Expired entries are evicted as a side effect. A cold lookup runs on
        the disk executor behind any queued writes for this instance and
        blocks until it completes.
        """
        if tier is CacheTier.HOT:
            return self._get_hot(key)
        return self.fetch_cold(key).result()

    def fetch_cold(self, key: str) -> Future[Optional[bytes]]:
        """Schedule a cold lookup for *key* and return its future."""
        return self._submit(self._read_cold, key, default=None)

    def put(self, payload: bytes, key: str, tags: Iterable[str] = ()) -> None:
        """Store *payload* under *key* in both tiers.

        The hot insert happens before this method returns. The cold write
        is queued on the disk executor and this method does not wait for it.

        Args:
            payload: Raw response body.
            key: Cache key.
            tags: Labels for :meth:`invalidate`, recorded in memory and in
                the on-disk index.
        """
        tags = frozenset(tags)
        now = self._clock()
        self._hot.set(CacheEntry(key, payload, now + self._hot_lifetime))
        self._tag(key, tags)
        self._submit(self._write_cold, key, payload, now, tags, default=None)

    def promote(self, payload: bytes, key: str, tags: Iterable[str] = ()) -> None:
        """Insert *payload* into the hot tier only.

        Used after a cold hit; the cold record keeps its original age and
        its entry in the on-disk index.
        """
        self._hot.set(CacheEntry(key, payload, self._clock() + self._hot_lifetime))
        self._tag(key, frozenset(tags))

    def invalidate(self, tags: Iterable[str]) -> Future[int]:
        """Evict every entry stored under any of *tags*, in both tiers.

        Hot entries are gone when this method returns. Cold records listed
        in the on-disk index, including those written by earlier instances,
        are deleted on the disk executor, so later cold lookups on this
        instance never see them.

        Returns:
            A future resolving to the number of cold records deleted.
        """
        tags = frozenset(tags)
        with self._tags_lock:
            keys: set[str] = set()
            for tag in tags:
                keys |= self._tags.pop(tag, set())
            for remaining in self._tags.values():
                remaining -= keys
        for key in keys:
            self._hot.discard(key)
        return self._submit(self._invalidate_cold, tags, default=0)

    def remove(self, key: str) -> None:
        """Evict *key* from the hot tier now and queue deletion of its cold file."""
        self._hot.discard(key)
        self._submit(self._delete_cold, key, default=None)

    def total_disk_footprint(self) -> Future[int]:
        """Return a future resolving to the bytes allocated by all cold files."""
        return self._submit(self._disk_footprint, default=0)

    def clear_all(self) -> Future[None]:
        """Drop the hot tier and return a future that completes once every cold file is deleted."""
        self._hot.clear()
        with self._tags_lock:
            self._tags.clear()
        return self._submit(self._clear_cold, default=None)

    def flush(self) -> None:
        """Block until every disk operation queued so far has finished."""
        self._submit(lambda: None, default=None).result()

    def stats(self) -> dict[str, Any]:
        """Return a snapshot of the cache state.

        Returns:
            A ``dict`` with ``hot_entries``, ``directory``,
            ``hot_lifetime_seconds`` and ``cold_lifetime_seconds``.
        """
        return {
            "hot_entries": len(self._hot),
            "directory": str(self.directory),
            "hot_lifetime_seconds": self._hot_lifetime,
            "cold_lifetime_seconds": self._cold_lifetime,
        }

    def close(self) -> None:
        """Wait for queued disk work and stop the executor. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------ #
    # Hot tier
    # ------------------------------------------------------------------ #

    def _get_hot(self, key: str) -> Optional[bytes]:
        entry = self._hot.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._hot.discard(key, entry)
            logger.debug("Hot cache entry expired for %s", key)
            return None
        logger.debug("Hot cache hit for %s", key)
        return entry.payload

    def _tag(self, key: str, tags: frozenset[str]) -> None:
        with self._tags_lock:
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    # ------------------------------------------------------------------ #
    # Cold tier (executor thread only)
    # ------------------------------------------------------------------ #

    def _submit(self, fn: Callable[..., T], *args: Any, default: T) -> Future[T]:
        """Queue *fn* on the disk executor, or resolve to *default* once closed."""
        if not self._closed:
            try:
                return self._executor.submit(fn, *args)
            except RuntimeError:
                # Lost a race with close().
                pass
        logger.debug("Response cache is closed; skipping disk operation")
        future: Future[T] = Future()
        future.set_result(default)
        return future

    def _read_cold(self, key: str) -> Optional[bytes]:
        path = self._store.path_for(key)
        try:
            created_at = self._store.created_at(path)
            if created_at is None:
                return None
            if self._clock() - created_at >= self._cold_lifetime:
                logger.debug("Cold cache record expired for %s", key)
                self._store.delete(path)
                return None
            payload = self._store.read(path)
        except OSError as exc:
            logger.debug("Cold cache read failed for %s: %s", key, exc)
            return None
        logger.debug("Cold cache hit for %s", key)
        return payload

    def _write_cold(
        self, key: str, payload: bytes, created_at: float, tags: frozenset[str] = frozenset()
    ) -> None:
        path = self._store.path_for(key)
        try:
            self._store.write(path, payload, created_at)
        except OSError as exc:
            logger.warning("Could not write cache file %s: %s", path, exc)
            return
        logger.debug("Wrote cache file %s", path)
        if not tags:
            return
        index = self._load_index()
        for tag in tags:
            index.setdefault(tag, set()).add(key)
        self._save_index(index)

    def _invalidate_cold(self, tags: frozenset[str]) -> int:
        index = self._load_index()
        keys: set[str] = set()
        for tag in tags:
            keys |= index.pop(tag, set())
        if not keys:
            return 0
        deleted = 0
        for key in sorted(keys):
            path = self._store.path_for(key)
            try:
                if self._store.created_at(path) is not None:
                    deleted += 1
                self._store.delete(path)
            except OSError as exc:
                logger.warning("Could not delete cache file %s: %s", path, exc)
        for tag in list(index):
            index[tag] -= keys
            if not index[tag]:
                del index[tag]
        self._save_index(index)
        logger.debug("Invalidated %d cold record(s) tagged %s", deleted, ", ".join(sorted(tags)))
        return deleted

    def _load_index(self) -> dict[str, set[str]]:
        """Read the tag index. A missing or unreadable index is empty."""
        path = self._store.index_path()
        try:
            if self._store.created_at(path) is None:
                return {}
            data = json.loads(self._store.read(path))
        except OSError as exc:
            logger.warning("Could not read cache index %s: %s", path, exc)
            return {}
        except ValueError as exc:
            logger.warning("Ignoring corrupt cache index %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring corrupt cache index %s", path)
            return {}
        return {
            str(tag): {key for key in keys if isinstance(key, str)}
            for tag, keys in data.items()
            if isinstance(keys, list)
        }

    def _save_index(self, index: dict[str, set[str]]) -> None:
        path = self._store.index_path()
        try:
            if not index:
                self._store.delete(path)
                return
            payload = json.dumps(
                {tag: sorted(keys) for tag, keys in index.items()}, sort_keys=True
            ).encode("utf-8")
            self._store.write(path, payload, self._clock())
        except OSError as exc:
            logger.warning("Could not write cache index %s: %s", path, exc)

    def _delete_cold(self, key: str) -> None:
        path = self._store.path_for(key)
        try:
            self._store.delete(path)
        except OSError as exc:
            logger.warning("Could not delete cache file %s: %s", path, exc)

    def _disk_footprint(self) -> int:
        total = 0
        try:
            for path in self._store.files():
                try:
                    total += self._store.allocated_size(path)
                except OSError:
                    # Deleted between listing and stat.
                    continue
        except OSError as exc:
            logger.warning("Could not scan cache directory %s: %s", self.directory, exc)
        return total

    def _clear_cold(self) -> None:
        try:
            paths = list(self._store.files())
        except OSError as exc:
            logger.warning("Could not scan cache directory %s: %s", self.directory, exc)
            return
        for path in paths:
            try:
                self._store.delete(path)
            except OSError as exc:
                logger.warning("Could not delete cache file %s: %s", path, exc)
