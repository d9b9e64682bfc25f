"""
Named, TTL-keyed in-process caches.

Each named cache has its own max age and lock; each key has its own lock
so unrelated keys never contend. The per-cache lock doubles as a named
mutex for code that needs process-wide exclusion.

Usage:
    from deployer.cache import NamedCache, HOUR

    cache = NamedCache()

    # Sets up a cache called 'bladeserver-123' with a 1200 second ttl
    cache.setup("bladeserver-123", 1200)
    cache.write("bladeserver-123", "network_config", config)
    cache.read("bladeserver-123", "network_config")

    # Compute on miss, the key is locked while the factory runs
    cache.read_or_set("bladeserver-123", "facts", factory=lambda: fetch_facts())

    # Named mutex
    cache.setup("switch_config", DAY)
    cache.synchronize("switch_config", configure_switches)

Lock order is always directory lock -> cache lock -> key lock.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

from deployer.errors import CacheExpiredError, CacheKeyNotFoundError, UnknownCacheError
from deployer.timestamps import monotonic

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = MINUTE * 60
DAY = HOUR * 24
WEEK = DAY * 7

_MISSING = object()


@dataclass
class CacheEntry:
    """A single cached value and its bookkeeping."""

    created_at: float
    lock: threading.Lock = field(default_factory=threading.Lock)
    value: Any = _MISSING

    @property
    def has_value(self) -> bool:
        return self.value is not _MISSING


@dataclass
class _Cache:
    """One named cache: its lock, max age and key directory."""

    max_age: float
    lock: threading.RLock = field(default_factory=threading.RLock)
    entries: Dict[Hashable, CacheEntry] = field(default_factory=dict)


class NamedCache:
    """
    Manages a selection of named caches and their contents.

    Values are deep-copied on the way in and on the way out, so callers
    can mutate what they get back without corrupting the cache.

    A background thread evicts expired keys every gc_interval seconds.
    Pass start_gc=False to manage GC manually (tests do this).
    """

    def __init__(
        self,
        gc_interval: float = 60.0,
        start_gc: bool = True,
        clock: Callable[[], float] = monotonic,
        default_ttl: float = HOUR,
    ):
        self.default_ttl = float(default_ttl)
        self._directory_lock = threading.Lock()
        self._caches: Dict[Hashable, _Cache] = {}
        self._clock = clock
        self.gc_interval = gc_interval
        self.gc_count = 0

        self._stop_event = threading.Event()
        self._gc_thread: Optional[threading.Thread] = None
        if start_gc:
            self.start_gc()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_gc(self) -> threading.Thread:
        """Start the background GC thread if it is not already running."""
        if self._gc_thread is not None and self._gc_thread.is_alive():
            return self._gc_thread

        self._stop_event.clear()
        self._gc_thread = threading.Thread(
            target=self._gc_loop,
            name="named-cache-gc",
            daemon=True,
        )
        self._gc_thread.start()
        return self._gc_thread

    def stop_gc(self, timeout: Optional[float] = None) -> None:
        """Stop the background GC thread."""
        self._stop_event.set()
        if self._gc_thread is not None:
            self._gc_thread.join(timeout)
            self._gc_thread = None

    @classmethod
    def from_settings(cls, settings, start_gc: bool = True) -> "NamedCache":
        """Build a cache from OrchestratorSettings."""
        return cls(
            gc_interval=settings.cache.gc_interval,
            start_gc=start_gc,
            default_ttl=settings.cache.default_ttl,
        )

    def _gc_loop(self) -> None:
        """Wake every gc_interval seconds and evict expired keys."""
        while not self._stop_event.wait(self.gc_interval):
            try:
                if self.gc_count % 30 == 0:
                    logger.debug(f"Starting cache GC iteration {self.gc_count}")
                self.gc()
                if self.gc_count % 30 == 0:
                    logger.debug(f"Finished cache GC iteration {self.gc_count}")
            except Exception as e:
                logger.warning(f"Cache GC failed: {type(e).__name__}: {e}")

            self.gc_count += 1

    # =========================================================================
    # Garbage Collection
    # =========================================================================

    def gc(self) -> int:
        """
        Evict expired keys from every known cache.

        Returns:
            Number of keys evicted
        """
        with self._directory_lock:
            names = list(self._caches)

        return sum(self.gc_cache(name) for name in names)

    def gc_cache(self, name: Hashable) -> int:
        """Evict expired keys from one cache."""
        cache = self._get_cache(name)
        evicted = 0

        with cache.lock:
            for key in list(cache.entries):
                if self._entry_ttl(cache, cache.entries[key]) <= 0:
                    del cache.entries[key]
                    evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} expired keys from cache {name!r}")
        return evicted

    # =========================================================================
    # Cache Directory
    # =========================================================================

    def setup(self, name: Hashable, ttl: Optional[float] = None) -> None:
        """
        Create a named cache. Calling it again for the same name is a no-op.

        Args:
            name: Unique cache name
            ttl: Default lifetime in seconds of items in this cache,
                the cache-wide default_ttl when omitted
        """
        if ttl is None:
            ttl = self.default_ttl
        with self._directory_lock:
            if name in self._caches:
                return
            self._caches[name] = _Cache(max_age=float(ttl))

        logger.debug(f"Created cache {name!r} with ttl {ttl}s")

    def has_cache(self, name: Hashable) -> bool:
        with self._directory_lock:
            return name in self._caches

    def cache_names(self) -> List[Hashable]:
        with self._directory_lock:
            return list(self._caches)

    def max_age(self, name: Hashable) -> float:
        return self._get_cache(name).max_age

    def _get_cache(self, name: Hashable) -> _Cache:
        with self._directory_lock:
            cache = self._caches.get(name)
        if cache is None:
            raise UnknownCacheError(f"No cache called {name!r}")
        return cache

    def _ensure_entry(self, cache: _Cache, key: Hashable) -> CacheEntry:
        with cache.lock:
            entry = cache.entries.get(key)
            if entry is None:
                entry = CacheEntry(created_at=self._clock())
                cache.entries[key] = entry
            return entry

    def _entry_ttl(self, cache: _Cache, entry: CacheEntry) -> float:
        return cache.max_age - (self._clock() - entry.created_at)

    def _store(self, cache: _Cache, key: Hashable, entry: CacheEntry) -> None:
        """Put a freshly stored entry back if a GC sweep dropped it while it was being written."""
        with cache.lock:
            if cache.entries.get(key) is not entry:
                cache.entries[key] = entry

    # =========================================================================
    # Reads and Writes
    # =========================================================================

    def write(self, name: Hashable, key: Hashable, value: Any) -> Any:
        """
        Store a value, resetting the key's creation time.

        Raises:
            UnknownCacheError: when the cache was never set up

        Returns:
            The value stored
        """
        cache = self._get_cache(name)
        entry = self._ensure_entry(cache, key)

        with entry.lock:
            entry.value = copy.deepcopy(value)
            entry.created_at = self._clock()

        self._store(cache, key, entry)
        return value

    def read(self, name: Hashable, key: Hashable) -> Any:
        """
        Read a copy of a stored value.

        Raises:
            UnknownCacheError: when the cache was never set up
            CacheKeyNotFoundError: when the key does not exist
            CacheExpiredError: when the key's TTL has lapsed
        """
        cache = self._get_cache(name)

        with cache.lock:
            entry = cache.entries.get(key)
            if entry is None or not entry.has_value:
                raise CacheKeyNotFoundError(f"No item called {key!r} for cache {name!r}")
            if self._entry_ttl(cache, entry) <= 0:
                raise CacheExpiredError(f"Cache for item {key!r} on cache {name!r} has expired")

        with entry.lock:
            return copy.deepcopy(entry.value)

    def read_or_set(
        self,
        name: Hashable,
        key: Hashable,
        value: Any = None,
        factory: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Read a key, storing value (or the factory's result) when missing or expired.

        The key is locked while the factory runs, other keys stay available.
        The factory is only called on a miss.

        Returns:
            A copy of the stored value
        """
        cache = self._get_cache(name)
        entry = self._ensure_entry(cache, key)

        with entry.lock:
            stored = not entry.has_value or self._entry_ttl(cache, entry) <= 0
            if stored:
                new_value = factory() if value is None and factory is not None else value
                entry.value = copy.deepcopy(new_value)
                entry.created_at = self._clock()

            result = copy.deepcopy(entry.value)

        if stored:
            self._store(cache, key, entry)
        return result

    def ttl(self, name: Hashable, key: Hashable) -> float:
        """
        Seconds until a key expires, negative when already expired.

        Raises:
            UnknownCacheError: when the cache was never set up
            CacheKeyNotFoundError: when the key does not exist
        """
        cache = self._get_cache(name)

        with cache.lock:
            entry = cache.entries.get(key)
            if entry is None or not entry.has_value:
                raise CacheKeyNotFoundError(f"No item called {key!r} for cache {name!r}")
            return self._entry_ttl(cache, entry)

    def evict(self, name: Hashable, key: Hashable) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed, False otherwise
        """
        cache = self._get_cache(name)

        with cache.lock:
            return cache.entries.pop(key, None) is not None

    def keys(self, name: Hashable) -> List[Hashable]:
        cache = self._get_cache(name)
        with cache.lock:
            return list(cache.entries)

    # =========================================================================
    # Named Mutex
    # =========================================================================

    def synchronize(self, name: Hashable, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run fn exclusively under the named cache's lock.

        Raises:
            UnknownCacheError: when the cache was never set up

        Returns:
            Whatever fn returns
        """
        cache = self._get_cache(name)

        with cache.lock:
            return fn(*args, **kwargs)
