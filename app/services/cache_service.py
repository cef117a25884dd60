# app/services/cache_service.py
"""
Hybrid two-tier cache for books and book lists.

Redis is the primary tier and an in-process map mirrors every write. Reads
try Redis first and fall back to the local map, so a Redis outage only costs
hit rate and never surfaces to callers.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Set

from app.core.cache import (
    BOOK_LIST_PATTERN,
    BOOK_PATTERN,
    BookStore,
    NoOpBookStore,
    book_key,
    book_list_key,
    is_book_list_key,
)
from app.core.config import settings
from app.core.exceptions import CacheMiss
from app.models.book_model import Book
from app.schemas.book_schema import BookFilter, BookListResponse


@dataclass(frozen=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    items: int = 0
    evictions: int = 0
    redis_hits: int = 0
    memory_hits: int = 0


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.monotonic() if now is None else now) > self.expires_at


class BookCache:
    """
    Read-through/write-through cache with a Redis tier and a local tier.

    Whether Redis is used is decided once, in ``start()``: a failed ping
    pins the instance to local-only mode. The expiry sweeper only runs in
    local-only mode; with Redis in front, expired local entries are removed
    lazily when read.
    """

    def __init__(
        self,
        store: Optional[BookStore] = None,
        ttl: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
    ):
        self._store: BookStore = store if store is not None else NoOpBookStore()
        self._use_redis = store is not None and not isinstance(store, NoOpBookStore)
        self._ttl = float(settings.CACHE_TTL_SECONDS if ttl is None else ttl)
        self._cleanup_interval = float(
            settings.CACHE_CLEANUP_INTERVAL if cleanup_interval is None else cleanup_interval
        )

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._redis_hits = 0
        self._memory_hits = 0
        self._stats_lock = threading.Lock()

        self._stop_event = asyncio.Event()
        self._sweeper: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._started = False
        self._closed = False
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @classmethod
    async def create(
        cls,
        store: Optional[BookStore] = None,
        ttl: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
    ) -> "BookCache":
        """Build a cache and run its startup probe."""
        cache = cls(store=store, ttl=ttl, cleanup_interval=cleanup_interval)
        await cache.start()
        return cache

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        if self._use_redis:
            try:
                await self._store.ping()
                self._logger.info("Redis tier available, running in hybrid mode")
            except Exception as e:
                self._logger.warning(
                    "Redis tier unavailable, falling back to local-only mode",
                    extra={"error": str(e)},
                )
                await self._close_store()
                self._store = NoOpBookStore()
                self._use_redis = False

        if not self._use_redis:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="book-cache-sweeper")

    @property
    def uses_redis(self) -> bool:
        return self._use_redis

    @property
    def ttl(self) -> float:
        return self._ttl

    # Single books

    async def get_book(self, book_id: Any) -> Optional[Book]:
        key = book_key(book_id)
        if self._use_redis:
            try:
                book = await self._store.get_book(key)
            except CacheMiss:
                pass
            except Exception as e:
                self._logger.warning(
                    "Redis read failed", extra={"key": key, "error": str(e)}
                )
            else:
                self._record_hit(redis=True)
                return book
        return self._get_local(key)

    async def set_book(self, book: Book) -> None:
        key = book_key(book.id)
        if self._use_redis:
            try:
                await self._store.set_book(key, book, self._redis_ttl())
            except Exception as e:
                self._logger.warning(
                    "Redis write failed", extra={"key": key, "error": str(e)}
                )
        self._set_local(key, book)

    # Book lists

    async def get_book_list(self, book_filter: BookFilter) -> Optional[BookListResponse]:
        key = book_list_key(book_filter)
        if self._use_redis:
            try:
                response = await self._store.get_book_list(key)
            except CacheMiss:
                pass
            except Exception as e:
                self._logger.warning(
                    "Redis read failed", extra={"key": key, "error": str(e)}
                )
            else:
                self._record_hit(redis=True)
                return response
        return self._get_local(key)

    async def set_book_list(
        self, book_filter: BookFilter, response: BookListResponse
    ) -> None:
        key = book_list_key(book_filter)
        if self._use_redis:
            try:
                await self._store.set_book_list(key, response, self._redis_ttl())
            except Exception as e:
                self._logger.warning(
                    "Redis write failed", extra={"key": key, "error": str(e)}
                )
        self._set_local(key, response)

    # Invalidation

    async def invalidate_book(self, book_id: Any) -> None:
        """Drop one book and every cached list it might appear in."""
        key = book_key(book_id)
        if self._use_redis:
            try:
                await self._store.delete_book(key)
            except Exception as e:
                self._logger.warning(
                    "Redis delete failed", extra={"key": key, "error": str(e)}
                )
        with self._lock:
            self._entries.pop(key, None)
        await self.invalidate_lists()

    async def invalidate_lists(self) -> None:
        if self._use_redis:
            try:
                await self._store.delete_by_pattern(BOOK_LIST_PATTERN)
            except Exception as e:
                self._logger.warning(
                    "Redis pattern delete failed",
                    extra={"pattern": BOOK_LIST_PATTERN, "error": str(e)},
                )
        with self._lock:
            for key in [k for k in self._entries if is_book_list_key(k)]:
                del self._entries[key]

    async def clear(self) -> None:
        """Empty the local tier now and flush the Redis namespaces in the background."""
        if self._use_redis:
            task = asyncio.create_task(self._flush_store())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        with self._lock:
            self._entries.clear()

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._stop_event.set()
        if self._sweeper is not None:
            await self._sweeper
            self._sweeper = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self._close_store()
        self._logger.info("Book cache shut down")

    # Introspection

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        items = self.size()
        with self._stats_lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                items=items,
                evictions=self._evictions,
                redis_hits=self._redis_hits,
                memory_hits=self._memory_hits,
            )

    def info(self) -> Dict[str, Any]:
        stats = self.stats()
        lookups = stats.hits + stats.misses
        return {
            "type": "hybrid",
            "redis_enabled": self._use_redis,
            "hit_rate": stats.hits / lookups if lookups else 0.0,
            "size": stats.items,
            "ttl_seconds": self._ttl,
            **asdict(stats),
        }

    def evict_expired(self) -> int:
        """Remove expired local entries. Returns how many were removed."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            with self._stats_lock:
                self._evictions += len(expired)
        return len(expired)

    # Private Helper Methods

    def _redis_ttl(self) -> int:
        return max(1, math.ceil(self._ttl))

    def _get_local(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            self._record_miss()
            return None

        if entry.is_expired():
            asyncio.get_running_loop().call_soon(self._delete_if_expired, key)
            self._record_miss()
            return None

        self._record_hit(redis=False)
        return entry.value

    def _set_local(self, key: str, value: Any) -> None:
        entry = CacheEntry(value=value, expires_at=time.monotonic() + self._ttl)
        with self._lock:
            self._entries[key] = entry

    def _delete_if_expired(self, key: str) -> None:
        # The key may have been rewritten since the expired read.
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired():
                del self._entries[key]

    def _record_hit(self, redis: bool) -> None:
        with self._stats_lock:
            self._hits += 1
            if redis:
                self._redis_hits += 1
            else:
                self._memory_hits += 1

    def _record_miss(self) -> None:
        with self._stats_lock:
            self._misses += 1

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._cleanup_interval)
            except asyncio.TimeoutError:
                removed = self.evict_expired()
                if removed:
                    self._logger.debug("Evicted expired entries", extra={"count": removed})

    async def _flush_store(self) -> None:
        for pattern in (BOOK_PATTERN, BOOK_LIST_PATTERN):
            try:
                await self._store.delete_by_pattern(pattern)
            except Exception as e:
                self._logger.warning(
                    "Redis flush failed", extra={"pattern": pattern, "error": str(e)}
                )

    async def _close_store(self) -> None:
        try:
            await self._store.close()
        except Exception as e:
            self._logger.warning("Closing Redis tier failed", extra={"error": str(e)})
