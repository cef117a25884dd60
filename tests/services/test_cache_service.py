# tests/services/test_cache_service.py
import asyncio

import pytest

from app.core.cache import book_key, book_list_key
from app.models.book_model import Book
from app.schemas.book_schema import BookFilter, BookListResponse, BookResponse
from app.services.cache_service import BookCache
from tests.mocks.mock_book_store import FakeBookStore

# Mark all tests in this file as async
pytestmark = pytest.mark.asyncio


def _list_response(book: Book) -> BookListResponse:
    return BookListResponse(
        books=[BookResponse.model_validate(book)], total=1, limit=50, offset=0
    )


# ==================== single book TESTS ====================


async def test_set_then_get_hits_redis_tier(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    await book_cache.set_book(sample_book)

    cached = await book_cache.get_book(sample_book.id)

    assert cached is not None
    assert cached.id == sample_book.id
    assert book_key(sample_book.id) in fake_store.data
    stats = book_cache.stats()
    assert stats.hits == 1
    assert stats.redis_hits == 1
    assert stats.memory_hits == 0


async def test_set_writes_both_tiers(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    await book_cache.set_book(sample_book)

    assert fake_store.ttls[book_key(sample_book.id)] == 60
    assert book_cache.size() == 1


async def test_redis_read_failure_falls_back_to_local(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    await book_cache.set_book(sample_book)
    fake_store.fail_reads = True

    cached = await book_cache.get_book(sample_book.id)

    assert cached is not None
    assert cached.title == sample_book.title
    stats = book_cache.stats()
    assert stats.memory_hits == 1
    assert stats.redis_hits == 0


async def test_redis_write_failure_is_absorbed(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    fake_store.fail_writes = True

    await book_cache.set_book(sample_book)

    assert book_key(sample_book.id) not in fake_store.data
    cached = await book_cache.get_book(sample_book.id)
    assert cached is not None
    assert book_cache.stats().memory_hits == 1


async def test_unknown_book_is_a_miss(book_cache: BookCache, sample_book: Book):
    assert await book_cache.get_book(sample_book.id) is None
    stats = book_cache.stats()
    assert stats.misses == 1
    assert stats.hits == 0


# ==================== construction TESTS ====================


async def test_failed_ping_pins_local_only_mode(sample_book: Book):
    store = FakeBookStore()
    store.fail_ping = True
    cache = await BookCache.create(store=store, ttl=60, cleanup_interval=60)
    try:
        assert cache.uses_redis is False
        assert store.closed is True

        await cache.set_book(sample_book)
        # Recovering Redis later does not bring the tier back
        store.fail_ping = False
        cached = await cache.get_book(sample_book.id)

        assert cached is not None
        assert store.calls["set_book"] == 0
        assert store.calls["get_book"] == 0
        assert cache.stats().memory_hits == 1
    finally:
        await cache.shutdown()


async def test_cache_without_store_is_local_only(sample_book: Book):
    cache = await BookCache.create(ttl=60, cleanup_interval=60)
    try:
        assert cache.uses_redis is False
        await cache.set_book(sample_book)
        assert (await cache.get_book(sample_book.id)).id == sample_book.id
        assert cache.info()["redis_enabled"] is False
    finally:
        await cache.shutdown()


# ==================== expiry TESTS ====================


async def test_expired_entry_is_a_miss_and_removed(sample_book: Book):
    cache = await BookCache.create(ttl=0.05, cleanup_interval=60)
    try:
        await cache.set_book(sample_book)
        await asyncio.sleep(0.1)

        assert await cache.get_book(sample_book.id) is None
        assert cache.stats().misses == 1

        # Deletion is scheduled on the loop, not done inline
        await asyncio.sleep(0)
        assert cache.size() == 0
    finally:
        await cache.shutdown()


async def test_sweeper_evicts_expired_entries(sample_book: Book):
    cache = await BookCache.create(ttl=0.01, cleanup_interval=0.02)
    try:
        await cache.set_book(sample_book)
        await asyncio.sleep(0.15)

        assert cache.size() == 0
        assert cache.stats().evictions >= 1
    finally:
        await cache.shutdown()


async def test_evict_expired_keeps_live_entries(sample_book: Book):
    cache = BookCache(ttl=60, cleanup_interval=60)
    await cache.set_book(sample_book)

    assert cache.evict_expired() == 0
    assert cache.size() == 1


# ==================== list TESTS ====================


async def test_list_round_trip_is_keyed_by_filter(
    book_cache: BookCache, sample_book: Book
):
    book_filter = BookFilter(author="herbert", limit=10)
    await book_cache.set_book_list(book_filter, _list_response(sample_book))

    same = await book_cache.get_book_list(BookFilter(author="herbert", limit=10))
    other = await book_cache.get_book_list(BookFilter(author="herbert", limit=20))

    assert same is not None
    assert same.total == 1
    assert same.books[0].id == sample_book.id
    assert other is None


# ==================== invalidation TESTS ====================


async def test_invalidate_book_drops_book_and_lists(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    book_filter = BookFilter(limit=50)
    await book_cache.set_book(sample_book)
    await book_cache.set_book_list(book_filter, _list_response(sample_book))

    await book_cache.invalidate_book(sample_book.id)

    assert fake_store.data == {}
    assert book_cache.size() == 0
    assert await book_cache.get_book(sample_book.id) is None
    assert await book_cache.get_book_list(book_filter) is None


async def test_invalidate_book_is_idempotent(
    book_cache: BookCache, sample_book: Book
):
    await book_cache.set_book(sample_book)

    await book_cache.invalidate_book(sample_book.id)
    await book_cache.invalidate_book(sample_book.id)

    assert await book_cache.get_book(sample_book.id) is None


async def test_invalidate_lists_keeps_single_books(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    book_filter = BookFilter(limit=50)
    await book_cache.set_book(sample_book)
    await book_cache.set_book_list(book_filter, _list_response(sample_book))

    await book_cache.invalidate_lists()

    assert book_key(sample_book.id) in fake_store.data
    assert book_list_key(book_filter) not in fake_store.data
    assert book_cache.size() == 1


async def test_invalidation_survives_redis_failure(
    book_cache: BookCache, fake_store: FakeBookStore, sample_book: Book
):
    await book_cache.set_book(sample_book)
    fake_store.fail_writes = True
    fake_store.fail_reads = True

    await book_cache.invalidate_book(sample_book.id)

    assert await book_cache.get_book(sample_book.id) is None


async def test_clear_empties_local_now_and_redis_in_background(
    fake_store: FakeBookStore, sample_book: Book
):
    cache = await BookCache.create(store=fake_store, ttl=60, cleanup_interval=60)
    await cache.set_book(sample_book)
    await cache.set_book_list(BookFilter(limit=50), _list_response(sample_book))

    await cache.clear()
    assert cache.size() == 0

    # shutdown waits for the background flush
    await cache.shutdown()
    assert fake_store.data == {}
    assert fake_store.closed is True


# ==================== introspection TESTS ====================


async def test_info_reports_hybrid_cache(book_cache: BookCache, sample_book: Book):
    info = book_cache.info()
    assert info["type"] == "hybrid"
    assert info["redis_enabled"] is True
    assert info["hit_rate"] == 0.0
    assert info["ttl_seconds"] == 60

    await book_cache.set_book(sample_book)
    await book_cache.get_book(sample_book.id)
    await book_cache.get_book("missing-id")

    info = book_cache.info()
    assert info["hit_rate"] == 0.5
    assert info["size"] == 1


async def test_shutdown_is_safe_to_repeat(fake_store: FakeBookStore):
    cache = await BookCache.create(store=fake_store, ttl=60, cleanup_interval=60)

    await cache.shutdown()
    await cache.shutdown()

    assert fake_store.closed is True
