# tests/core/test_cache_store.py
import hashlib
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.cache import (
    BOOK_LIST_PATTERN,
    BookStore,
    NoOpBookStore,
    RedisBookStore,
    book_key,
    book_list_key,
    is_book_list_key,
)
from app.core.exceptions import CacheMiss
from app.models.book_model import Book
from app.schemas.book_schema import BookFilter, BookListResponse, BookResponse


# ==================== key TESTS ====================


def test_book_key_format():
    book_id = uuid.UUID("6f1c2d7e-2b0a-4c55-9d1e-0a5b8e3c4f21")
    assert book_key(book_id) == "book:6f1c2d7e-2b0a-4c55-9d1e-0a5b8e3c4f21"


def test_list_key_hashes_canonical_filter_string():
    book_filter = BookFilter(author="Tolkien", genre="Fantasy", available=True, limit=10, offset=5)
    expected = hashlib.md5(
        b"author:Tolkien|genre:Fantasy|language:|available:true|limit:10|offset:5"
    ).hexdigest()

    assert book_list_key(book_filter) == f"books:{expected}"


def test_list_key_leaves_unset_availability_empty():
    expected = hashlib.md5(
        b"author:|genre:|language:|available:|limit:50|offset:0"
    ).hexdigest()

    assert book_list_key(BookFilter(limit=50)) == f"books:{expected}"


def test_list_key_is_deterministic():
    first = BookFilter(language="English", available=False, limit=20)
    second = BookFilter(available=False, limit=20, language="English")

    assert book_list_key(first) == book_list_key(second)


def test_list_keys_differ_by_any_field():
    base = BookFilter(limit=50)
    variants = [
        BookFilter(author="a", limit=50),
        BookFilter(genre="a", limit=50),
        BookFilter(language="a", limit=50),
        BookFilter(available=True, limit=50),
        BookFilter(available=False, limit=50),
        BookFilter(limit=51),
        BookFilter(limit=50, offset=1),
    ]
    keys = {book_list_key(base)} | {book_list_key(v) for v in variants}

    assert len(keys) == len(variants) + 1


def test_list_and_book_namespaces_are_distinct():
    assert is_book_list_key(book_list_key(BookFilter()))
    assert not is_book_list_key(book_key(uuid.uuid4()))


# ==================== RedisBookStore TESTS ====================


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_redis_get_book_missing_key_raises_cache_miss(redis_client: MagicMock):
    store = RedisBookStore(redis_client)

    with pytest.raises(CacheMiss):
        await store.get_book("book:missing")


@pytest.mark.asyncio
async def test_redis_get_book_restores_field_types(
    redis_client: MagicMock, sample_book: Book
):
    redis_client.get.return_value = sample_book.model_dump_json()
    store = RedisBookStore(redis_client)

    book = await store.get_book(book_key(sample_book.id))

    assert isinstance(book.id, uuid.UUID)
    assert isinstance(book.created_at, datetime)
    assert book.model_dump() == sample_book.model_dump()


@pytest.mark.asyncio
async def test_redis_set_book_uses_ttl(redis_client: MagicMock, sample_book: Book):
    store = RedisBookStore(redis_client)

    await store.set_book("book:1", sample_book, 300)

    redis_client.set.assert_awaited_once()
    args, kwargs = redis_client.set.call_args
    assert args[0] == "book:1"
    assert kwargs["ex"] == 300


@pytest.mark.asyncio
async def test_redis_book_list_round_trip(redis_client: MagicMock, sample_book: Book):
    response = BookListResponse(
        books=[BookResponse.model_validate(sample_book)], total=1, limit=50, offset=0
    )
    store = RedisBookStore(redis_client)

    await store.set_book_list("books:abc", response, 300)
    stored_json = redis_client.set.call_args.args[1]
    redis_client.get.return_value = stored_json

    restored = await store.get_book_list("books:abc")

    assert restored == response


@pytest.mark.asyncio
async def test_redis_delete_by_pattern_scans_then_deletes(redis_client: MagicMock):
    async def scan(match):
        for key in ("books:1", "books:2"):
            yield key

    redis_client.scan_iter = MagicMock(side_effect=scan)
    redis_client.delete = AsyncMock(return_value=2)
    store = RedisBookStore(redis_client)

    deleted = await store.delete_by_pattern(BOOK_LIST_PATTERN)

    assert deleted == 2
    redis_client.scan_iter.assert_called_once_with(match=BOOK_LIST_PATTERN)
    redis_client.delete.assert_awaited_once_with("books:1", "books:2")


@pytest.mark.asyncio
async def test_redis_delete_by_pattern_without_matches(redis_client: MagicMock):
    async def scan(match):
        return
        yield

    redis_client.scan_iter = MagicMock(side_effect=scan)
    store = RedisBookStore(redis_client)

    assert await store.delete_by_pattern(BOOK_LIST_PATTERN) == 0
    redis_client.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_errors_propagate(redis_client: MagicMock):
    redis_client.get.side_effect = ConnectionError("down")
    store = RedisBookStore(redis_client)

    with pytest.raises(ConnectionError):
        await store.get_book("book:1")


# ==================== NoOpBookStore TESTS ====================


@pytest.mark.asyncio
async def test_noop_store_always_misses(sample_book: Book):
    store = NoOpBookStore()

    await store.set_book("book:1", sample_book, 300)

    with pytest.raises(CacheMiss):
        await store.get_book("book:1")
    with pytest.raises(CacheMiss):
        await store.get_book_list("books:1")
    assert await store.delete_by_pattern(BOOK_LIST_PATTERN) == 0
    assert await store.ping() is True


def test_stores_satisfy_protocol(redis_client: MagicMock):
    assert isinstance(NoOpBookStore(), BookStore)
    assert isinstance(RedisBookStore(redis_client), BookStore)
