# app/core/cache.py
"""
External cache tier.

Key layout, the store contract the hybrid cache talks to, the Redis
implementation of that contract and a no-op stand-in used when Redis is
disabled.
"""

import hashlib
import json
import logging
import uuid
from typing import Any, List, Optional, Protocol, Type, TypeVar, runtime_checkable

from dateutil.parser import isoparse
from redis import asyncio as aioredis
from sqlmodel import SQLModel

from app.core.config import settings
from app.core.exceptions import CacheMiss
from app.models.book_model import Book
from app.schemas.book_schema import BookFilter, BookListResponse

logger = logging.getLogger(__name__)

# Cache key constants
BOOK_KEY_PREFIX = "book:"
BOOK_LIST_KEY_PREFIX = "books:"
BOOK_PATTERN = "book:*"
BOOK_LIST_PATTERN = "books:*"

ModelType = TypeVar("ModelType", bound=SQLModel)


def book_key(book_id: Any) -> str:
    return f"{BOOK_KEY_PREFIX}{book_id}"


def book_list_key(book_filter: BookFilter) -> str:
    """
    Cache key for a list query.

    The field order and separators are fixed so that keys stay compatible
    with other services sharing the same Redis.
    """
    available = "" if book_filter.available is None else str(book_filter.available).lower()
    filter_str = (
        f"author:{book_filter.author}|genre:{book_filter.genre}|"
        f"language:{book_filter.language}|available:{available}|"
        f"limit:{book_filter.limit}|offset:{book_filter.offset}"
    )
    digest = hashlib.md5(filter_str.encode("utf-8")).hexdigest()
    return f"{BOOK_LIST_KEY_PREFIX}{digest}"


def is_book_list_key(key: str) -> bool:
    return key.startswith(BOOK_LIST_KEY_PREFIX)


@runtime_checkable
class BookStore(Protocol):
    """
    Contract of the external cache tier.

    Getters raise ``CacheMiss`` when the key is absent; any other exception
    means the tier is unhealthy.
    """

    async def get_book(self, key: str) -> Book:
        ...

    async def set_book(self, key: str, book: Book, ttl: int) -> None:
        ...

    async def delete_book(self, key: str) -> None:
        ...

    async def get_book_list(self, key: str) -> BookListResponse:
        ...

    async def set_book_list(self, key: str, response: BookListResponse, ttl: int) -> None:
        ...

    async def delete_by_pattern(self, pattern: str) -> int:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


def get_redis_client(url: Optional[str] = None) -> aioredis.Redis:
    """Create a Redis client with bounded socket timeouts."""
    return aioredis.from_url(
        url or settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
    )


class RedisBookStore:
    """Redis implementation of ``BookStore``. Values are stored as JSON."""

    def __init__(self, client: aioredis.Redis):
        self._client = client

    @classmethod
    def create(cls, url: Optional[str] = None) -> "RedisBookStore":
        return cls(get_redis_client(url))

    def _coerce_types(self, data: dict, model_type: Type[ModelType]) -> dict:
        """
        Parse JSON strings back into the field types the model declares.
        Table models skip validation on construction, so this is done here.
        """
        for field_name, field_info in model_type.model_fields.items():
            value = data.get(field_name)
            if not isinstance(value, str):
                continue
            field_type = str(field_info.annotation)
            if "datetime" in field_type:
                try:
                    data[field_name] = isoparse(value)
                except (ValueError, TypeError):
                    logger.warning(
                        f"Could not parse date string '{value}' for field '{field_name}'."
                    )
            elif "UUID" in field_type:
                data[field_name] = uuid.UUID(value)
        return data

    async def get_book(self, key: str) -> Book:
        cached = await self._client.get(key)
        if cached is None:
            raise CacheMiss(key)
        return Book(**self._coerce_types(json.loads(cached), Book))

    async def set_book(self, key: str, book: Book, ttl: int) -> None:
        await self._client.set(key, book.model_dump_json(), ex=ttl)

    async def delete_book(self, key: str) -> None:
        await self._client.delete(key)

    async def get_book_list(self, key: str) -> BookListResponse:
        cached = await self._client.get(key)
        if cached is None:
            raise CacheMiss(key)
        return BookListResponse.model_validate_json(cached)

    async def set_book_list(self, key: str, response: BookListResponse, ttl: int) -> None:
        await self._client.set(key, response.model_dump_json(), ex=ttl)

    async def delete_by_pattern(self, pattern: str) -> int:
        keys: List[str] = [key async for key in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class NoOpBookStore:
    """``BookStore`` used when Redis is disabled: every read is a miss."""

    async def get_book(self, key: str) -> Book:
        raise CacheMiss(key)

    async def set_book(self, key: str, book: Book, ttl: int) -> None:
        return None

    async def delete_book(self, key: str) -> None:
        return None

    async def get_book_list(self, key: str) -> BookListResponse:
        raise CacheMiss(key)

    async def set_book_list(self, key: str, response: BookListResponse, ttl: int) -> None:
        return None

    async def delete_by_pattern(self, pattern: str) -> int:
        return 0

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
