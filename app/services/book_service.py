import asyncio
import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from app.core.config import settings
from app.core.exception_utils import raise_for_status
from app.core.exceptions import (
    AppException,
    InternalServerError,
    ResourceAlreadyExists,
    ResourceNotFound,
    ValidationError,
    WorkerPoolError,
)
from app.crud.book_crud import BaseRepository
from app.models.book_model import Book
from app.schemas.book_schema import (
    BookCreate,
    BookFilter,
    BookListResponse,
    BookResponse,
    BookUpdate,
)
from app.services.cache_service import BookCache
from app.utils.concurrency import abandon, wait_or_abandon
from app.workers.book_processor import BookJob, BookProcessor, JobType

logger = logging.getLogger(__name__)

# ASCII digits only
_ISBN_PATTERN = re.compile(r"[0-9]{13}|[0-9]{9}[0-9X]")


def normalize_isbn(isbn: str) -> str:
    """Remove hyphens and spaces from an ISBN and upper-case an X check digit."""
    return isbn.replace("-", "").replace(" ", "").upper()


def is_valid_isbn(isbn: str) -> bool:
    """ISBN-10 or ISBN-13 once normalized. ISBN-10 may end in an X check digit."""
    return _ISBN_PATTERN.fullmatch(normalize_isbn(isbn)) is not None


@dataclass(frozen=True)
class ServiceMetrics:
    request_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    avg_latency_ms: float = 0.0


class BookService:
    """
    Book business logic around a blocking repository.

    Repository calls run in worker threads. Reads go through the hybrid
    cache, writes refresh and invalidate it, and successful creates hand a
    notification job to the worker pool.
    """

    def __init__(
        self,
        repository: BaseRepository,
        cache: Optional[BookCache] = None,
        processor: Optional[BookProcessor] = None,
        uniqueness_timeout: Optional[float] = None,
        bulk_concurrency: Optional[int] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.processor = processor
        self.uniqueness_timeout = (
            settings.UNIQUENESS_CHECK_TIMEOUT if uniqueness_timeout is None else uniqueness_timeout
        )
        self.bulk_concurrency = bulk_concurrency or settings.BULK_CONCURRENCY

        self._request_count = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._avg_latency = 0.0
        self._metrics_lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # ======= CREATE OPERATIONS =======
    async def create_book(self, book_in: BookCreate) -> Book:
        start = time.perf_counter()
        try:
            await self._validate_create(book_in)
            book_in = self._normalize_create(book_in)
            await self._ensure_isbn_available(book_in.isbn)

            book = await self._call_repository(
                "failed to create book", self.repository.create, book_in
            )

            if self.cache is not None:
                await self.cache.set_book(book)
                await self.cache.invalidate_lists()

            self._submit_notification(book, book_in)
            self._logger.info(
                "Book created", extra={"book_id": str(book.id), "isbn": book.isbn}
            )
            return book
        finally:
            self._record_latency(start)

    async def bulk_create_books(
        self, books_in: List[BookCreate]
    ) -> Tuple[List[Optional[Book]], List[Optional[Exception]]]:
        """
        Create many books with at most ``bulk_concurrency`` creates in flight.

        Both returned lists are aligned with ``books_in``: position ``i`` holds
        either the created book or the error for request ``i``.
        """
        if not books_in:
            return [], []

        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        async def create_one(book_in: BookCreate) -> Tuple[Optional[Book], Optional[Exception]]:
            async with semaphore:
                try:
                    return await self.create_book(book_in), None
                except Exception as e:
                    return None, e

        try:
            results = await asyncio.gather(*(create_one(b) for b in books_in))
        finally:
            self._record_latency(start)

        books = [book for book, _ in results]
        errors = [error for _, error in results]
        self._logger.info(
            "Bulk create finished",
            extra={
                "requested": len(books_in),
                "failed": sum(1 for e in errors if e is not None),
            },
        )
        return books, errors

    # ======= READ OPERATIONS =======
    async def get_book_by_id(self, book_id: Union[str, uuid.UUID]) -> Book:
        start = time.perf_counter()
        try:
            book_uuid = self._parse_id(book_id)

            if self.cache is not None:
                cached = await self.cache.get_book(book_uuid)
                self._record_cache_lookup(hit=cached is not None)
                if cached is not None:
                    return cached

            book = await self._get_existing(book_uuid)

            if self.cache is not None:
                await self.cache.set_book(book)
            return book
        finally:
            self._record_latency(start)

    async def get_all_books(self, book_filter: BookFilter) -> BookListResponse:
        start = time.perf_counter()
        try:
            book_filter = book_filter.normalized()

            if self.cache is not None:
                cached = await self.cache.get_book_list(book_filter)
                self._record_cache_lookup(hit=cached is not None)
                if cached is not None:
                    return cached

            books, total = await self._call_repository(
                "failed to get books", self.repository.get_all, book_filter
            )
            response = BookListResponse(
                books=[BookResponse.model_validate(b) for b in books],
                total=total,
                limit=book_filter.limit,
                offset=book_filter.offset,
            )

            if self.cache is not None:
                await self.cache.set_book_list(book_filter, response)
            return response
        finally:
            self._record_latency(start)

    # ======= UPDATE OPERATIONS =======
    async def update_book(
        self, book_id: Union[str, uuid.UUID], book_in: BookUpdate
    ) -> Book:
        start = time.perf_counter()
        try:
            book_uuid = self._parse_id(book_id)
            await self._get_existing(book_uuid)

            self._validate_update(book_in)
            book_in = self._normalize_update(book_in)
            if book_in.isbn is not None:
                await self._ensure_isbn_available(book_in.isbn, exclude_id=book_uuid)

            book = await self._call_repository(
                "failed to update book", self.repository.update, book_uuid, book_in
            )

            if self.cache is not None:
                await self.cache.set_book(book)
                await self.cache.invalidate_book(book.id)

            self._logger.info(
                "Book updated",
                extra={"book_id": str(book.id), "fields": list(book_in.provided_fields())},
            )
            return book
        finally:
            self._record_latency(start)

    # ======= DELETE OPERATIONS =======
    async def delete_book(self, book_id: Union[str, uuid.UUID]) -> None:
        start = time.perf_counter()
        try:
            book_uuid = self._parse_id(book_id)
            await self._get_existing(book_uuid)

            await self._call_repository(
                "failed to delete book", self.repository.delete, book_uuid
            )

            if self.cache is not None:
                await self.cache.invalidate_book(book_uuid)

            self._logger.info("Book deleted", extra={"book_id": str(book_uuid)})
        finally:
            self._record_latency(start)

    # ======= LIFECYCLE =======
    def get_metrics(self) -> ServiceMetrics:
        with self._metrics_lock:
            return ServiceMetrics(
                request_count=self._request_count,
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
                avg_latency_ms=self._avg_latency,
            )

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the worker pool, then the cache. The cache is closed even if the pool times out."""
        try:
            if self.processor is not None:
                await self.processor.shutdown(timeout)
        finally:
            if self.cache is not None:
                await self.cache.shutdown()

    # Private Helper Methods

    async def _validate_create(self, book_in: BookCreate) -> None:
        """
        Run the field checks concurrently. Each check reports on one queue and
        the first error that arrives is raised.
        """
        errors: asyncio.Queue = asyncio.Queue()

        async def check(rule) -> None:
            try:
                rule()
            except ValidationError as e:
                await errors.put(e)
                return
            await errors.put(None)

        def title() -> None:
            raise_for_status(
                condition=not book_in.title.strip(),
                exception=ValidationError,
                detail="title is required",
            )

        def author() -> None:
            raise_for_status(
                condition=not book_in.author.strip(),
                exception=ValidationError,
                detail="author is required",
            )

        def isbn() -> None:
            raise_for_status(
                condition=not book_in.isbn.strip(),
                exception=ValidationError,
                detail="ISBN is required",
            )
            raise_for_status(
                condition=not is_valid_isbn(book_in.isbn),
                exception=ValidationError,
                detail="invalid ISBN format",
            )

        checks = [asyncio.create_task(check(rule)) for rule in (title, author, isbn)]
        try:
            for _ in checks:
                error = await errors.get()
                if error is not None:
                    raise error
        finally:
            # Checks still pending run to completion; their results are dropped
            for task in checks:
                if not task.done():
                    abandon(task)

    def _validate_update(self, book_in: BookUpdate) -> None:
        if book_in.title is not None:
            raise_for_status(
                condition=not book_in.title.strip(),
                exception=ValidationError,
                detail="title cannot be empty",
            )
        if book_in.author is not None:
            raise_for_status(
                condition=not book_in.author.strip(),
                exception=ValidationError,
                detail="author cannot be empty",
            )
        if book_in.isbn is not None:
            raise_for_status(
                condition=not book_in.isbn.strip(),
                exception=ValidationError,
                detail="ISBN cannot be empty",
            )
            raise_for_status(
                condition=not is_valid_isbn(book_in.isbn),
                exception=ValidationError,
                detail="invalid ISBN format",
            )
        if book_in.pages is not None:
            raise_for_status(
                condition=book_in.pages <= 0,
                exception=ValidationError,
                detail="pages must be greater than 0",
            )

    @staticmethod
    def _normalize_create(book_in: BookCreate) -> BookCreate:
        return book_in.model_copy(
            update={
                "title": book_in.title.strip(),
                "author": book_in.author.strip(),
                "isbn": normalize_isbn(book_in.isbn),
                "publisher": book_in.publisher.strip(),
                "genre": book_in.genre.strip(),
                "language": book_in.language.strip(),
            }
        )

    @staticmethod
    def _normalize_update(book_in: BookUpdate) -> BookUpdate:
        updates = {}
        for field in ("title", "author", "publisher", "genre", "language"):
            value = getattr(book_in, field)
            if value is not None:
                updates[field] = value.strip()
        if book_in.isbn is not None:
            updates["isbn"] = normalize_isbn(book_in.isbn)
        return book_in.model_copy(update=updates)

    async def _ensure_isbn_available(
        self, isbn: str, exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        """Uniqueness check bounded by ``uniqueness_timeout``; a slow check keeps running unobserved."""
        try:
            exists = await wait_or_abandon(
                asyncio.to_thread(self.repository.exists_by_isbn, isbn, exclude_id),
                self.uniqueness_timeout,
                "validation timeout",
            )
        except AppException:
            raise
        except Exception as e:
            raise InternalServerError(f"failed to check ISBN uniqueness: {e}") from e

        raise_for_status(
            condition=exists,
            exception=ResourceAlreadyExists,
            detail=f"book with ISBN {isbn} already exists",
            resource_type="Book",
        )

    async def _get_existing(self, book_id: uuid.UUID) -> Book:
        try:
            return await asyncio.to_thread(self.repository.get_by_id, book_id)
        except ResourceNotFound as e:
            raise ResourceNotFound(
                f"book not found: {book_id}", resource_type="Book"
            ) from e
        except AppException:
            raise
        except Exception as e:
            raise InternalServerError(f"failed to get book: {e}") from e

    async def _call_repository(self, context: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except AppException:
            raise
        except Exception as e:
            raise InternalServerError(f"{context}: {e}") from e

    def _submit_notification(self, book: Book, book_in: BookCreate) -> None:
        if self.processor is None:
            return
        try:
            self.processor.submit_job(
                BookJob(type=JobType.NOTIFY, id=f"notify-{book.id}", book_data=book_in)
            )
        except WorkerPoolError as e:
            self._logger.debug(
                "Notification job dropped", extra={"book_id": str(book.id), "error": str(e)}
            )

    @staticmethod
    def _parse_id(book_id: Union[str, uuid.UUID]) -> uuid.UUID:
        if isinstance(book_id, uuid.UUID):
            return book_id
        try:
            return uuid.UUID(str(book_id))
        except ValueError:
            raise ValidationError("invalid book ID format") from None

    def _record_cache_lookup(self, hit: bool) -> None:
        with self._metrics_lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

    def _record_latency(self, start: float) -> None:
        sample_ms = (time.perf_counter() - start) * 1000
        with self._metrics_lock:
            self._request_count += 1
            self._avg_latency = (self._avg_latency + sample_ms) / 2
