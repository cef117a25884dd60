# app/handlers/book_handler.py
"""
HTTP handler for book operations.

Sits between the routes and ``BookService`` and owns the per-request
concurrency concerns: a non-blocking concurrency limiter, a deadline per
operation, in-flight tracking for graceful shutdown and handler metrics.
The service call is never cancelled when a deadline passes; the client just
gets a 408 and the work finishes on its own.
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import asdict
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

import pydantic
from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exception_utils import classify_error
from app.core.exceptions import (
    AppException,
    OperationTimeout,
    RateLimitExceeded,
    ValidationError,
)
from app.models.book_model import Book
from app.schemas.book_schema import (
    BookCreate,
    BookFilter,
    BookResponse,
    BookUpdate,
    BulkCreateError,
    BulkCreateSummary,
    SuccessResponse,
)
from app.services.book_service import BookService
from app.utils.concurrency import wait_or_abandon

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(value: str) -> Optional[bool]:
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_filter(params: Mapping[str, str]) -> BookFilter:
    """
    Build a list filter from query parameters.

    Unparseable values are ignored rather than rejected; a non-positive
    limit or a negative offset is dropped the same way.
    """
    fields: Dict[str, Any] = {}
    for name in ("author", "genre", "language"):
        if params.get(name):
            fields[name] = params[name]

    if params.get("available"):
        available = _parse_bool(params["available"])
        if available is not None:
            fields["available"] = available

    limit = _parse_int(params.get("limit", ""))
    if limit is not None and limit > 0:
        fields["limit"] = limit

    offset = _parse_int(params.get("offset", ""))
    if offset is not None and offset >= 0:
        fields["offset"] = offset

    return BookFilter(**fields)


def _book_data(book: Book) -> Dict[str, Any]:
    return BookResponse.model_validate(book).model_dump(mode="json")


def _respond(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=SuccessResponse(message=message, data=data).model_dump(mode="json"),
    )


class BookHandler:
    """
    Request handling shell around ``BookService``.

    Create and bulk create need one of ``max_concurrent_requests`` slots;
    when none is free the request is rejected with 429 instead of queuing.
    """

    def __init__(
        self,
        book_service: BookService,
        max_concurrent_requests: Optional[int] = None,
        create_timeout: Optional[float] = None,
        get_timeout: Optional[float] = None,
        list_timeout: Optional[float] = None,
        bulk_timeout: Optional[float] = None,
        bulk_max_items: Optional[int] = None,
    ):
        self._service = book_service
        self._slots = asyncio.Semaphore(
            max_concurrent_requests or settings.MAX_CONCURRENT_REQUESTS
        )
        self.create_timeout = create_timeout or settings.CREATE_TIMEOUT
        self.get_timeout = get_timeout or settings.GET_TIMEOUT
        self.list_timeout = list_timeout or settings.LIST_TIMEOUT
        self.bulk_timeout = bulk_timeout or settings.BULK_TIMEOUT
        self.bulk_max_items = bulk_max_items or settings.BULK_MAX_ITEMS

        self._total_requests = 0
        self._active_requests = 0
        self._durations: Dict[str, float] = {}
        self._metrics_lock = threading.Lock()
        self._idle = asyncio.Event()
        self._idle.set()

    # ======= ROUTE HANDLERS =======
    async def create_book(self, request: Request) -> JSONResponse:
        async with self._track("create_book"), self._slot():
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.create_timeout

            payload = await wait_or_abandon(
                self._parse_json(request), self.create_timeout, "Request parsing timed out"
            )
            try:
                book_in = BookCreate.model_validate(payload)
            except pydantic.ValidationError as e:
                raise ValidationError(_describe(e)) from e

            book = await self._run(
                self._service.create_book(book_in),
                deadline - loop.time(),
                "Book creation timed out",
            )
            return _respond(status.HTTP_201_CREATED, "Book created successfully", _book_data(book))

    async def get_book(self, book_id: str) -> JSONResponse:
        async with self._track("get_book"):
            book_uuid = self._parse_id(book_id)
            book = await self._run(
                self._service.get_book_by_id(book_uuid),
                self.get_timeout,
                "Book retrieval timed out",
            )
            return _respond(status.HTTP_200_OK, "Book retrieved successfully", _book_data(book))

    async def list_books(self, params: Mapping[str, str]) -> JSONResponse:
        async with self._track("list_books"):
            book_filter = build_filter(params)
            response = await self._run(
                self._service.get_all_books(book_filter),
                self.list_timeout,
                "Books retrieval timed out",
            )
            return _respond(
                status.HTTP_200_OK,
                "Books retrieved successfully",
                response.model_dump(mode="json"),
            )

    async def update_book(self, book_id: str, book_in: BookUpdate) -> JSONResponse:
        async with self._track("update_book"):
            book_uuid = self._parse_id(book_id)
            book = await self._run(
                self._service.update_book(book_uuid, book_in),
                self.get_timeout,
                "Book update timed out",
            )
            return _respond(status.HTTP_200_OK, "Book updated successfully", _book_data(book))

    async def delete_book(self, book_id: str) -> JSONResponse:
        async with self._track("delete_book"):
            book_uuid = self._parse_id(book_id)
            await self._run(
                self._service.delete_book(book_uuid),
                self.get_timeout,
                "Book deletion timed out",
            )
            return _respond(status.HTTP_200_OK, "Book deleted successfully")

    async def bulk_create_books(self, books_in: List[BookCreate]) -> JSONResponse:
        async with self._track("bulk_create_books"), self._slot():
            if not books_in:
                raise ValidationError("No books provided", error="Empty request")
            if len(books_in) > self.bulk_max_items:
                raise ValidationError(
                    f"Maximum {self.bulk_max_items} books per request",
                    error="Too many books",
                )

            books, errors = await self._run(
                self._service.bulk_create_books(books_in),
                self.bulk_timeout,
                "Bulk creation timed out",
            )

            summary = BulkCreateSummary(
                total_requested=len(books_in),
                successful=sum(1 for e in errors if e is None),
                failed=sum(1 for e in errors if e is not None),
                books=[
                    BookResponse.model_validate(book)
                    for book, error in zip(books, errors)
                    if error is None
                ],
                errors=[
                    BulkCreateError(index=i, error=str(error), book=books_in[i])
                    for i, error in enumerate(errors)
                    if error is not None
                ],
            )
            data = summary.model_dump(mode="json")

            if summary.failed == 0:
                return _respond(status.HTTP_201_CREATED, "All books created successfully", data)
            if summary.successful > 0:
                return _respond(
                    status.HTTP_206_PARTIAL_CONTENT, "Some books created successfully", data
                )
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=data)

    async def get_metrics(self) -> JSONResponse:
        metrics: Dict[str, Any] = self.metrics()
        metrics["service_metrics"] = asdict(self._service.get_metrics())
        if self._service.cache is not None:
            metrics["cache"] = self._service.cache.info()
        if self._service.processor is not None:
            metrics["worker_pool"] = self._service.processor.get_metrics()
        return _respond(status.HTTP_200_OK, "Metrics retrieved successfully", metrics)

    # ======= LIFECYCLE =======
    def metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            return {
                "total_requests": self._total_requests,
                "active_requests": self._active_requests,
                "request_duration_ms": dict(self._durations),
            }

    @property
    def active_requests(self) -> int:
        with self._metrics_lock:
            return self._active_requests

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until no request is in flight."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise OperationTimeout(
                f"{self.active_requests} requests still in flight at shutdown"
            ) from None

    # Private Helper Methods

    @asynccontextmanager
    async def _track(self, operation: str):
        start = time.perf_counter()
        with self._metrics_lock:
            self._active_requests += 1
            self._idle.clear()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            with self._metrics_lock:
                self._active_requests -= 1
                self._total_requests += 1
                self._durations[operation] = round(elapsed_ms, 3)
                if self._active_requests == 0:
                    self._idle.set()

    @asynccontextmanager
    async def _slot(self):
        if self._slots.locked():
            raise RateLimitExceeded("Too many concurrent requests")
        await self._slots.acquire()
        try:
            yield
        finally:
            self._slots.release()

    async def _run(self, coro, timeout: float, detail: str):
        try:
            return await wait_or_abandon(coro, max(timeout, 0.0), detail)
        except AppException:
            raise
        except Exception as e:
            logger.error("Unclassified service error", exc_info=True)
            raise classify_error(e) from e

    @staticmethod
    async def _parse_json(request: Request) -> Any:
        body = await request.body()
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(str(e), error="Invalid JSON") from e

    @staticmethod
    def _parse_id(book_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(book_id)
        except ValueError:
            raise ValidationError("ID must be a valid UUID", error="Invalid book ID") from None


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    return "; ".join(parts)
