import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import create_application
from app.handlers.book_handler import BookHandler
from app.models.book_model import Book
from app.schemas.book_schema import BookCreate
from app.services.book_service import BookService
from app.services.cache_service import BookCache
from app.workers.book_processor import BookProcessor
from tests.mocks.mock_book_repository import FakeBookRepository
from tests.mocks.mock_book_store import FakeBookStore


# --- Component Fixtures ---


@pytest.fixture
def fake_repository() -> FakeBookRepository:
    return FakeBookRepository()


@pytest.fixture
def fake_store() -> FakeBookStore:
    return FakeBookStore()


@pytest_asyncio.fixture
async def book_cache(fake_store: FakeBookStore) -> AsyncGenerator[BookCache, None]:
    """A hybrid cache backed by the in-memory Redis stand-in."""
    cache = await BookCache.create(store=fake_store, ttl=60, cleanup_interval=60)
    yield cache
    await cache.shutdown()


@pytest_asyncio.fixture
async def book_processor() -> AsyncGenerator[BookProcessor, None]:
    """A running worker pool without simulated processing delay."""
    processor = BookProcessor(workers=2, queue_size=10, processing_delay=0, delay_step=0)
    processor.start()
    yield processor
    await processor.shutdown(timeout=5)


@pytest_asyncio.fixture
async def book_service(
    fake_repository: FakeBookRepository,
    book_cache: BookCache,
    book_processor: BookProcessor,
) -> BookService:
    return BookService(
        fake_repository,
        cache=book_cache,
        processor=book_processor,
        uniqueness_timeout=1.0,
    )


@pytest_asyncio.fixture
async def test_client(book_service: BookService) -> AsyncGenerator[AsyncClient, None]:
    """
    Provides an HTTP client for API testing. The app's components are
    placed on app.state directly instead of going through the lifespan.
    """
    app = create_application()
    app.state.book_service = book_service
    app.state.book_handler = BookHandler(book_service)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# --- Test Data Fixtures ---


@pytest.fixture
def sample_book_data() -> Dict[str, Any]:
    """Provides a dictionary of sample book data for creation."""
    return {
        "title": "The Hobbit",
        "author": "J.R.R. Tolkien",
        "isbn": "978-0-547-92821-0",
        "publisher": "Houghton Mifflin",
        "genre": "Fantasy",
        "pages": 366,
        "language": "English",
    }


@pytest.fixture
def sample_book_create(sample_book_data: Dict[str, Any]) -> BookCreate:
    return BookCreate(**sample_book_data)


@pytest.fixture
def sample_book() -> Book:
    now = datetime.now(timezone.utc)
    return Book(
        id=uuid.uuid4(),
        title="Dune",
        author="Frank Herbert",
        isbn="9780441013593",
        publisher="Ace",
        genre="Science Fiction",
        pages=412,
        language="English",
        available=True,
        created_at=now,
        updated_at=now,
    )

