import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import Engine
from sqlmodel import Session, and_, delete, func, select

from app.core.exception_utils import handle_exceptions
from app.core.exceptions import InternalServerError, ResourceNotFound
from app.models.book_model import Book
from app.schemas.book_schema import DEFAULT_PAGE_LIMIT, BookCreate, BookFilter, BookUpdate

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "English"


class BaseRepository(ABC):
    """
    Contract the book service relies on.

    Every call is synchronous and blocking. ``get_by_id``, ``update`` and
    ``delete`` raise ``ResourceNotFound`` for a missing id.
    """

    @abstractmethod
    def create(self, book_in: BookCreate) -> Book:
        """Persist a new book."""
        pass

    @abstractmethod
    def get_by_id(self, book_id: uuid.UUID) -> Book:
        """Get a book by its primary key."""
        pass

    @abstractmethod
    def get_all(self, book_filter: BookFilter) -> Tuple[List[Book], int]:
        """Return one page of matching books and the total match count."""
        pass

    @abstractmethod
    def update(self, book_id: uuid.UUID, book_in: BookUpdate) -> Book:
        """Apply the provided fields to an existing book."""
        pass

    @abstractmethod
    def delete(self, book_id: uuid.UUID) -> None:
        """Delete a book by its primary key."""
        pass

    @abstractmethod
    def exists_by_isbn(
        self, isbn: str, exclude_id: Optional[uuid.UUID] = None
    ) -> bool:
        """Check whether another book already holds ``isbn``."""
        pass


class BookRepository(BaseRepository):
    """Repository for all database operations related to the Book model."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.model = Book
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to create book:",
    )
    def create(self, book_in: BookCreate) -> Book:
        """Create a new book. Expects already normalized request data."""
        now = datetime.now(timezone.utc)
        book = Book(
            id=uuid.uuid4(),
            title=book_in.title,
            author=book_in.author,
            isbn=book_in.isbn,
            publisher=book_in.publisher,
            genre=book_in.genre,
            published_at=book_in.published_at,
            pages=book_in.pages,
            language=book_in.language or DEFAULT_LANGUAGE,
            available=True,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(book)
            session.commit()
            session.refresh(book)

        self._logger.info(f"Book created: {book.id}")
        return book

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to get book:",
    )
    def get_by_id(self, book_id: uuid.UUID) -> Book:
        """Retrieves a book by its ID."""
        with self._session() as session:
            book = session.get(self.model, book_id)

        if book is None:
            raise ResourceNotFound("book not found", resource_type="Book")
        return book

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to query books:",
    )
    def get_all(self, book_filter: BookFilter) -> Tuple[List[Book], int]:
        """Retrieve books with filtering and pagination, newest first."""
        query = self._apply_filters(select(self.model), book_filter)

        limit = book_filter.limit if book_filter.limit > 0 else DEFAULT_PAGE_LIMIT
        offset = max(book_filter.offset, 0)

        with self._session() as session:
            count_query = select(func.count()).select_from(query.subquery())
            total = session.exec(count_query).one()

            paginated_query = (
                query.order_by(self.model.created_at.desc()).offset(offset).limit(limit)
            )
            books = list(session.exec(paginated_query).all())

        return books, total

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to update book:",
    )
    def update(self, book_id: uuid.UUID, book_in: BookUpdate) -> Book:
        """Updates the provided fields of a book."""
        fields_to_update = book_in.provided_fields()

        with self._session() as session:
            book = session.get(self.model, book_id)
            if book is None:
                raise ResourceNotFound("book not found", resource_type="Book")

            if not fields_to_update:
                return book

            for field, value in fields_to_update.items():
                setattr(book, field, value)
            book.updated_at = datetime.now(timezone.utc)

            session.add(book)
            session.commit()
            session.refresh(book)

        self._logger.info(
            f"Book fields updated for {book.id}: {list(fields_to_update.keys())}"
        )
        return book

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to delete book:",
    )
    def delete(self, book_id: uuid.UUID) -> None:
        """Permanently delete a book by ID."""
        statement = delete(self.model).where(self.model.id == book_id)
        with self._session() as session:
            result = session.execute(statement)
            session.commit()

        if result.rowcount == 0:
            raise ResourceNotFound("book not found", resource_type="Book")
        self._logger.info(f"Book hard deleted: {book_id}")

    @handle_exceptions(
        default_exception=InternalServerError,
        message="failed to check ISBN existence:",
    )
    def exists_by_isbn(
        self, isbn: str, exclude_id: Optional[uuid.UUID] = None
    ) -> bool:
        """Check if a book with the given ISBN exists."""
        statement = select(func.count()).select_from(self.model).where(
            self.model.isbn == isbn
        )
        if exclude_id is not None:
            statement = statement.where(self.model.id != exclude_id)

        with self._session() as session:
            count = session.exec(statement).one()
        return count > 0

    # Private Helper Methods
    def _apply_filters(self, query, book_filter: BookFilter):
        """Apply filters to a book query."""
        conditions = []

        if book_filter.author:
            conditions.append(
                func.lower(self.model.author).like(f"%{book_filter.author.lower()}%")
            )

        if book_filter.genre:
            conditions.append(
                func.lower(self.model.genre).like(f"%{book_filter.genre.lower()}%")
            )

        if book_filter.language:
            conditions.append(
                func.lower(self.model.language) == book_filter.language.lower()
            )

        if book_filter.available is not None:
            conditions.append(self.model.available == book_filter.available)

        if conditions:
            query = query.where(and_(*conditions))

        return query
