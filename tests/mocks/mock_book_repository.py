# tests/mocks/mock_book_repository.py
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from app.core.exceptions import ResourceAlreadyExists, ResourceNotFound
from app.crud.book_crud import BaseRepository
from app.models.book_model import Book
from app.schemas.book_schema import BookCreate, BookFilter, BookUpdate


class FakeBookRepository(BaseRepository):
    """
    A fake book repository that keeps books in an in-memory dict.
    It mimics the blocking interface of the real BookRepository, so calls
    may arrive from several threads at once.
    """

    def __init__(self, initial_books: List[Book] = None, delay: float = 0.0):
        self.books = {book.id: book for book in (initial_books or [])}
        self.delay = delay
        self.exists_delay = 0.0
        self.calls = Counter()
        self._lock = threading.Lock()

    def _enter(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1
        if self.delay:
            time.sleep(self.delay)

    def create(self, book_in: BookCreate) -> Book:
        self._enter("create")
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
            language=book_in.language or "English",
            available=True,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if any(b.isbn == book.isbn for b in self.books.values()):
                raise ResourceAlreadyExists("book with the same ISBN already exists")
            self.books[book.id] = book
        return book

    def get_by_id(self, book_id: uuid.UUID) -> Book:
        self._enter("get_by_id")
        with self._lock:
            book = self.books.get(book_id)
        if book is None:
            raise ResourceNotFound("book not found")
        return book

    def get_all(self, book_filter: BookFilter) -> Tuple[List[Book], int]:
        self._enter("get_all")
        with self._lock:
            books = list(self.books.values())

        if book_filter.author:
            books = [b for b in books if book_filter.author.lower() in b.author.lower()]
        if book_filter.genre:
            books = [b for b in books if book_filter.genre.lower() in b.genre.lower()]
        if book_filter.language:
            books = [b for b in books if b.language.lower() == book_filter.language.lower()]
        if book_filter.available is not None:
            books = [b for b in books if b.available == book_filter.available]

        books.sort(key=lambda b: b.created_at, reverse=True)
        limit = book_filter.limit or 50
        return books[book_filter.offset : book_filter.offset + limit], len(books)

    def update(self, book_id: uuid.UUID, book_in: BookUpdate) -> Book:
        self._enter("update")
        with self._lock:
            book = self.books.get(book_id)
            if book is None:
                raise ResourceNotFound("book not found")
            for field, value in book_in.provided_fields().items():
                setattr(book, field, value)
            book.updated_at = datetime.now(timezone.utc)
        return book

    def delete(self, book_id: uuid.UUID) -> None:
        self._enter("delete")
        with self._lock:
            if self.books.pop(book_id, None) is None:
                raise ResourceNotFound("book not found")

    def exists_by_isbn(self, isbn: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        self._enter("exists_by_isbn")
        if self.exists_delay:
            time.sleep(self.exists_delay)
        with self._lock:
            return any(
                b.isbn == isbn and b.id != exclude_id for b in self.books.values()
            )
