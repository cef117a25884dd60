# app/models/book_model.py
"""
Book model definition.

This module defines the Book SQLModel for storing book records.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookBase(SQLModel):

    title: str = Field(
        max_length=255,
        description="The title of the book",
        schema_extra={"example": "The Hobbit"},
    )
    author: str = Field(
        max_length=255,
        description="The author of the book",
        schema_extra={"example": "J.R.R. Tolkien"},
    )
    isbn: str = Field(
        max_length=17,
        unique=True,
        description="Normalized ISBN-10 or ISBN-13",
        schema_extra={"example": "9780547928210"},
    )
    publisher: str = Field(
        default="",
        max_length=255,
        description="The publisher of the book",
    )
    genre: str = Field(
        default="",
        max_length=100,
        description="The genre of the book",
    )
    published_at: Optional[datetime] = Field(
        default=None,
        description="The publication date of the book",
    )
    pages: int = Field(
        gt=0,
        description="The number of pages in the book",
        schema_extra={"example": 366},
    )
    language: str = Field(
        default="English",
        max_length=50,
        description="The language of the book",
    )
    available: bool = Field(
        default=True,
        description="Whether the book can currently be borrowed",
    )


class Book(BookBase, table=True):
    __tablename__ = "books"
    __table_args__ = (
        Index("idx_books_author", "author"),
        Index("idx_books_genre", "genre"),
        Index("idx_books_available", "available"),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="Unique identifier for the book",
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        description="Book creation timestamp",
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        description="Book last updated timestamp",
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', isbn='{self.isbn}')>"
