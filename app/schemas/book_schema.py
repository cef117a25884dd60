# app/schemas/book_schema.py
"""
Book schemas for request/response models.

This module defines Pydantic schemas for book-related operations,
including creation, updates, list filters and the JSON envelopes
returned by the API.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100


class BookCreate(BaseModel):
    """
    Schema for creating a new book.

    Only the shape is checked here. Required-field and ISBN format rules
    belong to the service, which reports them as validation errors.
    """

    title: str = Field(default="", max_length=255, examples=["The Hobbit"])
    author: str = Field(default="", max_length=255, examples=["J.R.R. Tolkien"])
    isbn: str = Field(default="", max_length=17, examples=["978-0547928210"])
    publisher: str = Field(default="", max_length=255)
    genre: str = Field(default="", max_length=100, examples=["Fantasy"])
    published_at: Optional[datetime] = Field(default=None)
    pages: int = Field(..., gt=0, examples=[366])
    language: str = Field(default="", max_length=50, examples=["English"])


class BookUpdate(BaseModel):
    """Schema for updating a book. Only provided fields are applied."""

    title: Optional[str] = Field(default=None, max_length=255)
    author: Optional[str] = Field(default=None, max_length=255)
    isbn: Optional[str] = Field(default=None, max_length=17)
    publisher: Optional[str] = Field(default=None, max_length=255)
    genre: Optional[str] = Field(default=None, max_length=100)
    published_at: Optional[datetime] = None
    pages: Optional[int] = None
    language: Optional[str] = Field(default=None, max_length=50)
    available: Optional[bool] = None

    def provided_fields(self) -> Dict[str, Any]:
        """Fields present in the request with a non-null value."""
        return self.model_dump(exclude_none=True)


class BookResponse(BaseModel):
    """Basic book response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(..., description="Unique identifier for the book")
    title: str
    author: str
    isbn: str
    publisher: str = ""
    genre: str = ""
    published_at: Optional[datetime] = None
    pages: int
    language: str = ""
    available: bool = True
    created_at: datetime = Field(..., description="When the book was created")
    updated_at: datetime = Field(..., description="When the book was last updated")


class BookFilter(BaseModel):
    """
    Filters for listing books.

    Also the input of the list cache key, so two filters with the same
    field values always produce the same key.
    """

    model_config = ConfigDict(frozen=True)

    author: str = ""
    genre: str = ""
    language: str = ""
    available: Optional[bool] = None
    limit: int = 0
    offset: int = 0

    def normalized(self) -> "BookFilter":
        """Return a copy with pagination clamped to the supported range."""
        limit = self.limit
        if limit <= 0 or limit > MAX_PAGE_LIMIT:
            limit = DEFAULT_PAGE_LIMIT
        offset = max(self.offset, 0)
        return self.model_copy(update={"limit": limit, "offset": offset})


class BookListResponse(BaseModel):
    """Response schema for a filtered page of books."""

    books: List[BookResponse] = Field(default_factory=list, description="List of books")
    total: int = Field(..., ge=0, description="Total number of matching books")
    limit: int = Field(..., ge=1, le=MAX_PAGE_LIMIT)
    offset: int = Field(..., ge=0)


class SuccessResponse(BaseModel):
    message: str
    data: Optional[Any] = None


class ErrorResponse(BaseModel):
    error: str
    message: str = ""
    code: int


class BulkCreateError(BaseModel):
    index: int
    error: str
    book: BookCreate


class BulkCreateSummary(BaseModel):
    total_requested: int
    successful: int
    failed: int
    books: List[BookResponse] = Field(default_factory=list)
    errors: List[BulkCreateError] = Field(default_factory=list)


# Export all schemas
__all__ = [
    "BookCreate",
    "BookUpdate",
    "BookResponse",
    "BookFilter",
    "BookListResponse",
    "SuccessResponse",
    "ErrorResponse",
    "BulkCreateError",
    "BulkCreateSummary",
    "DEFAULT_PAGE_LIMIT",
    "MAX_PAGE_LIMIT",
]
