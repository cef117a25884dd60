import logging

from typing import List
from fastapi import APIRouter, Depends, Request, status

from app.core.config import settings
from app.handlers.book_handler import BookHandler
from app.schemas.book_schema import BookCreate, BookUpdate
from app.utils.deps import get_book_handler


logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Books"],
    prefix=f"{settings.API_PREFIX}/books",
)


@router.get(
    "",
    status_code=status.HTTP_200_OK,
    summary="List books",
    description="Retrieve a page of books with optional filtering",
)
async def list_books(
    request: Request,
    handler: BookHandler = Depends(get_book_handler),
):
    """
    List books, newest first.

    - **author**: Case-insensitive substring of the author
    - **genre**: Case-insensitive substring of the genre
    - **language**: Exact language, case-insensitive
    - **available**: Availability flag
    - **limit**: Page size, default 50, at most 100
    - **offset**: Number of books to skip
    """
    return await handler.list_books(request.query_params)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new book",
    description="Create a new book entry",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": BookCreate.model_json_schema()}},
        }
    },
)
async def create_book(
    request: Request,
    handler: BookHandler = Depends(get_book_handler),
):
    """
    Create a new book.
    - **title**: The title of the book (required)
    - **author**: The author of the book (required)
    - **isbn**: ISBN-10 or ISBN-13, hyphens and spaces allowed (required)
    - **pages**: Number of pages, greater than 0 (required)
    """
    return await handler.create_book(request)


@router.get(
    "/metrics",
    status_code=status.HTTP_200_OK,
    summary="Runtime metrics",
    description="Handler, service, cache and worker pool metrics",
)
async def get_metrics(handler: BookHandler = Depends(get_book_handler)):
    return await handler.get_metrics()


@router.post(
    "/bulk",
    summary="Create books in bulk",
    description=f"Create up to {settings.BULK_MAX_ITEMS} books in one request",
    responses={
        status.HTTP_201_CREATED: {"description": "All books created"},
        status.HTTP_206_PARTIAL_CONTENT: {"description": "Some books created"},
        status.HTTP_400_BAD_REQUEST: {"description": "No book created"},
    },
)
async def bulk_create_books(
    books: List[BookCreate],
    handler: BookHandler = Depends(get_book_handler),
):
    return await handler.bulk_create_books(books)


@router.get(
    "/{book_id}",
    status_code=status.HTTP_200_OK,
    summary="Get book by ID",
)
async def get_book(book_id: str, handler: BookHandler = Depends(get_book_handler)):
    return await handler.get_book(book_id)


@router.put(
    "/{book_id}",
    status_code=status.HTTP_200_OK,
    summary="Update book",
    description="Update the provided fields of a book",
)
async def update_book(
    book_id: str,
    book_data: BookUpdate,
    handler: BookHandler = Depends(get_book_handler),
):
    return await handler.update_book(book_id, book_data)


@router.delete(
    "/{book_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete book",
)
async def delete_book(book_id: str, handler: BookHandler = Depends(get_book_handler)):
    return await handler.delete_book(book_id)
