# app/utils/deps.py
"""
FastAPI dependencies.

Long-lived components are built once in the application lifespan and kept
on ``app.state``; these getters hand them to the routes.
"""

import logging

from fastapi import Request

from app.core.exceptions import InternalServerError
from app.handlers.book_handler import BookHandler

logger = logging.getLogger(__name__)


def _from_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.error(f"{name} is not initialised on app.state")
        raise InternalServerError("Service not initialised")
    return component


def get_book_handler(request: Request) -> BookHandler:
    return _from_state(request, "book_handler")
