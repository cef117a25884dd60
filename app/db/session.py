# app/db/session.py
"""
Database engine lifecycle.

The repository works with blocking SQLModel sessions; the service layer
moves those calls off the event loop, so the engine is a plain synchronous
one.
"""

import logging
from typing import Optional

from sqlalchemy import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from app.core.config import settings

# Registers the books table on SQLModel.metadata
from app.models.book_model import Book  # noqa: F401

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine for the lifetime of the process."""

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = url or settings.DATABASE_URL
        self.echo = settings.DB_ECHO if echo is None else echo
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not connected. Call connect() first.")
        return self._engine

    def connect(self) -> Engine:
        """Create the engine and make sure the schema exists."""
        if self._engine is not None:
            return self._engine

        kwargs = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url == "sqlite://":
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True

        self._engine = create_engine(self.url, **kwargs)
        SQLModel.metadata.create_all(self._engine)
        logger.info("Database connected", extra={"dialect": self._engine.dialect.name})
        return self._engine

    def disconnect(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Database disconnected")


db = Database()
