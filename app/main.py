import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI

from app.core.cache import RedisBookStore
from app.core.config import settings
from app.core.exception_handler import register_exception_handlers
from app.core.logging_config import setup_logging
from app.core.middleware import register_middlewares
from app.crud.book_crud import BookRepository
from app.db.session import db
from app.handlers.book_handler import BookHandler
from app.services.book_service import BookService
from app.services.cache_service import BookCache
from app.workers.book_processor import BookProcessor

# Routers
from app.api.v1.endpoints import book

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    setup_logging()

    # Startup
    engine = db.connect()
    repository = BookRepository(engine)

    store = RedisBookStore.create() if settings.REDIS_ENABLED else None
    cache = await BookCache.create(store=store)

    processor = BookProcessor()
    processor.start()

    service = BookService(repository, cache=cache, processor=processor)
    handler = BookHandler(service)

    app.state.book_service = service
    app.state.book_handler = handler
    logger.info(
        "Application started",
        extra={"redis_enabled": cache.uses_redis, "workers": processor.workers},
    )

    yield

    # Shutdown: stop taking work, then release resources in reverse order
    try:
        await handler.drain(timeout=settings.SHUTDOWN_TIMEOUT)
    except Exception:
        logger.warning("Handler drain did not complete", exc_info=True)

    try:
        await service.shutdown(timeout=settings.SHUTDOWN_TIMEOUT)
    except Exception:
        logger.warning("Service shutdown did not complete", exc_info=True)

    db.disconnect()
    logger.info("Application stopped")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.DESCRIPTION,
        lifespan=lifespan,
    )

    # Register all middleware
    register_middlewares(app)

    # Register all exception handlers
    register_exception_handlers(app)

    app.include_router(book.router)

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "message": "Service is healthy",
            "data": {"status": "healthy", "service": "library-management-api"},
        }

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information."""
        prefix = f"{settings.API_PREFIX}/books"
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "endpoints": {
                "list_books": f"GET {prefix}",
                "create_book": f"POST {prefix}",
                "bulk_create": f"POST {prefix}/bulk",
                "get_book": f"GET {prefix}/{{id}}",
                "update_book": f"PUT {prefix}/{{id}}",
                "delete_book": f"DELETE {prefix}/{{id}}",
                "metrics": f"GET {prefix}/metrics",
                "health": "GET /health",
            },
        }

    return app


app = create_application()
