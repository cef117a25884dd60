from typing import Set

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Library Management API"
    VERSION: str = "2.0.0"
    DESCRIPTION: str = "A REST API for book management with hybrid caching"

    API_PREFIX: str = "/api"

    # --- Database ---
    DATABASE_URL: str = "sqlite:///./books.db"
    DB_ECHO: bool = False

    # --- Redis Configuration ---
    REDIS_ENABLED: bool = True
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 3.0
    REDIS_CONNECT_TIMEOUT: float = 5.0

    # --- Cache ---
    CACHE_TTL_SECONDS: int = 300
    CACHE_CLEANUP_INTERVAL: int = 60

    # --- Background workers ---
    WORKER_COUNT: int = 10
    WORKER_QUEUE_SIZE: int = 100

    # --- Request concurrency & timeouts (seconds) ---
    MAX_CONCURRENT_REQUESTS: int = 100
    BULK_CONCURRENCY: int = 10
    BULK_MAX_ITEMS: int = 100
    UNIQUENESS_CHECK_TIMEOUT: float = 5.0
    CREATE_TIMEOUT: float = 30.0
    GET_TIMEOUT: float = 10.0
    LIST_TIMEOUT: float = 15.0
    BULK_TIMEOUT: float = 60.0
    SHUTDOWN_TIMEOUT: float = 30.0

    # --- Logging & HTTP ---
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"
    LOGGING_EXCLUDE_PATHS: Set[str] = {"/health", "/favicon.ico"}

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
