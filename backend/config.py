from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    # Primary store (PostgreSQL)
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "lugx_gaming"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    QUERY_TIMEOUT_SECONDS: int = 30

    # Secondary store (ClickHouse HTTP interface)
    CLICKHOUSE_ENABLED: bool = True
    CLICKHOUSE_HOST: str = "localhost"
    CLICKHOUSE_PORT: int = 8123
    CLICKHOUSE_DATABASE: str = "analytics"
    CLICKHOUSE_USER: str = "default"
    CLICKHOUSE_PASSWORD: str = ""
    CLICKHOUSE_ASYNC_INSERT: bool = True
    CLICKHOUSE_WAIT_FOR_ASYNC_INSERT: bool = False
    CLICKHOUSE_TIMEOUT_SECONDS: float = 30.0
    SECONDARY_WRITE_TIMEOUT_SECONDS: float = 3.0

    # Redis (dashboard cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 300  # 5 minutes

    # Service
    PORT: int = 3003
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    AUTO_CREATE_TABLES: bool = True
    CORS_ORIGINS: List[str] = ["*"]

    # Orders
    ORDER_NUMBER_PREFIX: str = "ORD"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def clickhouse_url(self) -> str:
        return f"http://{self.CLICKHOUSE_HOST}:{self.CLICKHOUSE_PORT}"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
