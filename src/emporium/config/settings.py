"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class CartConfig(BaseModel):
    """Configuration for the cart and inventory engine."""

    transaction_timeout_seconds: float = 5.0
    """Upper bound on one inventory-affecting transaction."""

    prune_after_days: int = 30
    """Carts untouched for longer than this are removed by maintenance."""

    prune_interval_seconds: float = 86400.0
    """How often the maintenance scheduler runs the pruning job."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./emporium.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Application Configuration
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"
    DEBUG: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Storage access
    SLOW_QUERY_THRESHOLD_MS: float = 200.0
    TENANT_CACHE_TTL_SECONDS: float = 60.0

    # Cart engine
    cart: CartConfig = CartConfig()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
