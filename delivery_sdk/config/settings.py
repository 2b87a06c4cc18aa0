"""
Centralized configuration using Pydantic BaseSettings.
Environment variables provide the defaults every client starts from.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SDK settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_SDK_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "delivery-sdk"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Client switches
    ENABLED: bool = True  # False yields the no-op client
    PERFORM_CHECKS: bool = True
    ONLY_LOG: bool = False

    # Timeouts (milliseconds) - strict budgets per remote service
    DELIVERY_TIMEOUT_MILLIS: int = 250
    METRICS_TIMEOUT_MILLIS: int = 3000

    # Windowing
    DEFAULT_LIMIT: int = 10
    MAX_REQUEST_INSERTIONS: int = 1000

    # Shadow traffic (0.0 disables forwarding, 1.0 forwards every logging request)
    SHADOW_TRAFFIC_DELIVERY_RATE: float = 0.0
    BLOCKING_SHADOW_TRAFFIC: bool = False

    # Attempts for the deferred metrics call (1 means no retry)
    METRICS_RETRY_ATTEMPTS: int = 1

    # Telemetry
    ENABLE_OTEL: bool = False
    ENABLE_PROMETHEUS: bool = True
    PROMETHEUS_PORT: Optional[int] = None


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - singleton pattern."""
    return Settings()
