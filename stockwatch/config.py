"""
Runtime configuration
Loaded from STOCKWATCH_* environment variables or a .env file
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IndeterminatePolicy(str, Enum):
    """How a check with no stock markers resolves availability"""
    PRESERVE = "preserve"
    ASSUME_AVAILABLE = "assume_available"  # only on a variant's first resolved check
    ASSUME_UNAVAILABLE = "assume_unavailable"


class Settings(BaseSettings):
    """Monitoring engine settings"""

    model_config = SettingsConfigDict(
        env_prefix="STOCKWATCH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: str = "data"

    # Fetching
    fetch_timeout: float = Field(default=30.0, gt=0)
    request_delay_min: float = Field(default=1.0, ge=0)
    request_delay_max: float = Field(default=3.0, ge=0)
    proxy_url: Optional[str] = None

    # Product defaults
    default_interval: float = Field(default=300.0, gt=0)
    default_max_retries: int = Field(default=3, ge=1)

    # Scheduling
    jitter_max: float = Field(default=2.0, ge=0)
    restart_settle_delay: float = Field(default=0.5, ge=0)

    # Classification
    indeterminate_policy: IndeterminatePolicy = IndeterminatePolicy.ASSUME_AVAILABLE

    # Log stream
    log_retention: int = Field(default=100, ge=1)

    # HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
