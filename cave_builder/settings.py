"""
Runtime Settings
Environment variables controlling logging, budgets and caching.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables (prefix CAVE_)."""

    # Logging
    log_level: str = "INFO"

    # Pipeline
    stage_time_budget_s: Optional[float] = 300.0

    # Noise cache
    noise_cache_enabled: bool = True
    noise_cache_max_size: int = 10000
    noise_cache_cleanup_threshold: float = 0.8

    # Network analysis
    max_redundancy_pairs: int = 200

    class Config:
        env_prefix = "CAVE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
