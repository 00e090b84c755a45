# config.py
"""Configuration settings for the pagewright generation subsystem.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import os
from typing import Any

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()

_PLACEHOLDER_API_KEYS = {"", "nope", "changeme", "your-api-key"}


class PagewrightSettings(BaseSettings):
    """Full configuration for the pagewright system."""

    # Generation endpoint (OpenAI-compatible chat completions)
    GENERATION_API_BASE: str = "http://127.0.0.1:8080/v1"
    GENERATION_API_KEY: str = "nope"
    DEFAULT_MODEL: str = "claude-sonnet-4-20250514"
    DEFAULT_MAX_TOKENS: int = 4000
    DEFAULT_TEMPERATURE: float = 0.7

    # LLM Call Settings
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY_SECONDS: float = 1.0
    LLM_RETRY_MAX_DELAY_SECONDS: float = 10.0
    HTTPX_TIMEOUT: float = 120.0
    MAX_CONCURRENT_LLM_CALLS: int = 4

    # Pricing (USD per token)
    INPUT_TOKEN_COST: float = 0.000003
    OUTPUT_TOKEN_COST: float = 0.000015

    # Token estimation
    TOKEN_ESTIMATOR: str = "chars"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    TOKENIZER_CACHE_SIZE: int = 10

    # Context tiers
    CONTEXT_TIER_BUDGETS: dict[str, int] = {
        "minimal": 100,
        "standard": 200,
        "detailed": 400,
        "full": 800,
    }

    # Hot cache
    HOT_CACHE_MAX_SIZE: int = 1000
    HOT_CACHE_DEFAULT_TTL: float = 3600.0
    HOT_CACHE_CLEANUP_INTERVAL: float = 300.0

    # Durable cache
    DURABLE_CACHE_DB_PATH: str = "pagewright_cache.sqlite3"
    DURABLE_CACHE_CANDIDATE_LIMIT: int = 20
    DURABLE_SIMILAR_SAVINGS_RATIO: float = 0.8
    DURABLE_SIMILARITY_METRIC: str = "jaccard"

    # Batch scheduling
    BATCH_MAX_CONCURRENCY: int = 3
    BATCH_MAX_RETRIES: int = 2
    BATCH_RETRY_FAILED: bool = True
    BATCH_OPERATION_TIMEOUT: float = 30.0
    BATCH_RETRY_BACKOFF_SECONDS: float = 0.5
    BATCH_USE_CACHE: bool = True
    BATCH_SINGLE_FLIGHT: bool = True
    BATCH_CANCEL_ON_TIMEOUT: bool = False
    AWAIT_RESULTS_TIMEOUT: float = 30.0

    # Tier learning
    LEARNING_TABLE_CAPACITY: int = 256
    LEARNING_HISTORY_SIZE: int = 1000
    LEARNING_MIN_QUALITY: float = 7.0
    LEARNING_TREND_WINDOW: int = 100
    LEARNING_MIN_SUCCESS_RATE: float = 0.7
    LEARNING_MIN_AVG_QUALITY: float = 6.0

    # Output and logging
    BASE_OUTPUT_DIR: str = "pagewright_output"
    LOG_LEVEL_STR: str = Field("INFO", alias="PAGEWRIGHT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "pagewright_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def check_limits(self) -> PagewrightSettings:
        if self.GENERATION_API_KEY.strip().lower() in _PLACEHOLDER_API_KEYS:
            logger.warning(
                "GENERATION_API_KEY is a placeholder; remote generation calls will fail."
            )
        positive_fields: dict[str, Any] = {
            "HOT_CACHE_MAX_SIZE": self.HOT_CACHE_MAX_SIZE,
            "BATCH_MAX_CONCURRENCY": self.BATCH_MAX_CONCURRENCY,
            "MAX_CONCURRENT_LLM_CALLS": self.MAX_CONCURRENT_LLM_CALLS,
            "LEARNING_TABLE_CAPACITY": self.LEARNING_TABLE_CAPACITY,
            "LEARNING_HISTORY_SIZE": self.LEARNING_HISTORY_SIZE,
        }
        for name, value in positive_fields.items():
            if value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}")
        if self.BATCH_MAX_RETRIES < 0:
            raise ValueError("BATCH_MAX_RETRIES cannot be negative")
        if self.TOKEN_ESTIMATOR not in {"chars", "tiktoken"}:
            raise ValueError(
                f"TOKEN_ESTIMATOR must be 'chars' or 'tiktoken', got {self.TOKEN_ESTIMATOR!r}"
            )
        if self.DURABLE_SIMILARITY_METRIC not in {"jaccard", "cosine"}:
            raise ValueError(
                "DURABLE_SIMILARITY_METRIC must be 'jaccard' or 'cosine', "
                f"got {self.DURABLE_SIMILARITY_METRIC!r}"
            )
        missing_tiers = {"minimal", "standard", "detailed", "full"} - set(
            self.CONTEXT_TIER_BUDGETS
        )
        if missing_tiers:
            raise ValueError(
                f"CONTEXT_TIER_BUDGETS is missing tiers: {sorted(missing_tiers)}"
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = PagewrightSettings()


def durable_cache_path() -> str:
    """Return the SQLite path for the durable cache, rooted in the output dir."""
    if os.path.isabs(settings.DURABLE_CACHE_DB_PATH):
        return settings.DURABLE_CACHE_DB_PATH
    return os.path.join(settings.BASE_OUTPUT_DIR, settings.DURABLE_CACHE_DB_PATH)
