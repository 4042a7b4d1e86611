"""Centralized configuration for tropes-crawler using Pydantic Settings."""

import os
import random

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_max_workers() -> int:
    return os.cpu_count() or 4


class Settings(BaseSettings):
    """Strictly typed crawler configuration loaded from ``CRAWLER_*`` environment variables.

    Every field has a default so the crawler runs with no arguments; the CLI
    overrides individual fields on top of the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRAWLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Target
    host: str = Field(default="tvtropes.org", min_length=1, description="Fixed host the crawler targets")
    listing_page_count: int = Field(default=37, ge=1, description="Number of articlecount.php pages to seed")

    # Storage
    db_path: str = Field(default="tvtropes.db", description="SQLite store written in the working directory")

    # Scheduling
    max_workers: int = Field(
        default_factory=_default_max_workers, ge=1, description="Global ceiling of concurrently active workers"
    )
    listing_ratio: int = Field(default=100, description="Namespace queue may grow to this multiple of listing queue")
    namespace_ratio: int = Field(default=10, description="Page queue may grow to this multiple of namespace queue")
    poll_interval: float = Field(default=1.0, gt=0, description="Seconds to wait when saturated or idle")
    progress_interval: float = Field(default=5.0, gt=0, description="Seconds between progress log lines")

    # HTTP
    http_timeout: int = Field(default=30, ge=1, description="HTTP request timeout in seconds")
    max_redirects: int = Field(default=10, ge=0, description="Redirect hops followed per article")
    rate_limit_base_delay: float = Field(default=30.0, gt=0, description="First backoff delay after a 403")
    rate_limit_max_delay: float = Field(default=600.0, gt=0, description="Ceiling for the rate-limit backoff")
    user_agent: str = Field(default="", description="User-Agent header; random from USER_AGENTS when empty")

    # Persistence
    max_persist_attempts: int = Field(
        default=5, ge=1, description="Commit attempts per record before it is dead-lettered"
    )

    # Diagnostics
    log_level: str = Field(default="info", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit structured JSON logs")
    error_log_path: str = Field(default="error.log", description="File the error sink is flushed to")
    metrics_textfile: str | None = Field(default=None, description="Prometheus textfile written on exit")

    USER_AGENTS: list[str] = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:142.0) Gecko/20100101 Firefox/142.0",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/18.6 Safari/605.1.15",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36 Edg/140.0.0.0",
    ]

    @field_validator("listing_ratio", "namespace_ratio")
    @classmethod
    def _check_ratio(cls, value: int) -> int:
        # Ratios bound downstream queue growth; 1 or less would starve the upstream stage
        if value <= 1:
            raise ValueError("queue depth ratios must be integers greater than 1")
        return value

    @field_validator("host")
    @classmethod
    def _normalize_host(cls, value: str) -> str:
        return value.strip().lower().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if value.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return value.lower()

    def get_user_agent(self) -> str:
        """Return the configured User-Agent or a random one from the pool."""
        return self.user_agent or random.choice(self.USER_AGENTS)
