from pathlib import Path
from typing import Annotated
import logging

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = ("tmdb", "bilibili")


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    providers: Annotated[list[str], NoDecode] = list(KNOWN_PROVIDERS)  # Priority order for merging
    tmdb_api_token: str | None = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tmdb_image_base_url: str = "https://image.tmdb.org/t/p/w500"
    tmdb_language: str = "zh-CN"
    tmdb_origin_country: str = "JP"
    bilibili_base_url: str = "https://api.bilibili.com"

    adapter_timeout_sec: float = 8.0
    rate_limit_max_retries: int = 1
    rate_limit_backoff_sec: float = 1.0

    list_cache_ttl_sec: int = 3600
    search_cache_ttl_sec: int = 600
    schedule_cache_ttl_sec: int = 1800
    detail_cache_ttl_sec: int = 3600

    cache_backend: str = "memory"
    cache_max_entries: int = 1024  # 0 disables the LRU bound
    cache_stale_retention_sec: int = 86400  # Keep expired entries for stale fallback
    cache_cleanup_cron: str = "*/30 * * * *"
    database_path: str = "./data/anime_cache.db"

    cors_allowed_origins: Annotated[list[str] | None, NoDecode] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("providers", "cors_allowed_origins", mode="before")
    @classmethod
    def parse_comma_separated(cls, value):
        """Parse comma-separated values or list."""
        if value is None:
            return value
        if isinstance(value, str):
            if not value.strip():
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("providers", mode="after")
    @classmethod
    def validate_providers(cls, value):
        """Reject unknown provider names and drop duplicates."""
        normalized = []
        for name in value:
            name = name.lower()
            if name not in KNOWN_PROVIDERS:
                raise ValueError(
                    f"Unknown provider '{name}', expected one of {list(KNOWN_PROVIDERS)}"
                )
            if name not in normalized:
                normalized.append(name)
        return normalized

    @field_validator("tmdb_api_token", mode="before")
    @classmethod
    def blank_token_is_missing(cls, value):
        """Treat an empty token as an absent credential."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("tmdb_base_url", "tmdb_image_base_url", "bilibili_base_url")
    @classmethod
    def validate_base_urls(cls, value: str) -> str:
        """Validate upstream URLs are HTTP/HTTPS."""
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"Upstream URL must be HTTP/HTTPS: {value}")
        return value.rstrip("/")

    @field_validator("adapter_timeout_sec", "rate_limit_backoff_sec")
    @classmethod
    def validate_positive_floats(cls, value: float, info) -> float:
        """Ensure timing settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("rate_limit_max_retries", "cache_max_entries", "cache_stale_retention_sec")
    @classmethod
    def validate_non_negative_ints(cls, value: int, info) -> int:
        """Ensure counters are non-negative."""
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator(
        "list_cache_ttl_sec",
        "search_cache_ttl_sec",
        "schedule_cache_ttl_sec",
        "detail_cache_ttl_sec",
    )
    @classmethod
    def validate_ttls(cls, value: int, info) -> int:
        """Ensure cache TTLs are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, value: str) -> str:
        """Validate cache backend name."""
        normalized = value.lower()
        allowed = {"memory", "database"}
        if normalized not in allowed:
            raise ValueError(f"cache_backend must be one of {sorted(allowed)}")
        return normalized

    @field_validator("cache_cleanup_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @model_validator(mode="after")
    def validate_provider_configuration(self):
        """Validate cross-field configuration."""
        if not self.providers:
            logger.warning("No providers configured - every request will fail upstream")

        if "tmdb" in (self.providers or []) and not self.tmdb_api_token:
            logger.warning("TMDB_API_TOKEN not set - TMDB adapter will be skipped")

        if self.cache_backend == "database":
            path = Path(self.database_path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except (OSError, PermissionError) as exc:
                raise ValueError(
                    f"Cannot access database path '{self.database_path}': {exc}"
                ) from exc

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Providers: %s", ", ".join(self.providers or []) or "none")
        logger.info("  TMDB Token: %s", "set" if self.tmdb_api_token else "missing")
        logger.info("  Adapter Timeout: %ss", self.adapter_timeout_sec)
        logger.info(
            "  Rate Limit Retries: %s (backoff %.1fs)",
            self.rate_limit_max_retries,
            self.rate_limit_backoff_sec,
        )
        logger.info(
            "  Cache TTLs: list=%ss search=%ss schedule=%ss detail=%ss",
            self.list_cache_ttl_sec,
            self.search_cache_ttl_sec,
            self.schedule_cache_ttl_sec,
            self.detail_cache_ttl_sec,
        )
        logger.info("  Cache Backend: %s", self.cache_backend)
        if self.cache_backend == "database":
            logger.info("  Database: %s", self.database_path)
        else:
            logger.info("  Cache Max Entries: %s", self.cache_max_entries or "unbounded")
        logger.info("  Stale Retention: %ss", self.cache_stale_retention_sec)
        logger.info("  Cleanup Schedule: %s", self.cache_cleanup_cron)


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
