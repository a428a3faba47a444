"""
Typed configuration for the device resolver, loaded from the environment.

All variables use the DEVICE_RESOLVER_ prefix, e.g.:

    DEVICE_RESOLVER_LIBRARY_PATH=data/devices.parquet
    DEVICE_RESOLVER_CACHE_TTL_SECONDS=60
    DEVICE_RESOLVER_AUTO_SAVE_ALIASES=false
"""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration or matching rules are internally inconsistent."""


_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ResolverSettings(BaseSettings):
    """Resolver settings loaded from env vars / .env file."""

    model_config = SettingsConfigDict(
        env_prefix="DEVICE_RESOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Backing stores ===
    library_path: Optional[str] = None
    alias_path: Optional[str] = None
    brand_rules_path: Optional[str] = None

    # === Library cache ===
    cache_ttl_seconds: float = 60.0

    # === Matching thresholds ===
    structured_token_threshold: float = 0.8
    free_text_min_score: float = 0.6
    free_text_medium_score: float = 0.8

    # === Aliases / review ===
    auto_save_aliases: bool = True
    suggestion_limit: int = 3

    # === Logging ===
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("structured_token_threshold", "free_text_min_score", "free_text_medium_score")
    @classmethod
    def _threshold_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError(f"threshold must be in (0, 1], got {v}")
        return v

    @field_validator("cache_ttl_seconds")
    @classmethod
    def _ttl_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {v}")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> "ResolverSettings":
        if self.free_text_min_score > self.free_text_medium_score:
            raise ConfigurationError(
                "free_text_min_score "
                f"({self.free_text_min_score}) exceeds free_text_medium_score "
                f"({self.free_text_medium_score})"
            )
        if self.suggestion_limit < 0:
            raise ConfigurationError("suggestion_limit cannot be negative")
        return self


@lru_cache(maxsize=1)
def get_settings() -> ResolverSettings:
    """Process-wide settings instance."""
    return ResolverSettings()
