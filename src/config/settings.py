# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for breaker, cache, monitor, provider and logging
settings. Components never read Settings directly: they receive the frozen
BreakerConfig / CacheConfig / MonitorConfig produced by the helpers below,
so they can also be constructed directly in tests with documented defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker options. Durations are in seconds."""

    failure_threshold: int = 5
    min_request_threshold: int = 1
    reset_timeout: float = 30.0
    request_timeout: float = 180.0
    success_threshold_to_close: int = 2
    failure_decay_interval: float = 30.0
    health_check_interval: float = 10.0
    rate_limit_open_threshold: int = 5


@dataclass(frozen=True)
class CacheConfig:
    """SimilarityCache options. Durations are in seconds."""

    max_size: int = 500
    default_ttl: float = 24 * 60 * 60
    fuzzy_match_threshold: float = 0.85
    enable_fuzzy_match: bool = True
    memory_limit_mb: float = 64.0
    low_memory_mode: bool = False
    sweep_interval: float = 60 * 60
    fuzzy_disable_cooldown: float = 5 * 60
    fingerprint_min_length: int = 200
    min_pressure_eviction: int = 5
    pressure_eviction_ratio: float = 0.2


@dataclass(frozen=True)
class MonitorConfig:
    """MemoryLeakDetector + ResourceManager options."""

    sample_interval: float = 300.0
    growth_threshold: float = 20.0
    consecutive_growth_limit: int = 3
    gc_trigger_threshold_mb: float = 70.0
    min_gc_interval: float = 60.0
    resource_saving_mode: bool = True
    max_samples: int = 100
    memory_threshold_mb: float = 80.0
    cpu_threshold: float = 60.0
    check_interval: float = 180.0
    cleanup_interval: float = 600.0
    pool_size: int = 5
    pool_timeout: float = 15.0
    pool_idle_timeout: float = 30.0


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM PROVIDERS ===
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar"
    perplexity_deep_research_model: str = "sonar-deep-research"
    llm_max_tokens: int = 4096
    llm_temperature: float = 0.2

    # === Circuit breaker ===
    failure_threshold: int = 5
    min_request_threshold: int = 1
    reset_timeout: float = 30.0
    request_timeout: float = 180.0
    success_threshold_to_close: int = 2
    failure_decay_interval: float = 30.0
    health_check_interval: float = 10.0
    rate_limit_open_threshold: int = 5

    # === Cache ===
    cache_enabled: bool = True
    max_size: int = 500
    default_ttl: float = 24 * 60 * 60
    fuzzy_match_threshold: float = 0.85
    enable_fuzzy_match: bool = True
    memory_limit_mb: float = 64.0
    low_memory_mode: bool = False
    cache_sweep_interval: float = 60 * 60
    fuzzy_disable_cooldown: float = 5 * 60
    fingerprint_enabled: bool = True
    fingerprint_min_length: int = 200
    fingerprint_similarity_threshold: float = 0.85

    # === Resource monitor ===
    monitor_enabled: bool = True
    sample_interval: float = 300.0
    growth_threshold: float = 20.0
    consecutive_growth_limit: int = 3
    gc_trigger_threshold_mb: float = 70.0
    min_gc_interval: float = 60.0
    resource_saving_mode: bool = True
    max_samples: int = 100
    memory_threshold_mb: float = 80.0
    cpu_threshold: float = 60.0
    resource_check_interval: float = 180.0
    resource_cleanup_interval: float = 600.0
    pool_size: int = 5
    pool_timeout: float = 15.0
    pool_idle_timeout: float = 30.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "fuzzy_match_threshold", "fingerprint_similarity_threshold",
    )
    @classmethod
    def validate_threshold(cls, v: float, info) -> float:  # noqa: N805
        """Similarity thresholds must lie in (0, 1]."""
        if not 0.0 < v <= 1.0:
            raise ValueError(f"{info.field_name} must be in (0, 1], got {v}")
        return v

    @field_validator(
        "failure_threshold", "success_threshold_to_close",
        "consecutive_growth_limit", "max_size", "pool_size",
    )
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:  # noqa: N805
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.request_timeout <= 0:
            errors.append("REQUEST_TIMEOUT must be > 0")

        if self.reset_timeout < 0:
            errors.append("RESET_TIMEOUT must be >= 0")

        if self.min_request_threshold < 0:
            errors.append("MIN_REQUEST_THRESHOLD must be >= 0")

        if self.default_ttl <= 0:
            errors.append("DEFAULT_TTL must be > 0")

        for name in (
            "health_check_interval", "cache_sweep_interval", "sample_interval",
            "resource_check_interval", "resource_cleanup_interval",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def breaker_config(self) -> BreakerConfig:
        """Circuit breaker options derived from settings."""
        return BreakerConfig(
            failure_threshold=self.failure_threshold,
            min_request_threshold=self.min_request_threshold,
            reset_timeout=self.reset_timeout,
            request_timeout=self.request_timeout,
            success_threshold_to_close=self.success_threshold_to_close,
            failure_decay_interval=self.failure_decay_interval,
            health_check_interval=self.health_check_interval,
            rate_limit_open_threshold=self.rate_limit_open_threshold,
        )

    def cache_config(self) -> CacheConfig:
        """SimilarityCache options derived from settings."""
        return CacheConfig(
            max_size=self.max_size,
            default_ttl=self.default_ttl,
            fuzzy_match_threshold=self.fuzzy_match_threshold,
            enable_fuzzy_match=self.enable_fuzzy_match,
            memory_limit_mb=self.memory_limit_mb,
            low_memory_mode=self.low_memory_mode,
            sweep_interval=self.cache_sweep_interval,
            fuzzy_disable_cooldown=self.fuzzy_disable_cooldown,
            fingerprint_min_length=self.fingerprint_min_length,
        )

    def monitor_config(self) -> MonitorConfig:
        """Resource monitor options derived from settings."""
        return MonitorConfig(
            sample_interval=self.sample_interval,
            growth_threshold=self.growth_threshold,
            consecutive_growth_limit=self.consecutive_growth_limit,
            gc_trigger_threshold_mb=self.gc_trigger_threshold_mb,
            min_gc_interval=self.min_gc_interval,
            resource_saving_mode=self.resource_saving_mode,
            max_samples=self.max_samples,
            memory_threshold_mb=self.memory_threshold_mb,
            cpu_threshold=self.cpu_threshold,
            check_interval=self.resource_check_interval,
            cleanup_interval=self.resource_cleanup_interval,
            pool_size=self.pool_size,
            pool_timeout=self.pool_timeout,
            pool_idle_timeout=self.pool_idle_timeout,
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-process config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
