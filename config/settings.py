"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast).

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.concurrency.large_process_concurrency)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).parent.parent


# =============================================================================
# Nested Settings Groups
# =============================================================================


class CacheSettings(BaseSettings):
    """NamedCache defaults."""

    model_config = {"env_prefix": "CACHE_", "extra": "ignore"}

    default_ttl: float = 3600.0  # 1 hour
    gc_interval: float = 60.0


class ConcurrencySettings(BaseSettings):
    """Limits for heavy external operations and component workers."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    large_process_concurrency: int = 5
    large_process_max_runtime: float = 1800.0  # 30 minutes
    device_lock_poll_interval: float = 2.0
    counter_poll_interval: float = 0.1
    max_component_workers: int = 16

    @field_validator("large_process_concurrency", "max_component_workers")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class DeploymentSettings(BaseSettings):
    """Rule repositories, artifacts and retry policy."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    rule_repositories: str = str(PROJECT_ROOT / "rules")
    deployments_dir: str = str(PROJECT_ROOT / "data" / "deployments")
    max_migration_attempts: int = 5
    debug_service_deployments: bool = False
    state_file: Optional[str] = None
    provisioning_timeout: float = 5400.0  # 90 minutes
    provisioning_poll_interval: float = 30.0

    @field_validator("max_migration_attempts")
    @classmethod
    def _attempts_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_migration_attempts must be at least 1")
        return v

    @property
    def rule_repository_list(self) -> list[str]:
        """Rule repositories split on the platform path separator."""
        return [p for p in self.rule_repositories.split(os.pathsep) if p]


# =============================================================================
# Root Settings
# =============================================================================


class OrchestratorSettings(BaseSettings):
    """Root settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""

    # Nested groups (initialized separately to support env_prefix)
    cache: CacheSettings = None  # type: ignore[assignment]
    concurrency: ConcurrencySettings = None  # type: ignore[assignment]
    deployment: DeploymentSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("cache") is None:
            values["cache"] = CacheSettings()
        if values.get("concurrency") is None:
            values["concurrency"] = ConcurrencySettings()
        if values.get("deployment") is None:
            values["deployment"] = DeploymentSettings()
        return values

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v


@lru_cache(maxsize=1)
def get_settings() -> OrchestratorSettings:
    """
    Get the settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return OrchestratorSettings()
