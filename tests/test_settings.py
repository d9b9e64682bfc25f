"""Tests for central configuration settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config.settings import (
    CacheSettings,
    ConcurrencySettings,
    DeploymentSettings,
    OrchestratorSettings,
    get_settings,
)


class TestConcurrencySettings:
    def test_defaults(self):
        env = os.environ.copy()
        env.pop("LARGE_PROCESS_CONCURRENCY", None)
        env.pop("LARGE_PROCESS_MAX_RUNTIME", None)
        with patch.dict(os.environ, env, clear=True):
            settings = ConcurrencySettings()
            assert settings.large_process_concurrency == 5
            assert settings.large_process_max_runtime == 1800.0
            assert settings.max_component_workers == 16

    def test_env_override(self):
        with patch.dict(os.environ, {
            "LARGE_PROCESS_CONCURRENCY": "2",
            "MAX_COMPONENT_WORKERS": "4",
        }, clear=False):
            settings = ConcurrencySettings()
            assert settings.large_process_concurrency == 2
            assert settings.max_component_workers == 4

    def test_zero_concurrency_rejected(self):
        with patch.dict(os.environ, {"LARGE_PROCESS_CONCURRENCY": "0"}, clear=False):
            with pytest.raises(ValidationError):
                ConcurrencySettings()


class TestDeploymentSettings:
    def test_defaults(self):
        settings = DeploymentSettings()
        assert settings.max_migration_attempts == 5
        assert settings.provisioning_timeout == 5400.0
        assert settings.rule_repositories.endswith("rules")

    def test_rule_repository_list(self):
        settings = DeploymentSettings(rule_repositories=os.pathsep.join(["/a", "", "/b"]))
        assert settings.rule_repository_list == ["/a", "/b"]

    def test_attempts_at_least_one(self):
        with pytest.raises(ValidationError):
            DeploymentSettings(max_migration_attempts=0)

    def test_env_override(self):
        with patch.dict(os.environ, {"MAX_MIGRATION_ATTEMPTS": "3", "DEBUG_SERVICE_DEPLOYMENTS": "true"}, clear=False):
            settings = DeploymentSettings()
            assert settings.max_migration_attempts == 3
            assert settings.debug_service_deployments is True


class TestCacheSettings:
    def test_prefixed_env(self):
        with patch.dict(os.environ, {"CACHE_GC_INTERVAL": "5"}, clear=False):
            assert CacheSettings().gc_interval == 5.0


class TestOrchestratorSettings:
    def test_nested_groups_initialized(self):
        settings = OrchestratorSettings()
        assert isinstance(settings.cache, CacheSettings)
        assert isinstance(settings.concurrency, ConcurrencySettings)
        assert isinstance(settings.deployment, DeploymentSettings)

    def test_nested_instances_kept(self):
        deployment = DeploymentSettings(max_migration_attempts=2)
        assert OrchestratorSettings(deployment=deployment).deployment.max_migration_attempts == 2

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            OrchestratorSettings(log_format="xml")


class TestGetSettings:
    def test_singleton(self):
        assert get_settings() is get_settings()

    def test_cache_clear_reloads(self):
        first = get_settings()
        with patch.dict(os.environ, {"LOG_LEVEL": "DEBUG"}, clear=False):
            get_settings.cache_clear()
            second = get_settings()
        assert first is not second
        assert second.log_level == "DEBUG"
