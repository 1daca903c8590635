"""
Unit tests for configuration classes.

Tests cover:
- Defaults of every section
- Validation errors with guidance
- TemporalConfig.from_dict()
- create_testing_config()
"""

import pytest

from temporalfix.config import (
    CacheConfig,
    CompatibilityConfig,
    HealthConfig,
    MigrationConfig,
    TemporalConfig,
    create_testing_config,
)
from temporalfix.types import CURRENT_SCHEMA_VERSION

# =============================================================================
# Defaults
# =============================================================================


class TestDefaults:
    """Tests for default configuration values."""

    def test_cache_defaults(self):
        config = CacheConfig()

        assert config.max_size == 100
        assert config.ttl_ms == 60_000
        assert config.intelligent_eviction is True
        assert config.maintenance_interval_s == 300.0
        assert config.response_time_samples == 1000

    def test_compatibility_defaults(self):
        config = CompatibilityConfig()

        assert config.warning_window_ms == 300_000
        assert config.century_pivot == 50
        assert 500 <= config.usage_log_size <= 1000

    def test_migration_defaults(self):
        config = MigrationConfig()

        assert config.batch_size == 100
        assert config.create_backup is True
        assert config.rollback_on_error is True
        assert config.dry_run is False
        assert config.schema_version == CURRENT_SCHEMA_VERSION == "V8.1"

    def test_health_defaults(self):
        config = HealthConfig()

        assert config.sample_retention_s == 7 * 86_400
        assert config.history_retention_s == 86_400
        assert config.interval_s == 60.0
        assert config.critical_error_rate == 0.10
        assert config.warning_error_rate == 0.05

    def test_configs_are_frozen(self):
        config = CacheConfig()

        with pytest.raises(AttributeError):
            config.max_size = 5  # type: ignore[misc]


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Tests for __post_init__ validation."""

    @pytest.mark.parametrize(
        ("factory", "match"),
        [
            (lambda: CacheConfig(max_size=0), "max_size must be positive"),
            (lambda: CacheConfig(ttl_ms=0), "ttl_ms must be positive"),
            (lambda: CompatibilityConfig(usage_log_size=0), "usage_log_size"),
            (lambda: CompatibilityConfig(century_pivot=100), "century_pivot"),
            (lambda: MigrationConfig(batch_size=0), "batch_size must be positive"),
            (lambda: MigrationConfig(max_errors_before_stop=-1), "max_errors_before_stop"),
            (lambda: MigrationConfig(schema_version=""), "schema_version"),
            (lambda: HealthConfig(target_latency_ms=0), "target_latency_ms"),
            (
                lambda: HealthConfig(warning_error_rate=0.2, critical_error_rate=0.1),
                "error rate thresholds",
            ),
            (lambda: HealthConfig(warning_latency_factor=0.5), "latency factors"),
            (lambda: TemporalConfig(performance_budget_ms=0), "performance_budget_ms"),
            (lambda: TemporalConfig(default_timezone=""), "default_timezone"),
        ],
    )
    def test_invalid_values_raise(self, factory, match: str):
        with pytest.raises(ValueError, match=match):
            factory()


# =============================================================================
# from_dict
# =============================================================================


class TestFromDict:
    """Tests for TemporalConfig.from_dict()."""

    def test_nested_sections(self):
        """Test nested mappings become their section dataclasses."""
        config = TemporalConfig.from_dict(
            {
                "cache": {"max_size": 250},
                "migration": {"batch_size": 20, "dry_run": True},
                "default_timezone": "America/Sao_Paulo",
                "enable_tracing": False,
            }
        )

        assert config.cache == CacheConfig(max_size=250)
        assert config.migration.batch_size == 20
        assert config.migration.dry_run is True
        assert config.health == HealthConfig()
        assert config.default_timezone == "America/Sao_Paulo"
        assert config.enable_tracing is False

    def test_empty_dict_gives_defaults(self):
        assert TemporalConfig.from_dict({}) == TemporalConfig()

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            TemporalConfig.from_dict({"cahce": {}})

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown keys in 'cache' section"):
            TemporalConfig.from_dict({"cache": {"size": 5}})

    def test_section_validation_applies(self):
        with pytest.raises(ValueError, match="batch_size"):
            TemporalConfig.from_dict({"migration": {"batch_size": 0}})


class TestTestingConfig:
    """Tests for create_testing_config()."""

    def test_disables_observability(self):
        config = create_testing_config()

        assert config.enable_tracing is False
        assert config.enable_metrics is False
        assert config.migration.batch_size == 2
