"""
Tests for configuration defaults, clamping and environment overrides.
"""

from context_engine.domain.models.config import (
    CacheConfig,
    ContextEngineConfig,
    EmotionConfig,
    MemoryConfig,
    MonitoringConfig,
)


class TestDefaults:

    def test_every_section_defaults(self):
        config = ContextEngineConfig()
        assert config.cache.max_size == 100
        assert config.cache.default_ttl_seconds == 1800
        assert config.memory.short_term_capacity == 50
        assert config.memory.long_term_capacity == 1000
        assert config.memory.working_memory_capacity == 20
        assert config.validation.strict_mode is False
        assert config.validation.enabled_rule_set is None
        assert config.emotion.cache_size == 500
        assert config.monitoring.max_memory_usage_bytes == 50 * 1024 * 1024
        assert config.logging.service_name == "context-engine"


class TestClamping:

    def test_out_of_range_values_are_clamped(self):
        assert CacheConfig(max_size=0).max_size == 1
        assert CacheConfig(default_ttl_seconds=-5).default_ttl_seconds == 0
        assert MemoryConfig(short_term_capacity=-3).short_term_capacity == 1
        assert EmotionConfig(cache_size=0).cache_size == 1
        assert MonitoringConfig(min_cache_hit_rate=1.5).min_cache_hit_rate == 1
        assert MonitoringConfig(max_error_rate=-0.1).max_error_rate == 0

    def test_in_range_values_are_kept(self):
        assert CacheConfig(max_size=10).max_size == 10
        assert MonitoringConfig(min_cache_hit_rate=0.4).min_cache_hit_rate == 0.4


class TestFromEnv:

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CONTEXT_ENGINE_CACHE_MAX_SIZE", "25")
        monkeypatch.setenv("CONTEXT_ENGINE_SHORT_TERM_CAPACITY", "7")
        monkeypatch.setenv("CONTEXT_ENGINE_STRICT_VALIDATION", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        config = ContextEngineConfig.from_env()
        assert config.cache.max_size == 25
        assert config.memory.short_term_capacity == 7
        assert config.validation.strict_mode is True
        assert config.logging.level == "DEBUG"

    def test_overrides_win_over_environment(self, monkeypatch):
        monkeypatch.setenv("CONTEXT_ENGINE_CACHE_MAX_SIZE", "25")
        config = ContextEngineConfig.from_env({"cache": {"max_size": 5}})
        assert config.cache.max_size == 5

    def test_empty_environment_uses_defaults(self, monkeypatch):
        monkeypatch.delenv("CONTEXT_ENGINE_CACHE_MAX_SIZE", raising=False)
        monkeypatch.setenv("CONTEXT_ENGINE_CACHE_TTL", "")
        config = ContextEngineConfig.from_env()
        assert config.cache.max_size == 100
        assert config.cache.default_ttl_seconds == 1800

    def test_unparsable_values_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("CONTEXT_ENGINE_CACHE_MAX_SIZE", "abc")
        monkeypatch.setenv("CONTEXT_ENGINE_CACHE_TTL", "soon")
        monkeypatch.setenv("CONTEXT_ENGINE_SHORT_TERM_CAPACITY", "12")

        config = ContextEngineConfig.from_env()
        assert config.cache.max_size == 100
        assert config.cache.default_ttl_seconds == 1800
        assert config.memory.short_term_capacity == 12
