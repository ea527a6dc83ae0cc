from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator
import structlog
import os

logger = structlog.get_logger(__name__)


def _clamp(name: str, value: float, minimum: float, maximum: Optional[float] = None) -> float:
    """Clamp an out-of-range setting instead of rejecting it"""
    clamped = max(minimum, value)
    if maximum is not None:
        clamped = min(maximum, clamped)
    if clamped != value:
        logger.warning("Configuration value clamped", setting=name, value=value, clamped=clamped)
    return clamped


class CacheConfig(BaseModel):
    """Context cache settings"""
    max_size: int = 100
    default_ttl_seconds: float = 30 * 60
    cleanup_interval_seconds: float = 5 * 60
    compression_enabled: bool = False

    @field_validator("max_size")
    @classmethod
    def _clamp_max_size(cls, v: int) -> int:
        return int(_clamp("cache.max_size", v, 1))

    @field_validator("default_ttl_seconds")
    @classmethod
    def _clamp_ttl(cls, v: float) -> float:
        return _clamp("cache.default_ttl_seconds", v, 0)

    @field_validator("cleanup_interval_seconds")
    @classmethod
    def _clamp_interval(cls, v: float) -> float:
        return _clamp("cache.cleanup_interval_seconds", v, 0.01)


class MemoryConfig(BaseModel):
    """Capacities of the memory tiers"""
    short_term_capacity: int = 50
    long_term_capacity: int = 1000
    working_memory_capacity: int = 20

    @field_validator("short_term_capacity", "long_term_capacity", "working_memory_capacity")
    @classmethod
    def _clamp_capacity(cls, v: int, info) -> int:
        return int(_clamp(f"memory.{info.field_name}", v, 1))


class ValidationConfig(BaseModel):
    """Validator behaviour"""
    strict_mode: bool = False
    enabled_rule_set: Optional[List[str]] = Field(
        default=None,
        description="Rule ids allowed to run; None runs every registered rule",
    )
    max_history: int = 1000

    @field_validator("max_history")
    @classmethod
    def _clamp_history(cls, v: int) -> int:
        return int(_clamp("validation.max_history", v, 1))


class EmotionConfig(BaseModel):
    """Emotion analyzer cache settings"""
    cache_size: int = 500
    cache_timeout_seconds: float = 30 * 60
    cleanup_interval_seconds: float = 5 * 60

    @field_validator("cache_size")
    @classmethod
    def _clamp_cache_size(cls, v: int) -> int:
        return int(_clamp("emotion.cache_size", v, 1))

    @field_validator("cache_timeout_seconds")
    @classmethod
    def _clamp_timeout(cls, v: float) -> float:
        return _clamp("emotion.cache_timeout_seconds", v, 0)

    @field_validator("cleanup_interval_seconds")
    @classmethod
    def _clamp_interval(cls, v: float) -> float:
        return _clamp("emotion.cleanup_interval_seconds", v, 0.01)


class MonitoringConfig(BaseModel):
    """Performance monitor thresholds"""
    max_response_time_ms: float = 1000
    max_memory_usage_bytes: int = 50 * 1024 * 1024
    min_cache_hit_rate: float = 0.7
    max_error_rate: float = 0.05
    max_history: int = 1000

    @field_validator("min_cache_hit_rate", "max_error_rate")
    @classmethod
    def _clamp_rate(cls, v: float, info) -> float:
        return _clamp(f"monitoring.{info.field_name}", v, 0, 1)

    @field_validator("max_history")
    @classmethod
    def _clamp_history(cls, v: int) -> int:
        return int(_clamp("monitoring.max_history", v, 1))


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    service_name: str = "context-engine"


class ContextEngineConfig(BaseModel):
    """Top-level configuration; every section is optional and defaulted"""
    cache: CacheConfig = Field(default_factory=CacheConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    emotion: EmotionConfig = Field(default_factory=EmotionConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "ContextEngineConfig":
        """Build config from CONTEXT_ENGINE_* environment variables plus explicit overrides"""

        env_map = {
            ("cache", "max_size"): "CONTEXT_ENGINE_CACHE_MAX_SIZE",
            ("cache", "default_ttl_seconds"): "CONTEXT_ENGINE_CACHE_TTL",
            ("cache", "cleanup_interval_seconds"): "CONTEXT_ENGINE_CACHE_CLEANUP_INTERVAL",
            ("memory", "short_term_capacity"): "CONTEXT_ENGINE_SHORT_TERM_CAPACITY",
            ("memory", "long_term_capacity"): "CONTEXT_ENGINE_LONG_TERM_CAPACITY",
            ("memory", "working_memory_capacity"): "CONTEXT_ENGINE_WORKING_MEMORY_CAPACITY",
            ("validation", "strict_mode"): "CONTEXT_ENGINE_STRICT_VALIDATION",
            ("logging", "level"): "LOG_LEVEL",
            ("logging", "format"): "LOG_FORMAT",
        }

        data: Dict[str, Dict[str, Any]] = {}
        for (section, key), env_name in env_map.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            if key == "strict_mode":
                value: Any = raw.lower() in ("1", "true", "yes", "on")
            else:
                field = cls.model_fields[section].annotation.model_fields[key]
                try:
                    value = TypeAdapter(field.annotation).validate_python(raw)
                except ValidationError:
                    logger.warning("Ignoring unparsable configuration value", variable=env_name, value=raw)
                    continue
            data.setdefault(section, {})[key] = value

        for section, values in (overrides or {}).items():
            data.setdefault(section, {}).update(values)

        return cls.model_validate(data)
