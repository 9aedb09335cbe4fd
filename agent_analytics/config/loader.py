"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from agent_analytics.core.pricing import TokenPricing
from agent_analytics.core.windows import resolve_timezone
from agent_analytics.storage.source import BACKENDS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageConfig:
    """Which event backend to use and where it lives."""
    backend: str = "memory"
    db_path: str = "agent_analytics.db"

    def __post_init__(self):
        """Validate backend name."""
        if self.backend not in BACKENDS:
            raise ValueError(f"storage.backend must be one of: {list(BACKENDS)}")
        if not self.db_path:
            raise ValueError("storage.db_path cannot be empty")


@dataclass(frozen=True)
class CacheConfig:
    """Result cache lifetime."""
    ttl_seconds: float = 60

    def __post_init__(self):
        """Validate TTL is not negative."""
        if self.ttl_seconds < 0:
            raise ValueError("cache.ttl_seconds must be >= 0")

    @property
    def ttl_ms(self) -> float:
        return self.ttl_seconds * 1000


@dataclass(frozen=True)
class TimeseriesConfig:
    """Bucket alignment settings."""
    timezone: str = "UTC"

    def __post_init__(self):
        """Validate timezone name resolves."""
        try:
            resolve_timezone(self.timezone)
        except (KeyError, ValueError) as e:
            raise ValueError(f"timeseries.timezone is not a valid timezone: {self.timezone}") from e


@dataclass(frozen=True)
class SessionsConfig:
    """Session list defaults."""
    default_lookback_days: int = 90
    default_page_size: int = 25

    def __post_init__(self):
        """Validate defaults are positive."""
        if self.default_lookback_days <= 0:
            raise ValueError("sessions.default_lookback_days must be > 0")
        if self.default_page_size <= 0:
            raise ValueError("sessions.default_page_size must be > 0")


@dataclass(frozen=True)
class IngestionConfig:
    """Ingestion batch limits."""
    max_batch_size: int = 1000

    def __post_init__(self):
        """Validate batch ceiling is positive."""
        if self.max_batch_size <= 0:
            raise ValueError("ingestion.max_batch_size must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        """Validate log level name."""
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class Settings:
    """Complete application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    timeseries: TimeseriesConfig = field(default_factory=TimeseriesConfig)
    sessions: SessionsConfig = field(default_factory=SessionsConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    pricing: TokenPricing = field(default_factory=TokenPricing)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# section -> allowed keys and their expected types
_SCHEMA: Dict[str, Dict[str, tuple]] = {
    "storage": {"backend": (str,), "db_path": (str,)},
    "cache": {"ttl_seconds": (int, float)},
    "timeseries": {"timezone": (str,)},
    "sessions": {"default_lookback_days": (int,), "default_page_size": (int,)},
    "ingestion": {"max_batch_size": (int,)},
    "pricing": {"input_per_1k": (int, float), "output_per_1k": (int, float)},
    "logging": {"level": (str,)},
}


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate settings from a YAML file.

    Strict validation rejects unknown sections and keys so that a typo
    never silently falls back to a default.

    Args:
        path: Path to YAML configuration file; None returns defaults

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return Settings()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return Settings()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping of sections")

    unknown_sections = set(raw_config.keys()) - set(_SCHEMA)
    if unknown_sections:
        raise ValueError(f"Unknown configuration sections: {unknown_sections}")

    sections = {
        name: _parse_section(name, raw_config.get(name) or {})
        for name in _SCHEMA
    }

    pricing = sections["pricing"]
    return Settings(
        storage=StorageConfig(**sections["storage"]),
        cache=CacheConfig(**sections["cache"]),
        timeseries=TimeseriesConfig(**sections["timeseries"]),
        sessions=SessionsConfig(**sections["sessions"]),
        ingestion=IngestionConfig(**sections["ingestion"]),
        pricing=TokenPricing(
            input_cost_per_1k=pricing.get("input_per_1k", TokenPricing.input_cost_per_1k),
            output_cost_per_1k=pricing.get("output_per_1k", TokenPricing.output_cost_per_1k),
        ),
        logging=LoggingConfig(**sections["logging"]),
    )


def _parse_section(name: str, data: Any) -> Dict[str, Any]:
    """Check a section's keys and value types.

    Args:
        name: Section name for error messages
        data: Raw section content

    Returns:
        The section's key/value pairs

    Raises:
        ValueError: If the section is malformed
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    allowed = _SCHEMA[name]
    unknown_keys = set(data.keys()) - set(allowed)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        expected = allowed[key]
        # bool is an int subclass; reject it for numeric settings
        if isinstance(value, bool) or not isinstance(value, expected):
            type_names = " or ".join(t.__name__ for t in expected)
            raise ValueError(f"'{name}.{key}' must be {type_names}")

    return dict(data)
