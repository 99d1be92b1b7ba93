"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/moodguard.db"


@dataclass
class AnalysisConfig:
    """Trend analysis and crisis detection thresholds."""

    window_days: int = 14
    window_size: int = 14
    trend_epsilon: float = 0.5
    min_entries: int = 3
    high_risk_average: float = 3.0
    moderate_risk_average: float = 6.0
    low_mood_threshold: int = 4
    low_mood_streak: int = 3
    sustained_high_cycles: int = 2
    active_alert_hours: int = 24


@dataclass
class SchedulerConfig:
    """Notification scheduling policy."""

    max_per_pass: int = 3
    time_tolerance_minutes: int = 5


@dataclass
class AnalyticsConfig:
    """Analytics configuration."""

    followup_hours: int = 24


@dataclass
class DeliveryConfig:
    """Delivery sink configuration."""

    type: str = "log"
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)
    triggers: list[dict[str, Any]] = field(default_factory=list)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _build_section(cls, values: Any, name: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ConfigValidationError(f"Section '{name}' must be a mapping")
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigValidationError(f"Invalid '{name}' section: {e}") from e


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.database.path:
        raise ConfigValidationError("Database path is required")

    if config.database.path != ":memory:":
        parent = Path(config.database.path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    analysis = config.analysis
    if analysis.window_size < 1 or analysis.window_days < 1:
        raise ConfigValidationError("Analysis window must cover at least one entry")
    if analysis.trend_epsilon < 0:
        raise ConfigValidationError("Trend epsilon cannot be negative")
    if analysis.min_entries < 2:
        raise ConfigValidationError("At least 2 entries are needed to split a window")
    if analysis.high_risk_average > analysis.moderate_risk_average:
        raise ConfigValidationError(
            "High-risk average must not exceed moderate-risk average"
        )
    if analysis.sustained_high_cycles < 1:
        raise ConfigValidationError("Sustained-high cycles must be at least 1")

    if config.scheduler.max_per_pass < 0:
        raise ConfigValidationError("Per-pass cap cannot be negative")
    if config.scheduler.time_tolerance_minutes < 0:
        raise ConfigValidationError("Time tolerance cannot be negative")

    if config.delivery.type not in ("log", "webhook"):
        raise ConfigValidationError(f"Unknown delivery type: {config.delivery.type}")
    if config.delivery.type == "webhook" and not config.delivery.webhook_url:
        raise ConfigValidationError("Webhook delivery requires a webhook_url")

    if not isinstance(config.triggers, list):
        raise ConfigValidationError("'triggers' must be a list of definitions")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        try:
            raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigValidationError("Configuration root must be a mapping")

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    config = AppConfig(
        database=_build_section(DatabaseConfig, config_dict.get("database"), "database"),
        analysis=_build_section(AnalysisConfig, config_dict.get("analysis"), "analysis"),
        scheduler=_build_section(
            SchedulerConfig, config_dict.get("scheduler"), "scheduler"
        ),
        analytics=_build_section(
            AnalyticsConfig, config_dict.get("analytics"), "analytics"
        ),
        delivery=_build_section(DeliveryConfig, config_dict.get("delivery"), "delivery"),
        advanced=_build_section(AdvancedConfig, config_dict.get("advanced"), "advanced"),
        triggers=config_dict.get("triggers") or [],
    )

    _validate_config(config)
    return config
