"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from finnotify.errors import ConfigValidationError

__all__ = [
    "AppConfig",
    "CacheConfig",
    "ConfigValidationError",
    "DesktopConfig",
    "FeedConfig",
    "ScheduleConfig",
    "StoreConfig",
    "load_config",
]


@dataclass
class StoreConfig:
    """Document store configuration."""

    path: str = "data/finnotify.db"


@dataclass
class ScheduleConfig:
    """Per-family evaluation cadences."""

    transaction_minutes: int = 30
    budget_minutes: int = 60
    goal_minutes: int = 120
    report_minutes: int = 24 * 60
    quiet_hours_tick_seconds: int = 60
    evaluate_on_start: bool = True

    def interval_seconds(self, family: str) -> int:
        """Get the timer interval for a rule family."""
        minutes = {
            "transaction": self.transaction_minutes,
            "budget": self.budget_minutes,
            "goal": self.goal_minutes,
            "report": self.report_minutes,
        }[family]
        return minutes * 60


@dataclass
class FeedConfig:
    """Feed merger configuration."""

    limit: int = 200
    subscription_limit: int = 1


@dataclass
class CacheConfig:
    """Local key-value cache for settings and preferences."""

    dir: str = "data/cache"


@dataclass
class DesktopConfig:
    """Desktop pop-up relay settings."""

    webhook_url: Optional[str] = None
    app_name: str = "Money Manager"
    timeout_seconds: int = 10


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    desktop: DesktopConfig = field(default_factory=DesktopConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


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


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    store = config_dict.get("store") or {}
    store_path = store.get("path", StoreConfig.path)
    if not store_path:
        raise ConfigValidationError("Store path is required")

    if store_path != ":memory:":
        parent = Path(store_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Store path not writable: {parent}")

    schedule = config_dict.get("schedule") or {}
    for key in (
        "transaction_minutes",
        "budget_minutes",
        "goal_minutes",
        "report_minutes",
        "quiet_hours_tick_seconds",
    ):
        value = schedule.get(key)
        if value is not None and (not isinstance(value, int) or value <= 0):
            raise ConfigValidationError(f"schedule.{key} must be a positive integer")

    feed = config_dict.get("feed") or {}
    limit = feed.get("limit")
    if limit is not None and (not isinstance(limit, int) or limit <= 0):
        raise ConfigValidationError("feed.limit must be a positive integer")


def config_from_dict(config_dict: dict[str, Any]) -> AppConfig:
    """Build AppConfig from an already-substituted dict."""
    _validate_config(config_dict)

    return AppConfig(
        store=StoreConfig(**(config_dict.get("store") or {})),
        schedule=ScheduleConfig(**(config_dict.get("schedule") or {})),
        feed=FeedConfig(**(config_dict.get("feed") or {})),
        cache=CacheConfig(**(config_dict.get("cache") or {})),
        desktop=DesktopConfig(**(config_dict.get("desktop") or {})),
        advanced=AdvancedConfig(**(config_dict.get("advanced") or {})),
    )


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
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    return config_from_dict(config_dict)
