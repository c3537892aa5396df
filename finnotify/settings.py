"""
Per-user notification settings and preferences.
"""

import json
import logging
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from finnotify.database.models import PREFERENCE_CATEGORIES, Preferences, Settings
from finnotify.database.repository import UserSettingsRepository
from finnotify.errors import FinnotifyError, ValidationError
from finnotify.notifiers.gate import parse_time_of_day

logger = logging.getLogger(__name__)

SETTINGS_KEY = "notification_settings"
PREFERENCES_KEY = "notification_preferences"


def _from_dict(cls, data: Optional[dict[str, Any]]):
    """Build a dataclass from a dict, ignoring unknown keys."""
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def validate_settings(settings: Settings) -> None:
    """
    Check settings against their declared bounds.

    Raises:
        ValidationError: If any value is out of bounds
    """
    if not 50 <= settings.budget_threshold <= 100:
        raise ValidationError("Budget threshold must be between 50% and 100%")

    if settings.transaction_threshold < 0:
        raise ValidationError("Transaction threshold must be positive")

    for name in ("quiet_start", "quiet_end"):
        try:
            parse_time_of_day(getattr(settings, name))
        except ValueError as e:
            raise ValidationError(str(e))


class LocalCache:
    """JSON file per user holding settings and preferences for instant reload."""

    def __init__(self, cache_dir: str, user_id: str):
        self.path = Path(cache_dir) / f"{user_id}.json"

    def read(self, key: str) -> Optional[dict[str, Any]]:
        """Read one section, or None if missing or unreadable."""
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache {self.path}: {e}")
            return None
        return data.get(key) if isinstance(data, dict) else None

    def write(self, key: str, value: dict[str, Any]) -> None:
        """Write one section, keeping the others."""
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = json.load(f)
            except (OSError, ValueError):
                data = {}

        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)


class SettingsManager:
    """Loads, validates and saves settings and preferences for one session."""

    def __init__(
        self,
        user_id: str,
        cache: LocalCache,
        mirror: Optional[UserSettingsRepository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.user_id = user_id
        self.cache = cache
        self.mirror = mirror
        self.clock = clock
        self.settings = Settings()
        self.preferences = Preferences()

    async def load(self) -> None:
        """Load from the local cache, then the remote mirror, then defaults."""
        cached_settings = self.cache.read(SETTINGS_KEY)
        cached_preferences = self.cache.read(PREFERENCES_KEY)

        remote: dict[str, Any] = {}
        if (cached_settings is None or cached_preferences is None) and self.mirror:
            try:
                remote = await self.mirror.get(self.user_id) or {}
            except FinnotifyError as e:
                logger.warning(f"Could not load settings mirror: {e}")

        self.settings = self._load_settings(
            cached_settings if cached_settings is not None else remote.get(SETTINGS_KEY)
        )
        self.preferences = _from_dict(
            Preferences,
            cached_preferences
            if cached_preferences is not None
            else remote.get(PREFERENCES_KEY),
        )

    def _load_settings(self, data: Optional[dict[str, Any]]) -> Settings:
        try:
            settings = _from_dict(Settings, data)
            validate_settings(settings)
            return settings
        except (TypeError, ValidationError) as e:
            logger.warning(f"Using default settings, stored settings invalid: {e}")
            return Settings()

    async def update_settings(self, settings: Settings) -> Settings:
        """
        Validate and save settings.

        Raises:
            ValidationError: If settings are out of bounds; nothing is saved
        """
        validate_settings(settings)

        now = self.clock()
        saved = replace(settings, updated_at=now.isoformat())
        self.cache.write(SETTINGS_KEY, asdict(saved))
        self.settings = saved

        await self._mirror(SETTINGS_KEY, asdict(saved), now)
        return saved

    async def update_preference(self, category: str, enabled: bool) -> Preferences:
        """
        Set one category toggle.

        Raises:
            ValidationError: If category is unknown
        """
        if category not in PREFERENCE_CATEGORIES:
            raise ValidationError(f"Unknown preference category: {category}")

        preferences = replace(self.preferences, **{category: bool(enabled)})
        self.cache.write(PREFERENCES_KEY, asdict(preferences))
        self.preferences = preferences

        await self._mirror(PREFERENCES_KEY, asdict(preferences), self.clock())
        return preferences

    async def _mirror(self, key: str, values: dict[str, Any], now: datetime) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.save(self.user_id, key, values, now)
        except FinnotifyError as e:
            logger.warning(f"Could not mirror {key} for {self.user_id}: {e}")
