"""
Settings tests.
Tests for validation, the local cache and the remote mirror.
"""

import asyncio
import json
import pytest
from dataclasses import replace
from unittest.mock import AsyncMock

from finnotify.database.models import Preferences, Settings
from finnotify.database.repository import UserSettingsRepository
from finnotify.errors import StoreUnavailable, ValidationError
from finnotify.settings import (
    PREFERENCES_KEY,
    SETTINGS_KEY,
    LocalCache,
    SettingsManager,
    validate_settings,
)


def run(coro):
    return asyncio.run(coro)


class TestValidateSettings:
    """Test settings bounds."""

    def test_defaults_are_valid(self):
        """Should accept the default settings."""
        validate_settings(Settings())

    @pytest.mark.parametrize("threshold", [49, 101])
    def test_budget_threshold_bounds(self, threshold):
        """Should keep the budget threshold within 50-100%."""
        with pytest.raises(ValidationError):
            validate_settings(Settings(budget_threshold=threshold))

    def test_negative_transaction_threshold(self):
        """Should reject negative transaction thresholds."""
        with pytest.raises(ValidationError):
            validate_settings(Settings(transaction_threshold=-1))

    def test_invalid_quiet_hours(self):
        """Should reject malformed quiet hours."""
        with pytest.raises(ValidationError):
            validate_settings(Settings(quiet_start="10pm"))


class TestLocalCache:
    """Test the per-user JSON cache."""

    def test_write_and_read_sections(self, tmp_path, user_id):
        """Should keep sections side by side."""
        cache = LocalCache(str(tmp_path / "cache"), user_id)
        cache.write(SETTINGS_KEY, {"budget_threshold": 90})
        cache.write(PREFERENCES_KEY, {"goal_updates": False})

        assert cache.read(SETTINGS_KEY) == {"budget_threshold": 90}
        assert cache.read(PREFERENCES_KEY) == {"goal_updates": False}

    def test_missing_file(self, tmp_path, user_id):
        """Should read nothing from a missing file."""
        assert LocalCache(str(tmp_path), user_id).read(SETTINGS_KEY) is None

    def test_corrupt_file(self, tmp_path, user_id):
        """Should ignore an unreadable file."""
        (tmp_path / f"{user_id}.json").write_text("{not json")
        assert LocalCache(str(tmp_path), user_id).read(SETTINGS_KEY) is None


class TestSettingsManager:
    """Test loading and saving settings."""

    @pytest.fixture
    def manager(self, tmp_path, store, user_id, clock):
        return SettingsManager(
            user_id,
            LocalCache(str(tmp_path), user_id),
            mirror=UserSettingsRepository(store),
            clock=clock,
        )

    def test_load_defaults(self, manager):
        """Should fall back to defaults with no cache or mirror data."""
        run(manager.load())
        assert manager.settings == Settings()
        assert manager.preferences == Preferences()

    def test_update_writes_cache_and_mirror(self, manager, store, user_id, clock):
        """Should save settings locally and to the store."""
        saved = run(manager.update_settings(Settings(budget_threshold=90)))

        assert saved.budget_threshold == 90
        assert saved.updated_at == clock.now.isoformat()
        assert manager.cache.read(SETTINGS_KEY)["budget_threshold"] == 90

        mirrored = run(UserSettingsRepository(store).get(user_id))
        assert mirrored[SETTINGS_KEY]["budget_threshold"] == 90

    def test_invalid_update_keeps_previous(self, manager):
        """Should raise before writing anything."""
        run(manager.update_settings(Settings(budget_threshold=90)))

        with pytest.raises(ValidationError):
            run(manager.update_settings(Settings(budget_threshold=20)))

        assert manager.settings.budget_threshold == 90
        assert manager.cache.read(SETTINGS_KEY)["budget_threshold"] == 90

    def test_load_prefers_cache(self, manager, store, user_id, clock):
        """Should read the cache before the mirror."""
        manager.cache.write(SETTINGS_KEY, {"budget_threshold": 70})
        manager.cache.write(PREFERENCES_KEY, {"monthly_reports": False})
        run(
            UserSettingsRepository(store).save(
                user_id, SETTINGS_KEY, {"budget_threshold": 95}, clock.now
            )
        )

        run(manager.load())

        assert manager.settings.budget_threshold == 70
        assert manager.preferences.monthly_reports is False

    def test_load_from_mirror(self, manager, store, user_id, clock):
        """Should read the mirror when the cache is empty."""
        run(
            UserSettingsRepository(store).save(
                user_id, PREFERENCES_KEY, {"goal_updates": False}, clock.now
            )
        )

        run(manager.load())

        assert manager.preferences.goal_updates is False
        assert manager.settings == Settings()

    def test_invalid_stored_settings_fall_back(self, manager):
        """Should use defaults when stored settings are out of bounds."""
        manager.cache.write(SETTINGS_KEY, {"budget_threshold": 10})
        manager.cache.write(PREFERENCES_KEY, {})

        run(manager.load())

        assert manager.settings == Settings()

    def test_mirror_failure_is_not_fatal(self, manager):
        """Should keep the local save when the mirror is down."""
        manager.mirror.save = AsyncMock(side_effect=StoreUnavailable("offline"))

        saved = run(manager.update_preference("budget_alerts", False))

        assert saved.budget_alerts is False
        cached = json.loads(manager.cache.path.read_text())
        assert cached[PREFERENCES_KEY]["budget_alerts"] is False

    def test_unknown_preference(self, manager):
        """Should reject unknown categories."""
        with pytest.raises(ValidationError):
            run(manager.update_preference("crypto_alerts", True))

    def test_preference_update_keeps_others(self, manager):
        """Should change only the given category."""
        run(manager.update_preference("goal_updates", False))

        assert manager.preferences == replace(Preferences(), goal_updates=False)
