"""
Data model tests.
Tests for notification, metadata and settings dataclasses.
"""

import pytest
from datetime import datetime

from finnotify.database.models import (
    BudgetMetadata,
    GoalMetadata,
    Notification,
    NotificationType,
    Preferences,
    Priority,
    ReportMetadata,
    Settings,
    TransactionMetadata,
    metadata_from_dict,
    metadata_to_dict,
)


class TestPriority:
    """Test Priority enum."""

    def test_rank_order(self):
        """Should rank critical above high above medium above low."""
        assert Priority.CRITICAL.rank > Priority.HIGH.rank
        assert Priority.HIGH.rank > Priority.MEDIUM.rank
        assert Priority.MEDIUM.rank > Priority.LOW.rank

    def test_string_values(self):
        """Should compare equal to stored strings."""
        assert Priority("high") == Priority.HIGH
        assert NotificationType("expense") == NotificationType.EXPENSE


class TestNotificationModel:
    """Test Notification model."""

    def test_unread_by_default(self, make_notification):
        """Should be unread without read_at."""
        notification = make_notification()
        assert notification.is_read is False

    def test_read(self, make_notification):
        """Should be read once read_at is set."""
        notification = make_notification(read_at=datetime(2024, 3, 15, 13, 0))
        assert notification.is_read is True

    def test_temporary_id(self, make_notification):
        """Should recognize local placeholder ids."""
        assert make_notification(id="temp-abc").is_temporary is True
        assert make_notification(id="abc").is_temporary is False

    def test_expiry(self, make_notification):
        """Should expire only after expires_at."""
        notification = make_notification(expires_at=datetime(2024, 4, 1))
        assert notification.is_expired(datetime(2024, 3, 31, 23, 59)) is False
        assert notification.is_expired(datetime(2024, 4, 1)) is False
        assert notification.is_expired(datetime(2024, 4, 1, 0, 1)) is True

    def test_no_expiry(self, make_notification):
        """Should never expire without expires_at."""
        assert make_notification().is_expired(datetime(2100, 1, 1)) is False


class TestMetadata:
    """Test typed metadata payloads."""

    def test_budget_metadata_to_dict(self):
        """Should flatten metadata for storage."""
        metadata = BudgetMetadata(
            category_name="Food", percentage=84.0, spent=420.0, limit=500.0
        )
        assert metadata_to_dict(metadata) == {
            "category_name": "Food",
            "percentage": 84.0,
            "spent": 420.0,
            "limit": 500.0,
        }

    def test_metadata_variant_by_type(self):
        """Should pick the metadata class from the notification type."""
        goal = metadata_from_dict(
            NotificationType.GOAL,
            {
                "goal_title": "Car",
                "current_amount": 2500,
                "target_amount": 10000,
                "progress": 25.0,
                "milestone": 25,
            },
        )
        assert isinstance(goal, GoalMetadata)
        assert goal.milestone == 25

        income = metadata_from_dict(
            NotificationType.INCOME,
            {"amount": 3000, "description": "Bonus", "category": "Salary", "kind": "income"},
        )
        assert isinstance(income, TransactionMetadata)

        report = metadata_from_dict(
            NotificationType.SYSTEM, {"month": "March", "year": 2024}
        )
        assert isinstance(report, ReportMetadata)
        assert report.report_type == "monthly_summary"

    def test_ignores_unknown_keys(self):
        """Should drop keys the variant does not declare."""
        metadata = metadata_from_dict(
            NotificationType.SYSTEM, {"month": "March", "year": 2024, "extra": 1}
        )
        assert metadata == ReportMetadata(month="March", year=2024)

    def test_legacy_metadata_missing_fields(self):
        """Should return None for incomplete legacy payloads."""
        assert metadata_from_dict(NotificationType.BUDGET, {"percentage": 90}) is None
        assert metadata_from_dict(NotificationType.BUDGET, None) is None

    def test_metadata_is_immutable(self):
        """Should not allow metadata changes after creation."""
        metadata = ReportMetadata(month="March", year=2024)
        with pytest.raises(AttributeError):
            metadata.year = 2025


class TestSettingsModels:
    """Test settings and preference defaults."""

    def test_settings_defaults(self):
        """Should use the documented defaults."""
        settings = Settings()
        assert settings.budget_threshold == 80
        assert settings.transaction_threshold == 1000.0
        assert settings.quiet_start == "22:00"
        assert settings.quiet_end == "08:00"
        assert settings.notification_sound is True
        assert settings.desktop_notifications is False

    def test_preferences_default_enabled(self):
        """Should enable every category by default."""
        preferences = Preferences()
        assert preferences.is_enabled("budget_alerts") is True
        assert preferences.is_enabled("system_updates") is True

    def test_preferences_disabled(self):
        """Should report a disabled category."""
        preferences = Preferences(goal_updates=False)
        assert preferences.is_enabled("goal_updates") is False

    def test_unknown_category_allowed(self):
        """Should treat unknown categories as enabled."""
        assert Preferences().is_enabled("crypto_alerts") is True
