"""
Delivery gate: quiet hours, priority and category preferences.
"""

from datetime import datetime, time
from typing import Optional, Union

from finnotify.database.models import (
    Notification,
    NotificationType,
    Preferences,
    Priority,
    Settings,
)
from .base import DeliveryChannel, DeliveryRequest

TimeLike = Union[str, time, datetime]

# Seconds before a desktop pop-up closes itself; None keeps it open
DISMISS_AFTER = {
    Priority.LOW: 10,
    Priority.MEDIUM: 30,
    Priority.HIGH: None,
    Priority.CRITICAL: 30,
}

DELIVERY_PREFERENCES = {
    NotificationType.BUDGET: "budget_alerts",
    NotificationType.GOAL: "goal_updates",
    NotificationType.EXPENSE: "large_transactions",
    NotificationType.INCOME: "large_transactions",
    NotificationType.SYSTEM: "system_updates",
}


def parse_time_of_day(value: str) -> time:
    """
    Parse an HH:MM string.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    try:
        hours, minutes = value.split(":")
        return time(hour=int(hours), minute=int(minutes))
    except (AttributeError, TypeError, ValueError):
        raise ValueError(f"Invalid time of day (expected HH:MM): {value!r}")


def to_minutes(value: TimeLike) -> int:
    """Minutes since midnight."""
    if isinstance(value, str):
        value = parse_time_of_day(value)
    return value.hour * 60 + value.minute


def is_within_window(current: TimeLike, start: TimeLike, end: TimeLike) -> bool:
    """Whether `current` falls in [start, end), wrapping past midnight."""
    t = to_minutes(current)
    s = to_minutes(start)
    e = to_minutes(end)

    if s <= e:
        return s <= t < e
    return t >= s or t < e


def is_quiet_hours(settings: Settings, now: datetime) -> bool:
    """Whether quiet hours are active at `now`."""
    return is_within_window(
        now,
        settings.quiet_start or "22:00",
        settings.quiet_end or "08:00",
    )


def dismiss_after(priority: Priority) -> Optional[int]:
    """Auto-dismiss delay for a desktop pop-up."""
    return DISMISS_AFTER[priority]


def should_deliver_desktop(
    notification: Notification,
    settings: Settings,
    preferences: Preferences,
    now: datetime,
) -> bool:
    """Decide whether a notification also gets a desktop pop-up."""
    if not settings.desktop_notifications:
        return False

    if is_quiet_hours(settings, now):
        return False

    if notification.priority == Priority.LOW:
        return False

    category = DELIVERY_PREFERENCES.get(notification.type)
    if category is None:
        return True
    return preferences.is_enabled(category)


def should_play_sound(settings: Settings) -> bool:
    """Sound only follows its own toggle, not quiet hours or categories."""
    return settings.notification_sound is not False


def delivery_requests_for(
    notification: Notification,
    settings: Settings,
    preferences: Preferences,
    now: datetime,
) -> list[DeliveryRequest]:
    """Build the desktop and sound requests a new notification qualifies for."""
    requests = []
    if should_deliver_desktop(notification, settings, preferences, now):
        requests.append(
            DeliveryRequest(
                notification=notification,
                channel=DeliveryChannel.DESKTOP,
                dismiss_after=dismiss_after(notification.priority),
            )
        )
    if should_play_sound(settings):
        requests.append(
            DeliveryRequest(notification=notification, channel=DeliveryChannel.SOUND)
        )
    return requests
