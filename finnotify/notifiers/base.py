"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any

from finnotify.database.models import Notification


class DeliveryChannel(str, Enum):
    """Delivery channels beyond the in-app list."""

    DESKTOP = "desktop"
    SOUND = "sound"


@dataclass
class DeliveryRequest:
    """A request to surface a notification on a channel."""

    notification: Notification
    channel: DeliveryChannel
    dismiss_after: Optional[int] = None  # seconds; None = sticky


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    channel: DeliveryChannel

    @abstractmethod
    def send(self, request: DeliveryRequest) -> NotificationResult:
        """
        Deliver a single request.

        Args:
            request: Delivery request to fulfil

        Returns:
            NotificationResult indicating success or failure
        """
        pass

    def send_batch(self, requests: list[DeliveryRequest]) -> list[NotificationResult]:
        """
        Deliver multiple requests.

        Args:
            requests: List of delivery requests

        Returns:
            List of NotificationResult for each request
        """
        return [self.send(request) for request in requests]


class NotifierFactory:
    """Factory for creating notifier instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> Notifier:
        """
        Create a notifier from configuration.

        Args:
            config: Notifier configuration dict

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If notifier type is unknown
        """
        notifier_type = config.get("type")

        if notifier_type == "desktop":
            from .desktop import DesktopNotifier

            return DesktopNotifier(
                webhook_url=config.get("webhook_url"),
                app_name=config.get("app_name", "Money Manager"),
                timeout=config.get("timeout_seconds", 10),
            )

        elif notifier_type == "sound":
            from .sound import SoundNotifier

            return SoundNotifier(stream=config.get("stream"))

        else:
            raise ValueError(f"Unknown notifier type: {notifier_type}")
