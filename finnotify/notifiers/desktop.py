"""
Desktop pop-up notifier via a notification relay webhook.
"""

import time
from typing import Any, Optional

import requests

from finnotify.database.models import Priority
from .base import DeliveryChannel, DeliveryRequest, Notifier, NotificationResult


DEFAULT_RETRY_AFTER = 1.0


def retry_after_seconds(value: Optional[str]) -> float:
    """Seconds to wait from a Retry-After header; HTTP-date and bad values fall back to 1s."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
    return max(seconds, 0.0)


class DesktopNotifier(Notifier):
    """Posts pop-up requests to a desktop notification relay."""

    channel = DeliveryChannel.DESKTOP

    # Relay urgency levels
    URGENCY = {
        Priority.LOW: 2,
        Priority.MEDIUM: 3,
        Priority.HIGH: 4,
        Priority.CRITICAL: 5,
    }

    def __init__(
        self,
        webhook_url: Optional[str],
        app_name: str = "Money Manager",
        timeout: int = 10,
    ):
        """
        Initialize desktop notifier.

        Args:
            webhook_url: Relay endpoint that shows the pop-up
            app_name: Title shown on every pop-up
            timeout: HTTP timeout in seconds
        """
        self.webhook_url = webhook_url
        self.app_name = app_name
        self.timeout = timeout

    def send(self, request: DeliveryRequest) -> NotificationResult:
        """Send pop-up request to the relay."""
        if not self.webhook_url:
            return NotificationResult(
                success=False,
                channel="desktop",
                error="Desktop webhook URL not configured",
            )

        try:
            payload = self._create_payload(request)
            response = self._send_webhook(payload)

            if response.ok:
                return NotificationResult(success=True, channel="desktop")
            else:
                return NotificationResult(
                    success=False,
                    channel="desktop",
                    error=f"HTTP {response.status_code}: {response.text}",
                )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel="desktop",
                error=f"Connection error: {str(e)}",
            )
        except requests.exceptions.RequestException as e:
            return NotificationResult(
                success=False,
                channel="desktop",
                error=str(e),
            )

    def _send_webhook(self, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )

        # Handle rate limiting
        if response.status_code == 429:
            time.sleep(retry_after_seconds(response.headers.get("Retry-After")))
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
            )

        return response

    def _create_payload(self, request: DeliveryRequest) -> dict[str, Any]:
        """Create relay payload."""
        notification = request.notification
        return {
            "title": self.app_name,
            "heading": notification.title,
            "body": notification.message or notification.title,
            "tag": notification.id,
            "category": notification.type.value,
            "urgency": self.URGENCY[notification.priority],
            "require_interaction": request.dismiss_after is None,
            "timeout": request.dismiss_after,
            "actions": notification.actions,
        }
