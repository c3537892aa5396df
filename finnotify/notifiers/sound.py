"""
Audible alert notifier.
"""

import sys
from typing import Optional, TextIO

from .base import DeliveryChannel, DeliveryRequest, Notifier, NotificationResult


class SoundNotifier(Notifier):
    """Rings the terminal bell."""

    channel = DeliveryChannel.SOUND

    BELL = "\a"

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def send(self, request: DeliveryRequest) -> NotificationResult:
        """Play the alert sound."""
        stream = self.stream or sys.stdout
        try:
            stream.write(self.BELL)
            stream.flush()
            return NotificationResult(success=True, channel="sound")
        except (OSError, ValueError) as e:
            # ValueError: write to a closed stream
            return NotificationResult(success=False, channel="sound", error=str(e))
