"""
Routes delivery requests to channel notifiers.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .base import DeliveryChannel, DeliveryRequest, Notifier, NotificationResult

logger = logging.getLogger(__name__)


class DeliveryStream:
    """Async iterator over delivery requests for one consumer."""

    _CLOSED = object()

    def __init__(self, on_close: Optional[Callable[["DeliveryStream"], None]] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def push(self, request: DeliveryRequest) -> None:
        if not self.closed:
            self._queue.put_nowait(request)

    def drain(self) -> list[DeliveryRequest]:
        """Take every request queued so far without waiting."""
        requests = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is self._CLOSED:
                # Keep the end marker for iterators
                self._queue.put_nowait(item)
                break
            requests.append(item)
        return requests

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(self._CLOSED)
        if self._on_close:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> DeliveryRequest:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class DeliveryDispatcher:
    """Sends each request through the notifier registered for its channel."""

    def __init__(self, notifiers: list[Notifier]):
        """
        Initialize dispatcher.

        Args:
            notifiers: One notifier per channel; later entries win
        """
        self.notifiers: dict[DeliveryChannel, Notifier] = {
            notifier.channel: notifier for notifier in notifiers
        }

    def dispatch(self, request: DeliveryRequest) -> NotificationResult:
        """
        Deliver one request.

        Returns:
            NotificationResult from the channel notifier
        """
        notifier = self.notifiers.get(request.channel)
        if notifier is None:
            result = NotificationResult(
                success=False,
                channel=request.channel.value,
                error=f"No notifier configured for {request.channel.value}",
            )
        else:
            try:
                result = notifier.send(request)
            except Exception as e:
                result = NotificationResult(
                    success=False, channel=request.channel.value, error=str(e)
                )

        if not result.success:
            logger.warning(
                f"{result.channel} delivery failed for "
                f"{request.notification.id}: {result.error}"
            )
        return result

    async def run(self, stream: AsyncIterator[DeliveryRequest]) -> int:
        """
        Dispatch every request from a stream until it ends.

        Returns:
            Number of successful deliveries
        """
        delivered = 0
        async for request in stream:
            # Notifiers block on I/O
            result = await asyncio.to_thread(self.dispatch, request)
            if result.success:
                delivered += 1
        return delivered
