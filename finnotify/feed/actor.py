"""
Single-writer task owning the feed merger.
"""

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from .merger import FeedMerger

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FeedActor:
    """Serializes every mutation of a FeedMerger through one task.

    Producers (bulk load, change-feed consumer, lifecycle operations) call
    ``submit`` with a function of the merger; the function runs on the actor
    task and its result is returned to the caller.
    """

    def __init__(self, merger: Optional[FeedMerger] = None):
        self.merger = merger or FeedMerger()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the actor task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="feed_actor")
        logger.debug("Feed actor started")

    async def stop(self) -> None:
        """Stop the actor task; pending requests are cancelled."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()
        logger.debug("Feed actor stopped")

    async def submit(self, request: Callable[[FeedMerger], T]) -> T:
        """Run `request(merger)` on the actor task and return its result."""
        if not self.running:
            raise RuntimeError("Feed actor is not running")

        future = asyncio.get_running_loop().create_future()
        await self._queue.put((request, future))
        return await future

    async def _run(self) -> None:
        while True:
            request, future = await self._queue.get()
            if future.cancelled():
                continue
            try:
                future.set_result(request(self.merger))
            except Exception as e:
                future.set_exception(e)
