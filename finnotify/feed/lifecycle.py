"""
Notification lifecycle: read, delete, clear and expire.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from finnotify.database.models import Notification
from finnotify.database.repository import NotificationRepository
from finnotify.errors import FinnotifyError
from .actor import FeedActor

logger = logging.getLogger(__name__)


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation.

    The local feed is always updated; `error` carries a warning for the user
    when the store write did not go through.
    """

    success: bool
    operation: str
    affected: int = 0
    error: Optional[str] = None


class LifecycleManager:
    """Optimistic local mutations followed by best-effort store writes."""

    def __init__(
        self,
        actor: FeedActor,
        notification_repo: NotificationRepository,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.actor = actor
        self.notification_repo = notification_repo
        self.clock = clock

    async def mark_read(self, notification_id: str) -> LifecycleResult:
        """Mark one notification read; repeating it is a no-op."""
        now = self.clock()
        entry, changed = await self.actor.submit(
            lambda merger: merger.mark_read(notification_id, now)
        )
        if entry is None:
            return LifecycleResult(
                success=False, operation="mark_read", error="Notification not found"
            )
        if not changed:
            return LifecycleResult(success=True, operation="mark_read")
        if entry.is_temporary:
            return LifecycleResult(success=True, operation="mark_read", affected=1)

        return await self._write(
            "mark_read", 1, self.notification_repo.mark_read([notification_id], now)
        )

    async def mark_all_read(self) -> LifecycleResult:
        """Mark every unread notification read in one batch."""
        now = self.clock()
        changed = await self.actor.submit(lambda merger: merger.mark_all_read(now))
        if not changed:
            return LifecycleResult(success=True, operation="mark_all_read")

        ids = [n.id for n in changed if not n.is_temporary]
        return await self._write(
            "mark_all_read", len(changed), self.notification_repo.mark_read(ids, now)
        )

    async def delete(self, notification_id: str) -> LifecycleResult:
        """Delete one notification."""
        entry = await self.actor.submit(lambda merger: merger.remove(notification_id))
        if entry is None:
            return LifecycleResult(
                success=False, operation="delete", error="Notification not found"
            )
        if entry.is_temporary:
            return LifecycleResult(success=True, operation="delete", affected=1)

        return await self._write(
            "delete", 1, self.notification_repo.delete([notification_id])
        )

    async def clear_all(self) -> LifecycleResult:
        """Delete every notification in the feed in one batch."""
        removed = await self.actor.submit(lambda merger: merger.clear())
        if not removed:
            return LifecycleResult(success=True, operation="clear_all")

        ids = [n.id for n in removed if not n.is_temporary]
        return await self._write(
            "clear_all", len(removed), self.notification_repo.delete(ids)
        )

    async def expire(
        self, notifications: list[Notification], now: datetime
    ) -> list[Notification]:
        """
        Drop expired notifications from a store read and delete them.

        Returns:
            The notifications that are still live
        """
        live = [n for n in notifications if not n.is_expired(now)]
        expired = [n.id for n in notifications if n.is_expired(now)]
        if expired:
            try:
                await self.notification_repo.delete(expired)
                logger.info(f"Deleted {len(expired)} expired notifications")
            except FinnotifyError as e:
                logger.error(f"Error deleting expired notifications: {e}")
        return live

    async def _write(self, operation: str, affected: int, write) -> LifecycleResult:
        try:
            await write
        except FinnotifyError as e:
            logger.warning(f"{operation} kept locally, store write failed: {e}")
            return LifecycleResult(
                success=False,
                operation=operation,
                affected=affected,
                error=f"Saved locally only: {e}",
            )
        return LifecycleResult(success=True, operation=operation, affected=affected)
