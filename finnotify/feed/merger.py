"""
In-memory view of a user's notifications.

Entries arrive two ways: a bulk load at session start and one-at-a-time
change-feed events. The same occurrence can come through both paths in any
order, so every insert is matched against the current set first: by
authoritative id, then by idempotency key, and finally, for documents
written without a key, by title plus creation time truncated to the second.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from finnotify.database.models import (
    TEMP_ID_PREFIX,
    Notification,
    NotificationType,
    Priority,
)

SORTS = ("newest", "oldest", "priority")
FILTERS = ("all", "unread") + tuple(t.value for t in NotificationType)


@dataclass
class FeedStats:
    """Counters shown next to the feed."""

    total: int = 0
    unread: int = 0
    today: int = 0
    budget_alerts: int = 0
    critical_budget_alerts: int = 0
    goal_updates: int = 0
    completed_goals: int = 0


def _created_key(notification: Notification) -> datetime:
    return notification.created_at or datetime.min


def _truncated(value: Optional[datetime]) -> Optional[datetime]:
    return value.replace(microsecond=0) if value else None


class FeedMerger:
    """Ordered, duplicate-free set of notifications, newest first."""

    def __init__(self):
        self._entries: list[Notification] = []
        self._live_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    # -- inserts ------------------------------------------------------------

    def bulk_load(self, notifications: list[Notification]) -> None:
        """Replace the working set with a fresh store read.

        Entries that arrived live and are absent from the read (created after
        it was taken) are merged back in.
        """
        carried = [e for e in self._entries if e.id in self._live_ids]

        self._entries = []
        self._live_ids = set()
        for notification in sorted(notifications, key=_created_key, reverse=True):
            if self.find(notification) is None:
                self._entries.append(notification)

        for entry in carried:
            if self.find(entry) is None:
                self._insert(entry)
                self._live_ids.add(entry.id)

    def merge_live(self, notification: Notification) -> Optional[Notification]:
        """
        Merge one change-feed document.

        Returns:
            The new entry, or None if it matched an existing one
        """
        if not notification.id:
            notification = replace(
                notification, id=f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
            )

        index = self._find_index(notification)
        if index is None:
            self._insert(notification)
            self._live_ids.add(notification.id)
            return notification

        existing = self._entries[index]
        if existing.is_temporary and not notification.is_temporary:
            # Adopt the authoritative id; keep a local read mark
            self._live_ids.discard(existing.id)
            self._entries[index] = replace(
                notification, read_at=notification.read_at or existing.read_at
            )
            self._live_ids.add(notification.id)
        return None

    def apply_modified(self, notification: Notification) -> bool:
        """Apply a stored update; read_at never reverts to None."""
        index = self._find_index(notification)
        if index is None:
            return False

        existing = self._entries[index]
        authoritative = bool(notification.id) and not notification.is_temporary
        updated = replace(
            notification,
            id=notification.id if authoritative else existing.id,
            read_at=notification.read_at or existing.read_at,
        )
        if existing.id in self._live_ids and updated.id != existing.id:
            self._live_ids.discard(existing.id)
            self._live_ids.add(updated.id)
        self._entries[index] = updated
        return True

    def apply_removed(self, notification: Notification) -> bool:
        """Drop the entry matching a removed document."""
        index = self._find_index(notification)
        if index is None:
            return False
        removed = self._entries.pop(index)
        self._live_ids.discard(removed.id)
        return True

    # -- lookups ------------------------------------------------------------

    def get(self, notification_id: str) -> Optional[Notification]:
        for entry in self._entries:
            if entry.id == notification_id:
                return entry
        return None

    def find(self, notification: Notification) -> Optional[Notification]:
        """Find the entry for the same occurrence, if any."""
        index = self._find_index(notification)
        return self._entries[index] if index is not None else None

    def _find_index(self, notification: Notification) -> Optional[int]:
        if notification.id:
            for i, entry in enumerate(self._entries):
                if entry.id == notification.id:
                    return i

        if notification.idempotency_key:
            for i, entry in enumerate(self._entries):
                if entry.idempotency_key == notification.idempotency_key:
                    return i

        created = _truncated(notification.created_at)
        for i, entry in enumerate(self._entries):
            if notification.idempotency_key and entry.idempotency_key:
                continue
            if entry.title == notification.title and _truncated(entry.created_at) == created:
                return i

        return None

    def _insert(self, notification: Notification) -> None:
        self._entries.insert(0, notification)

    # -- local mutations ----------------------------------------------------

    def mark_read(
        self, notification_id: str, now: datetime
    ) -> tuple[Optional[Notification], bool]:
        """Mark one entry read. Returns (entry, changed)."""
        entry = self.get(notification_id)
        if entry is None:
            return None, False
        if entry.read_at is not None:
            return entry, False
        entry.read_at = now
        return entry, True

    def mark_all_read(self, now: datetime) -> list[Notification]:
        """Mark every unread entry read. Returns the entries changed."""
        changed = []
        for entry in self._entries:
            if entry.read_at is None:
                entry.read_at = now
                changed.append(entry)
        return changed

    def remove(self, notification_id: str) -> Optional[Notification]:
        entry = self.get(notification_id)
        if entry is not None:
            self._entries.remove(entry)
            self._live_ids.discard(entry.id)
        return entry

    def clear(self) -> list[Notification]:
        removed = self._entries
        self._entries = []
        self._live_ids = set()
        return removed

    # -- views --------------------------------------------------------------

    def view(self, sort: str = "newest", filter: str = "all") -> list[Notification]:
        """
        Get a sorted, filtered copy of the feed.

        Args:
            sort: "newest", "oldest" or "priority"
            filter: "all", "unread" or a notification type

        Raises:
            ValueError: If sort or filter is unknown
        """
        if sort not in SORTS:
            raise ValueError(f"Unknown sort: {sort}")
        if filter not in FILTERS:
            raise ValueError(f"Unknown filter: {filter}")

        if filter == "all":
            entries = list(self._entries)
        elif filter == "unread":
            entries = [e for e in self._entries if not e.is_read]
        else:
            entries = [e for e in self._entries if e.type.value == filter]

        if sort == "newest":
            entries.sort(key=_created_key, reverse=True)
        elif sort == "oldest":
            entries.sort(key=_created_key)
        else:
            entries.sort(key=lambda e: (e.priority.rank, _created_key(e)), reverse=True)
        return entries

    def stats(self, now: datetime) -> FeedStats:
        """Compute feed counters."""
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        entries = self._entries
        budget = [e for e in entries if e.type == NotificationType.BUDGET]
        goals = [e for e in entries if e.type == NotificationType.GOAL]

        return FeedStats(
            total=len(entries),
            unread=sum(1 for e in entries if not e.is_read),
            today=sum(1 for e in entries if e.created_at and e.created_at >= today),
            budget_alerts=len(budget),
            critical_budget_alerts=sum(
                1 for e in budget if e.priority.rank >= Priority.HIGH.rank
            ),
            goal_updates=len(goals),
            completed_goals=sum(1 for e in goals if e.subtype == "completed"),
        )
