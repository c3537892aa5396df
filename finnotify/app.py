"""
Per-user notification session.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from finnotify.config import AppConfig
from finnotify.database.models import Notification, Preferences, Settings
from finnotify.database.repository import (
    NotificationRepository,
    UserSettingsRepository,
    notification_from_document,
)
from finnotify.database.store import ChangeEvent, ChangeType, DocumentStore, Subscription
from finnotify.errors import FinnotifyError
from finnotify.feed.actor import FeedActor
from finnotify.feed.lifecycle import LifecycleManager, LifecycleResult
from finnotify.feed.merger import FeedStats
from finnotify.notifiers.dispatcher import DeliveryStream
from finnotify.notifiers.gate import delivery_requests_for, is_quiet_hours
from finnotify.rules.engine import FAMILIES, RuleEngine
from finnotify.scheduler import Scheduler
from finnotify.settings import LocalCache, SettingsManager

logger = logging.getLogger(__name__)

# Turning these categories on evaluates their family right away
IMMEDIATE_FAMILIES = {
    "budget_alerts": "budget",
    "goal_updates": "goal",
}


class NotificationSession:
    """Feed, rules, timers and delivery for one signed-in user."""

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        config: Optional[AppConfig] = None,
        settings_manager: Optional[SettingsManager] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize session.

        Args:
            store: Document store holding finance data and notifications
            user_id: Signed-in user
            config: Application configuration
            settings_manager: Settings source; defaults to the local cache
                mirrored to the store
            clock: Source of the current local time
        """
        self.store = store
        self.user_id = user_id
        self.config = config or AppConfig()
        self.clock = clock

        self.notification_repo = NotificationRepository(store)
        self.engine = RuleEngine(store, clock)
        self.actor = FeedActor()
        self.lifecycle = LifecycleManager(self.actor, self.notification_repo, clock)
        self.settings_manager = settings_manager or SettingsManager(
            user_id,
            LocalCache(self.config.cache.dir, user_id),
            mirror=UserSettingsRepository(store),
            clock=clock,
        )
        self.scheduler = Scheduler(
            self.config.schedule,
            self._run_scheduled,
            on_quiet_tick=self.check_quiet_hours,
        )

        self.quiet_hours_active = False
        self._subscription: Optional[Subscription] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._streams: list[DeliveryStream] = []

    @property
    def settings(self) -> Settings:
        return self.settings_manager.settings

    @property
    def preferences(self) -> Preferences:
        return self.settings_manager.preferences

    @property
    def running(self) -> bool:
        return self.actor.running

    async def start(self, schedule: bool = True) -> None:
        """
        Load settings and the feed, follow the change feed and start timers.

        Args:
            schedule: Start the periodic timers; False runs without them
        """
        if self.running:
            return

        await self.settings_manager.load()
        await self.actor.start()
        await self.load_feed()

        # Follow the feed before evaluating so new records are not missed
        self._subscription = await self.notification_repo.subscribe(
            self.user_id, limit=self.config.feed.subscription_limit
        )
        self._feed_task = asyncio.create_task(self._consume_feed(), name="feed_changes")

        if self.config.schedule.evaluate_on_start:
            await self.evaluate_now()

        self.check_quiet_hours()
        if schedule:
            await self.scheduler.start()

        logger.info(f"Notification session started for {self.user_id}")

    async def stop(self) -> None:
        """Stop timers, the change feed and the feed actor."""
        await self.scheduler.stop()

        if self._subscription:
            self._subscription.close()
            self._subscription = None
        if self._feed_task:
            await self._feed_task
            self._feed_task = None

        await self.actor.stop()

        for stream in list(self._streams):
            stream.close()

        logger.info(f"Notification session stopped for {self.user_id}")

    async def load_feed(self) -> None:
        """Replace the local feed with the most recent stored notifications."""
        try:
            notifications = await self.notification_repo.list_recent(
                self.user_id, limit=self.config.feed.limit
            )
        except FinnotifyError as e:
            logger.error(f"Error loading notifications for {self.user_id}: {e}")
            return

        live = await self.lifecycle.expire(notifications, self.clock())
        await self.actor.submit(lambda merger: merger.bulk_load(live))
        logger.debug(f"Loaded {len(live)} notifications for {self.user_id}")

    async def flush(self) -> None:
        """Wait until every queued change-feed event is in the local feed."""
        while self._subscription and self._subscription.pending:
            await asyncio.sleep(0)
        await self.actor.submit(lambda merger: None)

    async def _consume_feed(self) -> None:
        async for event in self._subscription:
            try:
                await self._apply_change(event)
            except Exception as e:
                logger.error(f"Error applying {event.type.value} change: {e}")

    async def _apply_change(self, event: ChangeEvent) -> None:
        notification = notification_from_document(event.document)

        if event.type == ChangeType.ADDED:
            if notification.is_expired(self.clock()):
                return
            entry = await self.actor.submit(
                lambda merger: merger.merge_live(notification)
            )
            if entry is not None:
                self._publish(entry)

        elif event.type == ChangeType.MODIFIED:
            await self.actor.submit(lambda merger: merger.apply_modified(notification))

        elif event.type == ChangeType.REMOVED:
            await self.actor.submit(lambda merger: merger.apply_removed(notification))

    def _publish(self, notification: Notification) -> None:
        requests = delivery_requests_for(
            notification, self.settings, self.preferences, self.clock()
        )
        for request in requests:
            for stream in self._streams:
                stream.push(request)

    def delivery_requests(self) -> DeliveryStream:
        """Open a stream of delivery requests for new notifications."""
        stream = DeliveryStream(on_close=self._streams.remove)
        self._streams.append(stream)
        return stream

    def get_feed(self, sort: str = "newest", filter: str = "all") -> list[Notification]:
        """
        Get the local feed.

        Raises:
            ValueError: If sort or filter is unknown
        """
        return self.actor.merger.view(sort=sort, filter=filter)

    def stats(self) -> FeedStats:
        return self.actor.merger.stats(self.clock())

    async def mark_read(self, notification_id: str) -> LifecycleResult:
        return await self.lifecycle.mark_read(notification_id)

    async def mark_all_read(self) -> LifecycleResult:
        return await self.lifecycle.mark_all_read()

    async def delete(self, notification_id: str) -> LifecycleResult:
        return await self.lifecycle.delete(notification_id)

    async def clear_all(self) -> LifecycleResult:
        return await self.lifecycle.clear_all()

    async def update_settings(self, settings: Settings) -> Settings:
        """
        Validate and save settings.

        Raises:
            ValidationError: If settings are out of bounds
        """
        saved = await self.settings_manager.update_settings(settings)
        self.check_quiet_hours()
        return saved

    async def update_preference(self, category: str, enabled: bool) -> Preferences:
        """
        Set one category toggle.

        Raises:
            ValidationError: If category is unknown
        """
        preferences = await self.settings_manager.update_preference(category, enabled)
        family = IMMEDIATE_FAMILIES.get(category)
        if enabled and family:
            await self.evaluate_now([family])
        return preferences

    async def evaluate_now(
        self, families: Optional[Iterable[str]] = None
    ) -> list[Notification]:
        """
        Run an evaluation pass now.

        Returns:
            Notifications created by the pass
        """
        created = await self.engine.run(
            self.user_id,
            self.settings,
            self.preferences,
            families=families if families is not None else FAMILIES,
        )
        if created:
            logger.info(f"Created {len(created)} notifications for {self.user_id}")
        return created

    async def _run_scheduled(self, family: str) -> None:
        await self.evaluate_now([family])

    def check_quiet_hours(self) -> bool:
        """Refresh the quiet-hours indicator."""
        try:
            active = is_quiet_hours(self.settings, self.clock())
        except ValueError as e:
            logger.warning(f"Invalid quiet hours: {e}")
            active = False

        if active != self.quiet_hours_active:
            logger.info(f"Quiet hours {'started' if active else 'ended'}")
            self.quiet_hours_active = active
        return active
