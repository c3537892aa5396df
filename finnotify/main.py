"""
Main application entry point.
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

load_dotenv()

from finnotify.app import NotificationSession
from finnotify.config import AppConfig, load_config
from finnotify.database.connection import Database
from finnotify.database.models import Notification
from finnotify.database.store import SQLiteDocumentStore
from finnotify.notifiers.base import NotifierFactory
from finnotify.notifiers.dispatcher import DeliveryDispatcher

logger = logging.getLogger(__name__)


def format_notification(notification: Notification) -> str:
    """One-line feed entry."""
    marker = " " if notification.is_read else "*"
    created = "-"
    if notification.created_at:
        created = notification.created_at.strftime("%Y-%m-%d %H:%M")
    return (
        f"{marker} [{notification.priority.value:>8}] {created} "
        f"{notification.title} ({notification.id})"
    )


def create_dispatcher(config: AppConfig) -> DeliveryDispatcher:
    """Build the dispatcher for the configured delivery channels."""
    notifiers = [NotifierFactory.create({"type": "sound"})]
    if config.desktop.webhook_url:
        notifiers.append(
            NotifierFactory.create(
                {
                    "type": "desktop",
                    "webhook_url": config.desktop.webhook_url,
                    "app_name": config.desktop.app_name,
                    "timeout_seconds": config.desktop.timeout_seconds,
                }
            )
        )
    return DeliveryDispatcher(notifiers)


async def run_once(session: NotificationSession) -> list[Notification]:
    """Start without timers, run one evaluation pass and return the feed."""
    await session.start(schedule=False)
    try:
        if not session.config.schedule.evaluate_on_start:
            await session.evaluate_now()
        await session.flush()
        return session.get_feed()
    finally:
        await session.stop()


async def run_forever(session: NotificationSession, dispatcher: DeliveryDispatcher) -> None:
    """Run the session and deliver notifications until interrupted."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Not available on every platform; Ctrl+C still ends asyncio.run
            pass

    stream = session.delivery_requests()
    delivery = asyncio.create_task(dispatcher.run(stream), name="delivery")

    await session.start()
    try:
        await stop_event.wait()
    finally:
        await session.stop()
        delivered = await delivery
        logger.info(f"Delivered {delivered} notifications")


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Finnotify notification service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--user", required=True, help="User ID to run the session for")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run one evaluation pass and print the feed"
    )

    args = parser.parse_args()

    # Load config
    config = load_config(args.config)

    # Setup logging
    log_level = (
        logging.DEBUG
        if args.debug
        else getattr(logging, config.advanced.log_level.upper(), logging.INFO)
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.store.path)
    db.initialize()

    store = SQLiteDocumentStore(db)
    session = NotificationSession(store, args.user, config)

    try:
        if args.once:
            for notification in asyncio.run(run_once(session)):
                print(format_notification(notification))
        else:
            asyncio.run(run_forever(session, create_dispatcher(config)))
    finally:
        db.close()


if __name__ == "__main__":
    main()
