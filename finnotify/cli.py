"""
CLI commands for Finnotify.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

from finnotify.app import NotificationSession
from finnotify.config import AppConfig, load_config
from finnotify.database.connection import Database
from finnotify.database.models import PREFERENCE_CATEGORIES
from finnotify.database.store import SQLiteDocumentStore
from finnotify.errors import FinnotifyError
from finnotify.feed.lifecycle import LifecycleResult
from finnotify.feed.merger import FILTERS, SORTS
from finnotify.main import format_notification
from finnotify.rules.engine import FAMILIES


async def list_feed(
    session: NotificationSession, sort: str = "newest", filter: str = "all"
) -> list[str]:
    """Render the feed as lines."""
    return [format_notification(n) for n in session.get_feed(sort=sort, filter=filter)]


async def feed_stats(session: NotificationSession) -> dict[str, Any]:
    return asdict(session.stats())


async def update_settings(session: NotificationSession, changes: dict[str, Any]) -> dict:
    """Apply the given changes on top of the current settings."""
    changes = {k: v for k, v in changes.items() if v is not None}
    saved = await session.update_settings(replace(session.settings, **changes))
    return asdict(saved)


async def set_preference(
    session: NotificationSession, category: str, enabled: bool
) -> dict:
    preferences = await session.update_preference(category, enabled)
    return asdict(preferences)


async def evaluate(
    session: NotificationSession, families: Optional[list[str]] = None
) -> list[str]:
    """Run an evaluation pass and render what it created."""
    created = await session.evaluate_now(families)
    return [format_notification(n) for n in created]


def _print_result(result: LifecycleResult) -> None:
    if result.success:
        print(f"{result.operation}: {result.affected} affected")
    else:
        print(f"{result.operation}: {result.error}", file=sys.stderr)


async def run_command(session: NotificationSession, args: argparse.Namespace) -> int:
    """Run one parsed command against a started session."""
    if args.command == "feed":
        if args.action == "list":
            for line in await list_feed(session, sort=args.sort, filter=args.filter):
                print(line)
        elif args.action == "stats":
            print(json.dumps(await feed_stats(session), indent=2))
        else:
            if args.action == "read":
                result = await session.mark_read(args.id)
            elif args.action == "read-all":
                result = await session.mark_all_read()
            elif args.action == "delete":
                result = await session.delete(args.id)
            else:
                result = await session.clear_all()
            _print_result(result)
            return 0 if result.success else 1

    elif args.command == "settings":
        if args.action == "show":
            print(json.dumps(asdict(session.settings), indent=2))
        elif args.action == "set":
            saved = await update_settings(
                session,
                {
                    "budget_threshold": args.budget_threshold,
                    "transaction_threshold": args.transaction_threshold,
                    "quiet_start": args.quiet_start,
                    "quiet_end": args.quiet_end,
                    "notification_sound": args.sound,
                    "desktop_notifications": args.desktop,
                },
            )
            print(json.dumps(saved, indent=2))

    elif args.command == "prefs":
        if args.action == "show":
            print(json.dumps(asdict(session.preferences), indent=2))
        elif args.action == "set":
            saved = await set_preference(session, args.category, args.state == "on")
            print(json.dumps(saved, indent=2))

    elif args.command == "evaluate":
        created = await evaluate(session, args.family)
        for line in created:
            print(line)
        print(f"Created {len(created)} notifications")

    return 0


async def _run(session: NotificationSession, args: argparse.Namespace) -> int:
    await session.start(schedule=False)
    try:
        code = await run_command(session, args)
        await session.flush()
        return code
    finally:
        await session.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Finnotify CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--user", required=True, help="User ID")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Feed commands
    feed_parser = subparsers.add_parser("feed", help="Notification feed")
    feed_subparsers = feed_parser.add_subparsers(dest="action")

    list_parser = feed_subparsers.add_parser("list", help="List notifications")
    list_parser.add_argument("--sort", default="newest", choices=SORTS)
    list_parser.add_argument("--filter", default="all", choices=FILTERS)

    read_parser = feed_subparsers.add_parser("read", help="Mark one notification read")
    read_parser.add_argument("id", help="Notification ID")
    feed_subparsers.add_parser("read-all", help="Mark every notification read")
    delete_parser = feed_subparsers.add_parser("delete", help="Delete one notification")
    delete_parser.add_argument("id", help="Notification ID")
    feed_subparsers.add_parser("clear", help="Delete every notification")
    feed_subparsers.add_parser("stats", help="Show feed counters")

    # Settings commands
    settings_parser = subparsers.add_parser("settings", help="Notification settings")
    settings_subparsers = settings_parser.add_subparsers(dest="action")
    settings_subparsers.add_parser("show", help="Show settings")

    set_parser = settings_subparsers.add_parser("set", help="Change settings")
    set_parser.add_argument("--budget-threshold", type=int, help="Percent, 50-100")
    set_parser.add_argument("--transaction-threshold", type=float, help="Amount")
    set_parser.add_argument("--quiet-start", help="HH:MM")
    set_parser.add_argument("--quiet-end", help="HH:MM")
    set_parser.add_argument("--sound", action=argparse.BooleanOptionalAction)
    set_parser.add_argument("--desktop", action=argparse.BooleanOptionalAction)

    # Preference commands
    prefs_parser = subparsers.add_parser("prefs", help="Category preferences")
    prefs_subparsers = prefs_parser.add_subparsers(dest="action")
    prefs_subparsers.add_parser("show", help="Show preferences")

    prefs_set_parser = prefs_subparsers.add_parser("set", help="Toggle a category")
    prefs_set_parser.add_argument("category", choices=PREFERENCE_CATEGORIES)
    prefs_set_parser.add_argument("state", choices=["on", "off"])

    # Evaluation
    evaluate_parser = subparsers.add_parser("evaluate", help="Run rules now")
    evaluate_parser.add_argument(
        "--family", action="append", choices=FAMILIES, help="Limit to a rule family"
    )

    return parser


def main():
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if args.command is None or (args.command != "evaluate" and args.action is None):
        parser.print_help()
        sys.exit(2)

    config = load_config(args.config) if Path(args.config).exists() else AppConfig()
    # Only the evaluate command creates notifications
    config = replace(
        config, schedule=replace(config.schedule, evaluate_on_start=False)
    )

    # Initialize database
    db = Database(config.store.path)
    db.initialize()

    session = NotificationSession(SQLiteDocumentStore(db), args.user, config)
    try:
        code = asyncio.run(_run(session, args))
    except (FinnotifyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    finally:
        db.close()

    sys.exit(code)


if __name__ == "__main__":
    main()
