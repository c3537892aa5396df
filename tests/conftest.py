"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta

from finnotify.database.connection import Database
from finnotify.database.models import (
    Notification,
    NotificationType,
    Priority,
)
from finnotify.database.store import SQLiteDocumentStore


class FixedClock:
    """Clock returning a settable time."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def user_id():
    """Signed-in user."""
    return "user-1"


@pytest.fixture
def clock():
    """Mid-month weekday afternoon."""
    return FixedClock(datetime(2024, 3, 15, 14, 30))


@pytest.fixture
def db():
    """In-memory database with schema."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def store(db, clock):
    """SQLite document store on the in-memory database."""
    return SQLiteDocumentStore(db, clock=clock)


@pytest.fixture
def make_notification(user_id):
    """Factory for feed entries."""

    def _make(
        id="n1",
        title="Budget Alert: Food",
        created_at=datetime(2024, 3, 15, 12, 0),
        priority=Priority.MEDIUM,
        type=NotificationType.BUDGET,
        subtype="threshold",
        **kwargs,
    ) -> Notification:
        return Notification(
            id=id,
            user_id=user_id,
            type=type,
            subtype=subtype,
            title=title,
            message=kwargs.pop("message", "Your Food budget is 84.0% used."),
            priority=priority,
            created_at=created_at,
            **kwargs,
        )

    return _make
