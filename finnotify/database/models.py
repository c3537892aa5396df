"""
Data models for the notification subsystem.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class NotificationType(str, Enum):
    """Notification type."""

    BUDGET = "budget"
    GOAL = "goal"
    EXPENSE = "expense"
    INCOME = "income"
    SYSTEM = "system"


class Priority(str, Enum):
    """Notification priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


@dataclass(frozen=True)
class BudgetMetadata:
    """Context of a budget threshold or overrun."""

    category_name: str
    percentage: float
    spent: float
    limit: float


@dataclass(frozen=True)
class GoalMetadata:
    """Context of a goal milestone or completion."""

    goal_title: str
    current_amount: float
    target_amount: float
    progress: float
    milestone: Optional[int] = None


@dataclass(frozen=True)
class TransactionMetadata:
    """Context of a large expense or income."""

    amount: float
    description: str
    category: str
    kind: str  # "expense" or "income"


@dataclass(frozen=True)
class ReportMetadata:
    """Context of a periodic report reminder."""

    month: str
    year: int
    report_type: str = "monthly_summary"


Metadata = Union[BudgetMetadata, GoalMetadata, TransactionMetadata, ReportMetadata]

_METADATA_TYPES: dict[NotificationType, type] = {
    NotificationType.BUDGET: BudgetMetadata,
    NotificationType.GOAL: GoalMetadata,
    NotificationType.EXPENSE: TransactionMetadata,
    NotificationType.INCOME: TransactionMetadata,
    NotificationType.SYSTEM: ReportMetadata,
}


def metadata_to_dict(metadata: Optional[Metadata]) -> Optional[dict[str, Any]]:
    """Convert metadata to a plain dict for storage."""
    if metadata is None:
        return None
    return asdict(metadata)


def metadata_from_dict(
    notification_type: NotificationType, data: Optional[dict[str, Any]]
) -> Optional[Metadata]:
    """Build the metadata variant for a notification type."""
    if not data:
        return None
    metadata_cls = _METADATA_TYPES[notification_type]
    known = metadata_cls.__dataclass_fields__
    try:
        return metadata_cls(**{k: v for k, v in data.items() if k in known})
    except TypeError:
        # Missing required fields in a legacy document
        return None


@dataclass
class Notification:
    """A stored notification."""

    id: str
    user_id: str
    type: NotificationType
    subtype: str
    title: str
    message: str
    priority: Priority
    created_at: Optional[datetime] = None
    entity_key: Optional[str] = None
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    metadata: Optional[Metadata] = None
    actions: list[str] = field(default_factory=list)
    idempotency_key: Optional[str] = None

    @property
    def is_read(self) -> bool:
        """Whether the notification has been read."""
        return self.read_at is not None

    @property
    def is_temporary(self) -> bool:
        """Whether the id is a local placeholder."""
        return self.id.startswith(TEMP_ID_PREFIX)

    def is_expired(self, now: datetime) -> bool:
        """Whether the notification is past its expiry."""
        return self.expires_at is not None and now > self.expires_at


TEMP_ID_PREFIX = "temp-"


@dataclass
class Settings:
    """Per-user notification settings."""

    budget_threshold: int = 80
    transaction_threshold: float = 1000.0
    quiet_start: str = "22:00"
    quiet_end: str = "08:00"
    notification_sound: bool = True
    desktop_notifications: bool = False
    updated_at: Optional[str] = None


PREFERENCE_CATEGORIES = (
    "budget_alerts",
    "goal_updates",
    "large_transactions",
    "monthly_reports",
    "system_updates",
)


@dataclass
class Preferences:
    """Per-user category toggles."""

    budget_alerts: bool = True
    goal_updates: bool = True
    large_transactions: bool = True
    monthly_reports: bool = True
    system_updates: bool = True

    def is_enabled(self, category: str) -> bool:
        """Get a category flag; unknown categories are allowed."""
        value = getattr(self, category, None)
        return value is not False


@dataclass
class Budget:
    """Monthly spending limit for a category."""

    id: str
    user_id: str
    category_id: str
    category_name: str
    amount: float
    active: bool = True


@dataclass
class Goal:
    """Savings goal."""

    id: str
    user_id: str
    title: str
    status: str  # "active", "completed", "paused"
    current_amount: float
    target_amount: float


@dataclass
class Transaction:
    """An expense or income entry."""

    id: str
    user_id: str
    kind: str  # "expense" or "income"
    amount: float
    date: datetime
    category: str = "Uncategorized"
    category_id: Optional[str] = None
    description: str = ""
