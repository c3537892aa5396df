"""
Rule evaluation engine.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from finnotify.database.models import Notification, Preferences, Settings
from finnotify.database.repository import (
    BudgetRepository,
    GoalRepository,
    NotificationRepository,
    TransactionRepository,
)
from finnotify.database.store import DocumentStore
from .dedup import DeduplicationGate
from .types import (
    TRANSACTION_LOOKBACK,
    BudgetRule,
    CandidateNotification,
    FinanceSnapshot,
    GoalRule,
    MonthlyReportRule,
    Rule,
    TransactionRule,
    start_of_month,
)

# Re-export for convenience
__all__ = ["RuleEngine", "CandidateNotification", "FAMILIES", "FAMILY_PREFERENCES"]

logger = logging.getLogger(__name__)

FAMILIES = ("budget", "goal", "transaction", "report")

# Generation-time gate: a disabled category skips its family entirely
FAMILY_PREFERENCES = {
    "budget": "budget_alerts",
    "goal": "goal_updates",
    "transaction": "large_transactions",
    "report": "monthly_reports",
}


class RuleEngine:
    """Evaluates rule families for a user and persists new notifications."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize rule engine.

        Args:
            store: Document store holding finance data and notifications
            clock: Source of the current local time
        """
        self.clock = clock
        self.budget_repo = BudgetRepository(store)
        self.goal_repo = GoalRepository(store)
        self.transaction_repo = TransactionRepository(store)
        self.notification_repo = NotificationRepository(store)
        self.gate = DeduplicationGate(self.notification_repo)

        # Passes for one user never overlap
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        """Whether an evaluation pass is in progress."""
        return self._run_lock.locked()

    def create_rule(self, family: str, settings: Settings) -> Rule:
        """
        Create the Rule for a family from user settings.

        Raises:
            ValueError: If family is unknown
        """
        if family == "budget":
            return BudgetRule(threshold=settings.budget_threshold)

        elif family == "goal":
            return GoalRule()

        elif family == "transaction":
            return TransactionRule(threshold=settings.transaction_threshold)

        elif family == "report":
            return MonthlyReportRule()

        else:
            raise ValueError(f"Unknown rule family: {family}")

    async def load_snapshot(
        self, family: str, user_id: str, settings: Settings, now: datetime
    ) -> FinanceSnapshot:
        """Read what a family needs from the store."""
        snapshot = FinanceSnapshot(user_id=user_id, now=now)

        if family == "budget":
            snapshot.budgets = await self.budget_repo.list_active(user_id)
            if snapshot.budgets:
                snapshot.spending = await self.transaction_repo.spending_by_category(
                    user_id, since=start_of_month(now)
                )
        elif family == "goal":
            snapshot.goals = await self.goal_repo.list_by_status(
                user_id, ["active", "completed"]
            )
        elif family == "transaction":
            snapshot.transactions = await self.transaction_repo.list_large(
                user_id,
                threshold=settings.transaction_threshold,
                since=now - TRANSACTION_LOOKBACK,
            )

        return snapshot

    def evaluate_rules(
        self, rules: list[Rule], snapshot: FinanceSnapshot
    ) -> list[CandidateNotification]:
        """
        Evaluate multiple rules against one snapshot.

        Returns:
            List of all candidates, in rule order
        """
        candidates = []
        for rule in rules:
            candidates.extend(rule.evaluate(snapshot))
        return candidates

    async def run_family(
        self,
        user_id: str,
        family: str,
        settings: Settings,
        preferences: Preferences,
        now: Optional[datetime] = None,
    ) -> list[Notification]:
        """
        Evaluate one family and persist candidates that pass the dedup gate.

        Failures are logged and the family is skipped until its next tick.
        Candidates already persisted before a failure stay persisted.

        Returns:
            Notifications created in this run
        """
        preference = FAMILY_PREFERENCES.get(family)
        if preference and not preferences.is_enabled(preference):
            logger.debug(f"Skipping {family} rules: {preference} disabled")
            return []

        now = now or self.clock()
        created: list[Notification] = []
        try:
            rule = self.create_rule(family, settings)
            snapshot = await self.load_snapshot(family, user_id, settings, now)
            for candidate in self.evaluate_rules([rule], snapshot):
                notification = await self.gate.emit(candidate)
                if notification is not None:
                    created.append(notification)
        except Exception as e:
            logger.error(f"Error checking {family} notifications for {user_id}: {e}")

        return created

    async def run(
        self,
        user_id: str,
        settings: Settings,
        preferences: Preferences,
        families: Iterable[str] = FAMILIES,
    ) -> list[Notification]:
        """Run an evaluation pass over several families, one pass at a time."""
        families = list(families)
        if self.running:
            logger.debug(f"Evaluation pass in progress, queueing {families}")

        created: list[Notification] = []
        async with self._run_lock:
            for family in families:
                created.extend(
                    await self.run_family(user_id, family, settings, preferences)
                )
        return created
