"""
Notification rule types.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from finnotify.database.models import (
    Budget,
    BudgetMetadata,
    Goal,
    GoalMetadata,
    Metadata,
    NotificationType,
    Priority,
    ReportMetadata,
    Transaction,
    TransactionMetadata,
)

BUDGET_EXPIRY = timedelta(days=30)
GOAL_EXPIRY = timedelta(days=30)
TRANSACTION_EXPIRY = timedelta(days=14)

GOAL_MILESTONES = (25, 50, 75)
GOAL_MILESTONE_WINDOW = timedelta(days=30)
TRANSACTION_LOOKBACK = timedelta(days=7)
REPORT_FIRST_DAY = 28


def start_of_month(now: datetime) -> datetime:
    """Midnight on the first day of `now`'s month."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_next_month(now: datetime) -> datetime:
    """Midnight on the first day of the month after `now`."""
    first = start_of_month(now)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


@dataclass(frozen=True)
class EvaluationWindow:
    """Span in which a rule subtype may fire once. start=None means ever."""

    start: Optional[datetime] = None

    @classmethod
    def calendar_month(cls, now: datetime) -> "EvaluationWindow":
        return cls(start=start_of_month(now))

    @classmethod
    def rolling(cls, now: datetime, span: timedelta) -> "EvaluationWindow":
        return cls(start=now - span)

    @classmethod
    def unbounded(cls) -> "EvaluationWindow":
        return cls(start=None)

    @property
    def is_bounded(self) -> bool:
        return self.start is not None


@dataclass
class CandidateNotification:
    """An unsaved, rule-produced notification awaiting the dedup check."""

    user_id: str
    type: NotificationType
    subtype: str
    title: str
    message: str
    priority: Priority
    window: EvaluationWindow
    entity_key: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Optional[Metadata] = None
    actions: list[str] = field(default_factory=list)
    idempotency_key: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class FinanceSnapshot:
    """Financial state read from the store for one evaluation pass."""

    user_id: str
    now: datetime
    budgets: list[Budget] = field(default_factory=list)
    spending: dict[str, float] = field(default_factory=dict)
    goals: list[Goal] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)


class Rule(ABC):
    """Base class for notification rules."""

    family: str = ""

    @abstractmethod
    def evaluate(self, snapshot: FinanceSnapshot) -> list[CandidateNotification]:
        """
        Evaluate rule against a finance snapshot.

        Args:
            snapshot: Financial state for the user

        Returns:
            List of candidate notifications (empty if none)
        """
        pass


class BudgetRule(Rule):
    """Alert when monthly spending nears or passes a budget."""

    family = "budget"

    def __init__(self, threshold: float = 80):
        """
        Initialize rule.

        Args:
            threshold: Usage percentage that triggers the warning (50-100)
        """
        self.threshold = threshold

    def evaluate(self, snapshot: FinanceSnapshot) -> list[CandidateNotification]:
        candidates = []
        window = EvaluationWindow.calendar_month(snapshot.now)

        for budget in snapshot.budgets:
            if not budget.active:
                continue

            spent = snapshot.spending.get(budget.category_id, 0.0)
            usage = (spent / budget.amount) * 100 if budget.amount > 0 else 0.0

            if self.threshold <= usage < 100:
                candidates.append(
                    self._create_candidate(snapshot, budget, window, usage, spent, "threshold")
                )
            elif usage >= 100:
                candidates.append(
                    self._create_candidate(snapshot, budget, window, usage, spent, "exceeded")
                )

        return candidates

    def _create_candidate(
        self,
        snapshot: FinanceSnapshot,
        budget: Budget,
        window: EvaluationWindow,
        usage: float,
        spent: float,
        subtype: str,
    ) -> CandidateNotification:
        category = budget.category_name
        amounts = f"Spent: ${spent:.2f} of ${budget.amount:.2f}"

        if subtype == "exceeded":
            title = f"Budget Exceeded: {category}"
            message = f"You've exceeded your {category} budget ({usage:.1f}%). {amounts}"
            priority = Priority.HIGH
        else:
            title = f"Budget Alert: {category}"
            message = f"Your {category} budget is {usage:.1f}% used. {amounts}"
            priority = Priority.MEDIUM

        return CandidateNotification(
            user_id=snapshot.user_id,
            type=NotificationType.BUDGET,
            subtype=subtype,
            entity_key=budget.id,
            title=title,
            message=message,
            priority=priority,
            window=window,
            expires_at=snapshot.now + BUDGET_EXPIRY,
            metadata=BudgetMetadata(
                category_name=category,
                percentage=usage,
                spent=spent,
                limit=budget.amount,
            ),
            actions=["view_budget"],
        )


class GoalRule(Rule):
    """Alert on goal completion and on 25/50/75% milestones."""

    family = "goal"

    def __init__(self, milestones: tuple[int, ...] = GOAL_MILESTONES):
        self.milestones = milestones

    def evaluate(self, snapshot: FinanceSnapshot) -> list[CandidateNotification]:
        candidates = []

        for goal in snapshot.goals:
            if goal.status == "completed":
                candidates.append(
                    self._create_candidate(
                        snapshot, goal, "completed", EvaluationWindow.unbounded()
                    )
                )
                continue

            if goal.status != "active":
                continue
            if not goal.current_amount or not goal.target_amount:
                continue

            progress = (goal.current_amount / goal.target_amount) * 100
            # Half-open buckets: at most one milestone matches
            for milestone in self.milestones:
                if milestone <= progress < milestone + 25:
                    candidates.append(
                        self._create_candidate(
                            snapshot,
                            goal,
                            f"progress_{milestone}",
                            EvaluationWindow.rolling(snapshot.now, GOAL_MILESTONE_WINDOW),
                            milestone=milestone,
                        )
                    )
                    break

        return candidates

    def _create_candidate(
        self,
        snapshot: FinanceSnapshot,
        goal: Goal,
        subtype: str,
        window: EvaluationWindow,
        milestone: Optional[int] = None,
    ) -> CandidateNotification:
        current = f"${goal.current_amount:,.2f}"
        target = f"${goal.target_amount:,.2f}"
        priority = Priority.MEDIUM

        if subtype == "completed":
            title = f"🎉 Goal Completed: {goal.title}"
            message = f"Congratulations! You've reached your goal of {target}"
            priority = Priority.HIGH
        elif milestone == 25:
            title = f"Goal Progress: {goal.title}"
            message = f"You're 25% towards your goal ({current} of {target})"
        elif milestone == 50:
            title = f"Goal Progress: {goal.title}"
            message = f"Halfway there! You've reached 50% of your goal ({current} of {target})"
        elif milestone == 75:
            title = f"Goal Progress: {goal.title}"
            message = f"Almost there! You're 75% towards your goal ({current} of {target})"
            priority = Priority.HIGH
        else:
            title = f"Goal Update: {goal.title}"
            message = f"Your goal progress: {current} of {target}"

        progress = (
            (goal.current_amount / goal.target_amount) * 100 if goal.target_amount else 0.0
        )

        return CandidateNotification(
            user_id=snapshot.user_id,
            type=NotificationType.GOAL,
            subtype=subtype,
            entity_key=goal.id,
            title=title,
            message=message,
            priority=priority,
            window=window,
            expires_at=snapshot.now + GOAL_EXPIRY,
            metadata=GoalMetadata(
                goal_title=goal.title,
                current_amount=goal.current_amount,
                target_amount=goal.target_amount,
                progress=progress,
                milestone=milestone,
            ),
            actions=["view_goal"],
        )


class TransactionRule(Rule):
    """Alert on large expenses and incomes from the last 7 days."""

    family = "transaction"

    def __init__(self, threshold: float = 1000.0):
        """
        Initialize rule.

        Args:
            threshold: Minimum amount in dollars
        """
        self.threshold = threshold

    def evaluate(self, snapshot: FinanceSnapshot) -> list[CandidateNotification]:
        since = snapshot.now - TRANSACTION_LOOKBACK
        candidates = []

        for transaction in snapshot.transactions:
            if transaction.amount < self.threshold or transaction.date < since:
                continue
            candidates.append(self._create_candidate(snapshot, transaction))

        return candidates

    def _create_candidate(
        self, snapshot: FinanceSnapshot, transaction: Transaction
    ) -> CandidateNotification:
        kind = transaction.kind
        label = "Income" if kind == "income" else "Expense"
        description = transaction.description or f"Large {label}"

        return CandidateNotification(
            user_id=snapshot.user_id,
            type=NotificationType(kind),
            subtype="large_transaction",
            entity_key=transaction.id,
            title=f"💰 Large {label} Detected",
            message=(
                f"${transaction.amount:.2f} {kind} in {transaction.category}: "
                f"{description}"
            ),
            priority=Priority.MEDIUM,
            window=EvaluationWindow.unbounded(),
            expires_at=snapshot.now + TRANSACTION_EXPIRY,
            metadata=TransactionMetadata(
                amount=transaction.amount,
                description=description,
                category=transaction.category,
                kind=kind,
            ),
            actions=[f"view_{kind}"],
        )


class MonthlyReportRule(Rule):
    """Remind the user of the monthly report near month end."""

    family = "report"

    def __init__(self, first_day: int = REPORT_FIRST_DAY):
        self.first_day = first_day

    def evaluate(self, snapshot: FinanceSnapshot) -> list[CandidateNotification]:
        now = snapshot.now
        if now.day < self.first_day:
            return []

        month_name = now.strftime("%B")
        return [
            CandidateNotification(
                user_id=snapshot.user_id,
                type=NotificationType.SYSTEM,
                subtype="monthly_report",
                title=f"📊 {month_name} {now.year} Report Ready",
                message=(
                    "Your monthly financial summary is ready to view. "
                    "Review your spending and income trends."
                ),
                priority=Priority.LOW,
                window=EvaluationWindow.calendar_month(now),
                expires_at=start_of_next_month(now),
                metadata=ReportMetadata(month=month_name, year=now.year),
                actions=["generate_report"],
            )
        ]
