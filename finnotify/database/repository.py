"""
Repository classes over the document store.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from finnotify.rules.types import CandidateNotification
from .models import (
    Budget,
    Goal,
    Notification,
    NotificationType,
    Priority,
    Transaction,
    metadata_from_dict,
    metadata_to_dict,
)
from .store import (
    Document,
    DocumentStore,
    Filter,
    Subscription,
    parse_datetime,
)

logger = logging.getLogger(__name__)


def notification_from_document(document: Document) -> Notification:
    """Convert a stored document to a Notification."""
    data = document.data
    notification_type = NotificationType(data["type"])
    return Notification(
        id=document.id or "",
        user_id=data["user_id"],
        type=notification_type,
        subtype=data.get("subtype", ""),
        title=data.get("title", "Notification"),
        message=data.get("message", ""),
        priority=Priority(data.get("priority", Priority.MEDIUM.value)),
        created_at=parse_datetime(data.get("created_at")),
        entity_key=data.get("entity_key"),
        read_at=parse_datetime(data.get("read_at")),
        expires_at=parse_datetime(data.get("expires_at")),
        metadata=metadata_from_dict(notification_type, data.get("metadata")),
        actions=list(data.get("actions") or []),
        idempotency_key=data.get("idempotency_key"),
    )


class NotificationRepository:
    """Notification records for one store."""

    COLLECTION = "notifications"

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, candidate: CandidateNotification) -> Notification:
        """Persist a candidate; the store assigns id and created_at."""
        fields: dict[str, Any] = {
            "user_id": candidate.user_id,
            "type": candidate.type,
            "subtype": candidate.subtype,
            "entity_key": candidate.entity_key,
            "title": candidate.title,
            "message": candidate.message,
            "priority": candidate.priority,
            "read_at": None,
            "expires_at": candidate.expires_at,
            "metadata": metadata_to_dict(candidate.metadata),
            "actions": list(candidate.actions),
            "idempotency_key": candidate.idempotency_key,
        }
        document = await self.store.create(self.COLLECTION, fields)
        return notification_from_document(document)

    async def exists_in_window(
        self,
        user_id: str,
        notification_type: NotificationType,
        subtype: str,
        entity_key: Optional[str],
        since: Optional[datetime] = None,
    ) -> bool:
        """Check if a matching notification exists, optionally since a time."""
        filters = [
            Filter("user_id", "==", user_id),
            Filter("type", "==", notification_type),
            Filter("subtype", "==", subtype),
            Filter("entity_key", "==", entity_key),
        ]
        if since is not None:
            filters.append(Filter("created_at", ">=", since))

        existing = await self.store.query(self.COLLECTION, filters, limit=1)
        return len(existing) > 0

    async def list_recent(self, user_id: str, limit: int = 200) -> list[Notification]:
        """Get a user's most recent notifications, newest first."""
        documents = await self.store.query(
            self.COLLECTION,
            [Filter("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        notifications = []
        for document in documents:
            try:
                notifications.append(notification_from_document(document))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed notification {document.id}: {e}")
        return notifications

    async def mark_read(self, notification_ids: list[str], read_at: datetime) -> None:
        """Set read_at on one or more notifications in a single batch."""
        if not notification_ids:
            return
        await self.store.batch_update(
            self.COLLECTION,
            [(notification_id, {"read_at": read_at}) for notification_id in notification_ids],
        )

    async def delete(self, notification_ids: list[str]) -> None:
        """Delete one or more notifications in a single batch."""
        if not notification_ids:
            return
        await self.store.batch_delete(self.COLLECTION, notification_ids)

    async def subscribe(self, user_id: str, limit: Optional[int] = 1) -> Subscription:
        """Open the change-feed for a user's notifications."""
        return await self.store.subscribe(
            self.COLLECTION,
            [Filter("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )


class BudgetRepository:
    """Read access to budgets."""

    COLLECTION = "budgets"

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, budget: Budget) -> Budget:
        """Create a new budget."""
        document = await self.store.create(
            self.COLLECTION,
            {
                "user_id": budget.user_id,
                "category_id": budget.category_id,
                "category_name": budget.category_name,
                "amount": budget.amount,
                "active": budget.active,
            },
        )
        budget.id = document.id
        return budget

    async def list_active(self, user_id: str) -> list[Budget]:
        """Get a user's active budgets."""
        documents = await self.store.query(
            self.COLLECTION,
            [Filter("user_id", "==", user_id), Filter("active", "==", True)],
        )
        return [self._document_to_budget(d) for d in documents]

    def _document_to_budget(self, document: Document) -> Budget:
        data = document.data
        return Budget(
            id=document.id,
            user_id=data["user_id"],
            category_id=data.get("category_id", ""),
            category_name=data.get("category_name") or "Unknown Category",
            amount=float(data.get("amount") or 0),
            active=bool(data.get("active", True)),
        )


class GoalRepository:
    """Read access to savings goals."""

    COLLECTION = "goals"

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, goal: Goal) -> Goal:
        """Create a new goal."""
        document = await self.store.create(
            self.COLLECTION,
            {
                "user_id": goal.user_id,
                "title": goal.title,
                "status": goal.status,
                "current_amount": goal.current_amount,
                "target_amount": goal.target_amount,
            },
        )
        goal.id = document.id
        return goal

    async def update_amount(self, goal_id: str, current_amount: float) -> None:
        """Update a goal's saved amount."""
        await self.store.update(
            self.COLLECTION, goal_id, {"current_amount": current_amount}
        )

    async def list_by_status(self, user_id: str, statuses: list[str]) -> list[Goal]:
        """Get a user's goals with one of the given statuses."""
        documents = await self.store.query(
            self.COLLECTION,
            [Filter("user_id", "==", user_id), Filter("status", "in", statuses)],
        )
        return [self._document_to_goal(d) for d in documents]

    def _document_to_goal(self, document: Document) -> Goal:
        data = document.data
        return Goal(
            id=document.id,
            user_id=data["user_id"],
            title=data.get("title", "Goal"),
            status=data.get("status", "active"),
            current_amount=float(data.get("current_amount") or 0),
            target_amount=float(data.get("target_amount") or 0),
        )


class TransactionRepository:
    """Read access to expenses and incomes."""

    COLLECTIONS = {"expense": "expenses", "income": "incomes"}

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, transaction: Transaction) -> Transaction:
        """Create a new expense or income."""
        document = await self.store.create(
            self.COLLECTIONS[transaction.kind],
            {
                "user_id": transaction.user_id,
                "amount": transaction.amount,
                "date": transaction.date,
                "category": transaction.category,
                "category_id": transaction.category_id,
                "description": transaction.description,
            },
        )
        transaction.id = document.id
        return transaction

    async def spending_by_category(
        self, user_id: str, since: datetime
    ) -> dict[str, float]:
        """Sum expenses per category_id dated on or after `since`."""
        documents = await self.store.query(
            self.COLLECTIONS["expense"],
            [Filter("user_id", "==", user_id), Filter("date", ">=", since)],
        )
        spending: dict[str, float] = {}
        for document in documents:
            category_id = document.data.get("category_id")
            if not category_id:
                continue
            amount = float(document.data.get("amount") or 0)
            spending[category_id] = spending.get(category_id, 0.0) + amount
        return spending

    async def list_large(
        self, user_id: str, threshold: float, since: datetime
    ) -> list[Transaction]:
        """Get expenses then incomes with amount >= threshold since a date."""
        transactions = []
        for kind, collection in self.COLLECTIONS.items():
            documents = await self.store.query(
                collection,
                [
                    Filter("user_id", "==", user_id),
                    Filter("amount", ">=", threshold),
                    Filter("date", ">=", since),
                ],
                order_by="date",
            )
            transactions.extend(self._document_to_transaction(d, kind) for d in documents)
        return transactions

    def _document_to_transaction(self, document: Document, kind: str) -> Transaction:
        data = document.data
        return Transaction(
            id=document.id,
            user_id=data["user_id"],
            kind=kind,
            amount=float(data.get("amount") or 0),
            date=parse_datetime(data["date"]),
            category=data.get("category") or "Uncategorized",
            category_id=data.get("category_id"),
            description=data.get("description") or "",
        )


class UserSettingsRepository:
    """Durable per-user mirror of settings and preferences."""

    COLLECTION = "user_settings"

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, user_id: str) -> Optional[dict[str, Any]]:
        """Get the mirrored settings document for a user."""
        document = await self.store.get(self.COLLECTION, user_id)
        return document.data if document else None

    async def save(self, user_id: str, key: str, values: dict[str, Any], now: datetime) -> None:
        """Merge one section ("notification_settings" or "notification_preferences")."""
        await self.store.set(
            self.COLLECTION,
            user_id,
            {key: values, "updated_at": now},
            merge=True,
        )
