"""
Document store contract and the SQLite adapter.

The rest of the package only talks to ``DocumentStore``: keyed collections
with field filters, batched writes and a live change-feed. ``SQLiteDocumentStore``
keeps every collection as JSON documents in one table and fans changes out to
in-process subscribers.
"""

import asyncio
import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from finnotify.errors import NotFound, StoreUnavailable
from .connection import Database

logger = logging.getLogger(__name__)

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")


def to_iso(value: datetime) -> str:
    """Serialize a timestamp so that stored values sort lexically."""
    return value.isoformat(timespec="microseconds")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def encode_value(value: Any) -> Any:
    """Convert a Python value to its stored JSON form."""
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


@dataclass(frozen=True)
class Filter:
    """A field filter, e.g. Filter("amount", ">=", 1000)."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict[str, Any]) -> bool:
        """Evaluate the filter against a stored document."""
        actual = data.get(self.field)
        expected = encode_value(self.value)

        if self.op == "==":
            return actual == expected
        if self.op == "in":
            return actual in expected
        if actual is None:
            return False
        if self.op == "!=":
            return actual != expected

        try:
            if self.op == "<":
                return actual < expected
            if self.op == "<=":
                return actual <= expected
            if self.op == ">":
                return actual > expected
            return actual >= expected
        except TypeError:
            return False


@dataclass
class Document:
    """A stored document."""

    id: str
    data: dict[str, Any]

    @property
    def created_at(self) -> Optional[datetime]:
        return parse_datetime(self.data.get("created_at"))


class ChangeType(str, Enum):
    """Change-feed event type."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class ChangeEvent:
    """A single change-feed event."""

    type: ChangeType
    document: Document


class Subscription:
    """Async iterator over change events for one query."""

    _CLOSED = object()

    def __init__(
        self,
        collection: str,
        filters: list[Filter],
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.collection = collection
        self.filters = filters
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    @property
    def pending(self) -> int:
        """Events queued but not yet consumed."""
        return self._queue.qsize()

    def matches(self, data: dict[str, Any]) -> bool:
        return all(f.matches(data) for f in self.filters)

    def push(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Stop delivering events and end iteration."""
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(self._CLOSED)
        if self._on_close:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class DocumentStore(ABC):
    """Abstract keyed document store."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Query documents by field filters."""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Get a document by id."""
        pass

    @abstractmethod
    async def create(self, collection: str, fields: dict[str, Any]) -> Document:
        """Create a document; the store assigns id and created_at."""
        pass

    @abstractmethod
    async def set(
        self, collection: str, doc_id: str, fields: dict[str, Any], merge: bool = True
    ) -> Document:
        """Create or overwrite a document with a known id."""
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Update fields of an existing document."""
        pass

    @abstractmethod
    async def batch_update(
        self, collection: str, updates: list[tuple[str, dict[str, Any]]]
    ) -> None:
        """Apply several updates atomically."""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is not an error."""
        pass

    @abstractmethod
    async def batch_delete(self, collection: str, doc_ids: list[str]) -> None:
        """Delete several documents atomically."""
        pass

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> Subscription:
        """Open a change-feed; the first events are a snapshot of current matches."""
        pass


class SQLiteDocumentStore(DocumentStore):
    """Document store backed by a single SQLite table."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock
        self._subscriptions: list[Subscription] = []
        self._last_created: Optional[datetime] = None

    # -- reads --------------------------------------------------------------

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        sql = ["SELECT id, data FROM documents WHERE collection = ?"]
        params: list[Any] = [collection]

        for f in filters:
            clause, clause_params = self._filter_clause(f)
            sql.append(f"AND {clause}")
            params.extend(clause_params)

        direction = "DESC" if descending else "ASC"
        if order_by:
            sql.append(f"ORDER BY json_extract(data, ?) {direction}, seq {direction}")
            params.append(f"$.{order_by}")
        else:
            sql.append(f"ORDER BY seq {direction}")

        if limit is not None:
            sql.append("LIMIT ?")
            params.append(limit)

        rows = self._execute(" ".join(sql), params).fetchall()
        return [self._row_to_document(row) for row in rows]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._get(collection, doc_id)

    # -- writes -------------------------------------------------------------

    async def create(self, collection: str, fields: dict[str, Any]) -> Document:
        doc_id = uuid.uuid4().hex
        data = encode_value(dict(fields))
        data["created_at"] = to_iso(self._next_timestamp())

        self._execute(
            """
            INSERT INTO documents (collection, id, data, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (collection, doc_id, json.dumps(data), data["created_at"]),
        )
        self._commit()

        document = Document(id=doc_id, data=data)
        self._publish(collection, ChangeType.ADDED, document, previous=None)
        return document

    async def set(
        self, collection: str, doc_id: str, fields: dict[str, Any], merge: bool = True
    ) -> Document:
        existing = self._get(collection, doc_id)
        data = encode_value(dict(fields))

        if existing is None:
            data.setdefault("created_at", to_iso(self._next_timestamp()))
            self._execute(
                """
                INSERT INTO documents (collection, id, data, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (collection, doc_id, json.dumps(data), data["created_at"]),
            )
            self._commit()
            document = Document(id=doc_id, data=data)
            self._publish(collection, ChangeType.ADDED, document, previous=None)
            return document

        merged = {**existing.data, **data} if merge else data
        merged.setdefault("created_at", existing.data.get("created_at"))
        self._write_data(collection, doc_id, merged)
        self._commit()
        document = Document(id=doc_id, data=merged)
        self._publish(collection, ChangeType.MODIFIED, document, previous=existing.data)
        return document

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        await self.batch_update(collection, [(doc_id, fields)])

    async def batch_update(
        self, collection: str, updates: list[tuple[str, dict[str, Any]]]
    ) -> None:
        changed = []
        try:
            for doc_id, fields in updates:
                existing = self._get(collection, doc_id)
                if existing is None:
                    raise NotFound(f"{collection}/{doc_id} does not exist")
                merged = {**existing.data, **encode_value(dict(fields))}
                self._write_data(collection, doc_id, merged)
                changed.append((Document(id=doc_id, data=merged), existing.data))
        except (NotFound, StoreUnavailable):
            self._rollback()
            raise
        self._commit()

        for document, previous in changed:
            self._publish(collection, ChangeType.MODIFIED, document, previous=previous)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.batch_delete(collection, [doc_id])

    async def batch_delete(self, collection: str, doc_ids: list[str]) -> None:
        removed = []
        try:
            for doc_id in doc_ids:
                existing = self._get(collection, doc_id)
                if existing is None:
                    continue
                self._execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?",
                    (collection, doc_id),
                )
                removed.append(existing)
        except StoreUnavailable:
            self._rollback()
            raise
        self._commit()

        for document in removed:
            self._publish(collection, ChangeType.REMOVED, document, previous=document.data)

    # -- change-feed --------------------------------------------------------

    async def subscribe(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> Subscription:
        filters = list(filters)
        subscription = Subscription(
            collection, filters, on_close=self._subscriptions.remove
        )
        snapshot = await self.query(
            collection, filters, order_by=order_by, descending=descending, limit=limit
        )
        for document in snapshot:
            subscription.push(ChangeEvent(ChangeType.ADDED, document))

        self._subscriptions.append(subscription)
        logger.debug(
            f"Subscribed to {collection} with {len(filters)} filters "
            f"({len(snapshot)} documents in snapshot)"
        )
        return subscription

    def _publish(
        self,
        collection: str,
        change: ChangeType,
        document: Document,
        previous: Optional[dict[str, Any]],
    ) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection != collection:
                continue

            was_match = previous is not None and subscription.matches(previous)
            if change == ChangeType.REMOVED:
                if was_match:
                    subscription.push(ChangeEvent(ChangeType.REMOVED, document))
                continue

            is_match = subscription.matches(document.data)
            if is_match and not was_match:
                subscription.push(ChangeEvent(ChangeType.ADDED, document))
            elif is_match:
                subscription.push(ChangeEvent(ChangeType.MODIFIED, document))
            elif was_match:
                subscription.push(ChangeEvent(ChangeType.REMOVED, document))

    # -- helpers ------------------------------------------------------------

    def _next_timestamp(self) -> datetime:
        """Server timestamp, never earlier than the previous one."""
        now = self.clock()
        if self._last_created is not None and now < self._last_created:
            now = self._last_created
        self._last_created = now
        return now

    def _filter_clause(self, f: Filter) -> tuple[str, list[Any]]:
        column = "json_extract(data, ?)"
        path = f"$.{f.field}"
        value = encode_value(f.value)

        if f.op == "==" and value is None:
            return f"{column} IS NULL", [path]
        if f.op == "!=" and value is None:
            return f"{column} IS NOT NULL", [path]
        if f.op == "in":
            if not value:
                return "0", []
            placeholders = ", ".join("?" for _ in value)
            return f"{column} IN ({placeholders})", [path, *value]
        return f"{column} {f.op} ?", [path, value]

    def _get(self, collection: str, doc_id: str) -> Optional[Document]:
        row = self._execute(
            "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    def _write_data(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._execute(
            "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
            (json.dumps(data), collection, doc_id),
        )

    def _execute(self, sql: str, params: Iterable[Any]) -> sqlite3.Cursor:
        try:
            return self.db.connection.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Store query failed: {e}") from e

    def _commit(self) -> None:
        try:
            self.db.connection.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Store commit failed: {e}") from e

    def _rollback(self) -> None:
        """Discard the uncommitted part of a failed batch."""
        try:
            self.db.connection.rollback()
        except sqlite3.Error as e:
            logger.warning(f"Store rollback failed: {e}")

    def _row_to_document(self, row) -> Document:
        """Convert database row to Document."""
        return Document(id=row["id"], data=json.loads(row["data"]))
