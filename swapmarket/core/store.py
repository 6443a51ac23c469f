import copy
import logging
import uuid
from typing import Any, Dict, List, Optional

from .realtime import Change, ChangeFeed

logger = logging.getLogger(__name__)

QUERY_TYPES = ("select", "insert", "insert_if_absent", "update", "delete")
FILTER_OPERATORS = ("eq", "neq", "in", "contains")


def matches(document: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Check a document against equality and operator filters."""
    if not filters:
        return True

    for key, value in filters.items():
        actual = document.get(key)
        if isinstance(value, dict):
            operator, expected = next(iter(value.items()))
            if operator == "eq" and actual != expected:
                return False
            if operator == "neq" and actual == expected:
                return False
            if operator == "in" and actual not in expected:
                return False
            if operator == "contains" and (not isinstance(actual, list) or expected not in actual):
                return False
        elif actual != value:
            return False

    return True


class DocumentStore:
    """
    Base class for the document store backends.

    Subclasses implement the five primitive operations; this class validates
    arguments, assigns ids and publishes every successful write on the change
    feed so that live subscriptions can re-evaluate.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    async def execute_query(
        self,
        table: str,
        query_type: str,
        data: Optional[Dict[str, Any]] = None,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Execute a query on the document store.

        Args:
            table: The collection to query
            query_type: The type of query (select, insert, insert_if_absent, update, delete)
            data: The document to insert, or the fields to update
            filters: The filters to apply to the query
            order_by: The fields to order by, e.g. {"created_at": "desc"}
            limit: The maximum number of documents to return

        Returns:
            The affected documents
        """
        if query_type not in QUERY_TYPES:
            raise ValueError(f"Invalid query type: {query_type}")

        if filters:
            for key, value in filters.items():
                if isinstance(value, dict) and next(iter(value)) not in FILTER_OPERATORS:
                    raise ValueError(f"Unsupported filter operator for {key}: {value}")

        logger.debug(f"Executing {query_type} on table {table} with filters {filters}")

        if query_type == "select":
            return await self._select(table, filters, order_by, limit)

        if query_type in ("insert", "insert_if_absent"):
            if not data:
                raise ValueError("Data is required for insert operations")
            document = {**data}
            document.setdefault("id", str(uuid.uuid4()))
            if query_type == "insert":
                inserted = await self._insert(table, document)
            else:
                inserted = await self._insert_if_absent(table, document)
            for row in inserted:
                self._publish(Change(table, "insert", None, row))
            return inserted

        if not filters:
            raise ValueError(f"Filters are required for {query_type} operations")

        if query_type == "update":
            if not data:
                raise ValueError("Data is required for update operations")
            before = await self._select(table, filters, None, None)
            updated = await self._update(table, filters, data)
            previous = {row["id"]: row for row in before}
            for row in updated:
                self._publish(Change(table, "update", previous.get(row["id"]), row))
            return updated

        deleted = await self._delete(table, filters)
        for row in deleted:
            self._publish(Change(table, "delete", row, None))
        return deleted

    async def get_document(self, table: str, document_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.execute_query(table=table, query_type="select", filters={"id": document_id})
        return rows[0] if rows else None

    async def start(self) -> None:
        """Open background connections; called from the application lifespan."""

    async def close(self) -> None:
        """Release what ``start`` opened."""

    def _publish(self, change: Change) -> None:
        # Subscribers get their own copy so they can't mutate stored state
        self.feed.publish(copy.deepcopy(change))

    async def _select(self, table, filters, order_by, limit) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _insert(self, table, document) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _insert_if_absent(self, table, document) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _update(self, table, filters, data) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _delete(self, table, filters) -> List[Dict[str, Any]]:
        raise NotImplementedError
