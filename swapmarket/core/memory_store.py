import copy
from typing import Any, Dict, List

from .store import DocumentStore, matches


class MemoryDocumentStore(DocumentStore):
    """Dict-backed store used for local development and the test suite."""

    def __init__(self, feed=None):
        super().__init__(feed)
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    async def _select(self, table, filters, order_by, limit) -> List[Dict[str, Any]]:
        rows = [copy.deepcopy(doc) for doc in self._table(table).values() if matches(doc, filters)]

        if order_by:
            # Apply the last key first so the first key wins
            for key, direction in reversed(list(order_by.items())):
                reverse = direction.lower() == "desc"
                rows.sort(key=lambda row: (row.get(key) is not None, row.get(key) or ""), reverse=reverse)

        if limit is not None:
            rows = rows[:limit]
        return rows

    async def _insert(self, table, document) -> List[Dict[str, Any]]:
        rows = self._table(table)
        if document["id"] in rows:
            raise ValueError(f"Document {document['id']} already exists in {table}")
        rows[document["id"]] = copy.deepcopy(document)
        return [copy.deepcopy(document)]

    async def _insert_if_absent(self, table, document) -> List[Dict[str, Any]]:
        if document["id"] in self._table(table):
            return []
        return await self._insert(table, document)

    async def _update(self, table, filters, data) -> List[Dict[str, Any]]:
        updated = []
        for doc in self._table(table).values():
            if matches(doc, filters):
                doc.update(copy.deepcopy(data))
                updated.append(copy.deepcopy(doc))
        return updated

    async def _delete(self, table, filters) -> List[Dict[str, Any]]:
        rows = self._table(table)
        doomed = [doc_id for doc_id, doc in rows.items() if matches(doc, filters)]
        return [rows.pop(doc_id) for doc_id in doomed]
