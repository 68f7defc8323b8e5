import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ...domain.documents import Document, Filter, Increment, Query, SERVER_TIMESTAMP, Write
from ...domain.errors import NotFound
from ...domain.ports import DocumentStorePort

logger = logging.getLogger(__name__)


def _matches(data: Dict[str, Any], flt: Filter) -> bool:
    if flt.field not in data:
        return False
    value = data[flt.field]
    if flt.op == "==":
        return value == flt.value
    if flt.op == "!=":
        return value != flt.value
    if flt.op == "in":
        return value in flt.value
    if value is None or flt.value is None:
        return False
    try:
        if flt.op == "<":
            return value < flt.value
        if flt.op == "<=":
            return value <= flt.value
        if flt.op == ">":
            return value > flt.value
        return value >= flt.value
    except TypeError:
        return False


class InMemoryDocumentStore(DocumentStorePort):
    """Process-local stand-in for the hosted document database."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._last_timestamp: Optional[datetime] = None

    def _server_time(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _resolve(self, data: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                value = self._server_time()
            elif isinstance(value, Increment):
                value = ((existing or {}).get(key) or 0) + value.amount
            resolved[key] = copy.deepcopy(value)
        return resolved

    def _table(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def _snapshot(self, doc_id: str, data: Dict[str, Any]) -> Document:
        return Document(id=doc_id, data=copy.deepcopy(data))

    def _changed(self) -> None:
        """Hook for subclasses that persist after each mutation."""

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._table(collection).get(doc_id)
        return self._snapshot(doc_id, data) if data is not None else None

    async def add(self, collection: str, data: Dict[str, Any]) -> Document:
        doc_id = uuid.uuid4().hex[:20]
        return await self.set(collection, doc_id, data)

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        stored = self._resolve(data)
        self._table(collection)[doc_id] = stored
        self._changed()
        return self._snapshot(doc_id, stored)

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Document:
        table = self._table(collection)
        if doc_id not in table:
            raise NotFound(f"{collection}/{doc_id} does not exist")
        table[doc_id].update(self._resolve(changes, table[doc_id]))
        self._changed()
        return self._snapshot(doc_id, table[doc_id])

    async def delete(self, collection: str, doc_id: str) -> None:
        if self._table(collection).pop(doc_id, None) is not None:
            self._changed()

    def _run(self, query: Query) -> List[Document]:
        table = self._table(query.collection)
        rows = [(doc_id, data) for doc_id, data in table.items() if all(_matches(data, f) for f in query.filters)]
        # Documents without an ordered field are not part of an ordered read.
        rows = [(doc_id, data) for doc_id, data in rows if all(data.get(f) is not None for f, _ in query.order_by)]
        cursor = query.start_after
        if cursor is not None and all(doc_id != cursor.id for doc_id, _ in rows):
            rows.append((cursor.id, cursor.data))
        rows.sort(key=lambda row: row[0])
        for field_name, descending in reversed(query.order_by):
            rows.sort(key=lambda row: row[1][field_name], reverse=descending)
        if cursor is not None:
            index = next(i for i, (doc_id, _) in enumerate(rows) if doc_id == cursor.id)
            rows = rows[index + 1:]
        if query.limit is not None:
            rows = rows[:query.limit]
        return [self._snapshot(doc_id, data) for doc_id, data in rows]

    async def query(self, query: Query) -> List[Document]:
        return self._run(query)

    async def count(self, query: Query) -> int:
        return len(self._run(Query(query.collection, query.filters)))

    async def commit(self, writes: List[Write]) -> None:
        exists = {}
        for write in writes:
            key = (write.collection, write.doc_id)
            present = exists.get(key, write.doc_id in self._table(write.collection))
            if write.kind == "update" and not present:
                raise NotFound(f"{write.collection}/{write.doc_id} does not exist")
            if write.kind not in ("set", "update", "delete"):
                raise ValueError(f"Unknown write kind {write.kind!r}")
            exists[key] = write.kind != "delete"
        for write in writes:
            table = self._table(write.collection)
            if write.kind == "set":
                table[write.doc_id] = self._resolve(write.data)
            elif write.kind == "update":
                table[write.doc_id].update(self._resolve(write.data, table[write.doc_id]))
            else:
                table.pop(write.doc_id, None)
        self._changed()
        logger.debug("Committed batch of %d writes", len(writes))
