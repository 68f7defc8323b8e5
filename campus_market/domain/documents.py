from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

LISTINGS = "listings"
BIDS = "bids"
PENDING = "pending"
SERVICES = "services"
USERS = "users"
CONVERSATIONS = "conversations"
MESSAGES = "messages"
REVIEWS = "reviews"

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Replaced by the store with a server-assigned, strictly increasing UTC time.
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    amount: float = 1


@dataclass(frozen=True)
class Document:
    id: str
    data: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator {self.op!r}")


@dataclass(frozen=True)
class Query:
    collection: str
    filters: Tuple[Filter, ...] = ()
    order_by: Tuple[Tuple[str, bool], ...] = ()  # (field, descending)
    limit: Optional[int] = None
    start_after: Optional[Document] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        return Query(self.collection, self.filters + (Filter(field_name, op, value),), self.order_by, self.limit, self.start_after)

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return Query(self.collection, self.filters, self.order_by + ((field_name, descending),), self.limit, self.start_after)

    def take(self, limit: int) -> "Query":
        return Query(self.collection, self.filters, self.order_by, limit, self.start_after)

    def after(self, cursor: Optional[Document]) -> "Query":
        return Query(self.collection, self.filters, self.order_by, self.limit, cursor)


@dataclass(frozen=True)
class Write:
    kind: str  # "set" | "update" | "delete"
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def set(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "Write":
        return cls("set", collection, doc_id, dict(data))

    @classmethod
    def update(cls, collection: str, doc_id: str, changes: Dict[str, Any]) -> "Write":
        return cls("update", collection, doc_id, dict(changes))

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "Write":
        return cls("delete", collection, doc_id)


def chunked(values: List[Any], size: int) -> List[List[Any]]:
    return [values[i:i + size] for i in range(0, len(values), size)]
