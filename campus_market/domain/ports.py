from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .documents import Document, Query, Write


class DocumentStorePort(ABC):
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> Document:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Document:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def query(self, query: Query) -> List[Document]:
        ...

    @abstractmethod
    async def count(self, query: Query) -> int:
        ...

    @abstractmethod
    async def commit(self, writes: List[Write]) -> None:
        """Apply every write or none of them."""


@dataclass(frozen=True)
class AuthSession:
    uid: str
    email: str
    email_verified: bool = False
    id_token: Optional[str] = None


class AuthPort(ABC):
    @abstractmethod
    async def create_account(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def is_email_verified(self) -> bool:
        ...

    @abstractmethod
    def on_session_changed(self, callback: Callable[[Optional[AuthSession]], None]) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""


class ChatCompletionPort(ABC):
    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        model: Optional[str] = None,
    ) -> str:
        ...
