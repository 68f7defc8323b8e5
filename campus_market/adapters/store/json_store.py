import json
import logging
import os
from datetime import datetime
from typing import Any

from ...domain.errors import UpstreamUnavailable
from .memory_store import InMemoryDocumentStore

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "..", "data", "store.json"))


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _decode(obj: dict) -> Any:
    if set(obj) == {"__datetime__"}:
        return datetime.fromisoformat(obj["__datetime__"])
    return obj


class JsonDocumentStore(InMemoryDocumentStore):
    """In-memory store that rewrites a JSON file after every mutation."""

    def __init__(self, path: str = DEFAULT_STORE_PATH) -> None:
        super().__init__()
        self.path = os.path.abspath(path)
        self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f, object_hook=_decode)
        except FileNotFoundError:
            logger.info("No store file at %s; starting empty", self.path)
            self._collections = {}
            return
        self._collections = {name: dict(docs) for name, docs in raw.get("collections", {}).items()}
        stamp = raw.get("lastTimestamp")
        self._last_timestamp = stamp if isinstance(stamp, datetime) else None
        logger.info("Loaded %d collections from %s", len(self._collections), self.path)

    def _changed(self) -> None:
        try:
            self._write()
        except OSError as exc:
            # Memory already holds the failed change; fall back to what is on disk.
            logger.error("Could not save %s: %s", self.path, exc)
            last_timestamp = self._last_timestamp
            self._load()
            self._last_timestamp = last_timestamp
            raise UpstreamUnavailable("Could not save your changes, please try again") from exc

    def _write(self) -> None:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(
                {"collections": self._collections, "lastTimestamp": self._last_timestamp},
                f,
                default=_encode,
                ensure_ascii=False,
                indent=2,
            )
        os.replace(tmp_path, self.path)
