from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from .session import SessionABC
from .summarization import SummarizationConfig, compact_messages

if TYPE_CHECKING:
    from ..items import TMessage

DEFAULT_COLLECTION = "agent_sessions"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MongoDBSession(SessionABC):
    """MongoDB-based implementation of session storage.

    Each session is one document `{session_id, messages, metadata, created_at, updated_at}`,
    written with upserts.
    """

    def __init__(
        self,
        session_id: str,
        db: AsyncDatabase,
        collection_name: str = DEFAULT_COLLECTION,
        max_messages: int | None = None,
        summarization: SummarizationConfig | None = None,
    ):
        self.session_id = session_id
        self.db = db
        self.collection_name = collection_name
        self.collection = db[collection_name]
        self.max_messages = max_messages
        self.summarization = summarization
        self._initialized = False

    @classmethod
    def from_connection_string(
        cls,
        session_id: str,
        conn_str: str,
        db_name: str,
        collection_name: str = DEFAULT_COLLECTION,
        **kwargs: Any,
    ) -> MongoDBSession:
        client: AsyncMongoClient[Any] = AsyncMongoClient(conn_str)
        return cls(session_id, client[db_name], collection_name, **kwargs)

    async def _ensure_initialized(self) -> None:
        """Ensure the session_id index exists."""
        if not self._initialized:
            await self.collection.create_index("session_id", unique=True)
            self._initialized = True

    async def _find(self) -> dict[str, Any] | None:
        await self._ensure_initialized()
        return await self.collection.find_one({"session_id": self.session_id})

    async def get_history(self) -> list[TMessage]:
        document = await self._find()
        if not document:
            return []
        return list(document.get("messages") or [])

    async def add_messages(self, messages: list[TMessage]) -> None:
        if not messages:
            return
        existing = await self.get_history()
        combined = await compact_messages(
            [*existing, *messages], self.summarization, self.max_messages, label="mongodb"
        )
        await self.replace_history(combined)

    async def replace_history(self, messages: list[TMessage]) -> None:
        """Store `messages` as the full history, without compaction."""
        await self._ensure_initialized()
        now = _now()
        await self.collection.update_one(
            {"session_id": self.session_id},
            {
                "$set": {"messages": messages, "updated_at": now},
                "$setOnInsert": {"metadata": {}, "created_at": now},
            },
            upsert=True,
        )

    async def clear(self) -> None:
        await self._ensure_initialized()
        await self.collection.update_one(
            {"session_id": self.session_id},
            {"$set": {"messages": [], "metadata": {}, "updated_at": _now()}},
        )

    async def get_metadata(self) -> dict[str, Any]:
        document = await self._find()
        if not document:
            return {}
        return dict(document.get("metadata") or {})

    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        merged = {**await self.get_metadata(), **metadata}
        now = _now()
        await self.collection.update_one(
            {"session_id": self.session_id},
            {
                "$set": {"metadata": merged, "updated_at": now},
                "$setOnInsert": {"messages": [], "created_at": now},
            },
            upsert=True,
        )

    async def close(self) -> None:
        await self.db.client.close()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
