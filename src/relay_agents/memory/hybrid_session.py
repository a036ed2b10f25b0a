from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..logger import logger
from .mongodb_session import MongoDBSession
from .redis_session import RedisSession
from .session import SessionABC

if TYPE_CHECKING:
    from ..items import TMessage

DEFAULT_SYNC_INTERVAL = 5


class HybridSession(SessionABC):
    """Redis in front of MongoDB.

    Writes are acknowledged once Redis has them. The full cached history is flushed to MongoDB
    after every `sync_interval` appended messages, or on `sync_to_database()`. Reads that miss
    Redis (for example after the key expired) fall back to MongoDB and re-warm Redis.
    """

    def __init__(
        self,
        session_id: str,
        cache: RedisSession,
        database: MongoDBSession,
        sync_interval: int = DEFAULT_SYNC_INTERVAL,
    ):
        self.session_id = session_id
        self.cache = cache
        self.database = database
        self.sync_interval = max(1, sync_interval)
        self._unsynced = 0

    async def get_history(self) -> list[TMessage]:
        history = await self.cache.get_history()
        if history:
            return history

        history = await self.database.get_history()
        if history:
            logger.debug(f"Re-warming cache for session {self.session_id}")
            await self.cache.replace_history(history)
        return history

    async def add_messages(self, messages: list[TMessage]) -> None:
        if not messages:
            return
        if self._unsynced == 0 and not await self.cache.get_history():
            # Cache miss: seed Redis from the durable copy so the append does not lose history.
            durable = await self.database.get_history()
            if durable:
                await self.cache.replace_history(durable)

        await self.cache.add_messages(messages)
        self._unsynced += len(messages)
        if self._unsynced >= self.sync_interval:
            await self.sync_to_database()

    async def sync_to_database(self) -> None:
        """Write the cached history and metadata to MongoDB, replacing what is stored there."""
        history = await self.cache.get_history()
        await self.database.replace_history(history)
        metadata = await self.cache.get_metadata()
        if metadata:
            await self.database.update_metadata(metadata)
        self._unsynced = 0
        logger.debug(f"Synced {len(history)} message(s) of session {self.session_id} to database")

    async def clear(self) -> None:
        await self.cache.clear()
        await self.database.clear()
        self._unsynced = 0

    async def get_metadata(self) -> dict[str, Any]:
        metadata = await self.cache.get_metadata()
        if metadata:
            return metadata
        return await self.database.get_metadata()

    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        await self.cache.update_metadata(metadata)
        await self.database.update_metadata(metadata)
