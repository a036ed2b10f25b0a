from __future__ import annotations

from typing import Any, Literal

from pydantic import ConfigDict, Field
from pydantic.dataclasses import dataclass
from pymongo.asynchronous.database import AsyncDatabase
from redis.asyncio import Redis

from ..exceptions import UserError
from ..logger import logger
from .hybrid_session import DEFAULT_SYNC_INTERVAL, HybridSession
from .memory_session import InMemorySession
from .mongodb_session import DEFAULT_COLLECTION, MongoDBSession
from .redis_session import DEFAULT_KEY_PREFIX, DEFAULT_TTL, RedisSession
from .session import SessionABC
from .summarization import SummarizationConfig

SessionType = Literal["memory", "redis", "database", "hybrid"]


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class SessionManagerConfig:
    """Which backend `SessionManager` builds sessions on, and how."""

    type: SessionType = "memory"

    redis: Redis | None = None
    """Asyncio Redis client. Required for the `redis` and `hybrid` types."""

    db: AsyncDatabase | None = None
    """pymongo async database. Required for the `database` and `hybrid` types."""

    key_prefix: str = DEFAULT_KEY_PREFIX
    ttl: int = DEFAULT_TTL
    collection_name: str = DEFAULT_COLLECTION
    max_messages: int | None = None
    sync_interval: int = Field(default=DEFAULT_SYNC_INTERVAL, ge=1)
    summarization: SummarizationConfig | None = None


class SessionManager:
    """Builds sessions from a config and caches them by id."""

    def __init__(self, config: SessionManagerConfig | None = None):
        self.config = config or SessionManagerConfig()
        self._sessions: dict[str, SessionABC] = {}

    def get_session(self, session_id: str) -> SessionABC:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._create_session(session_id)
            self._sessions[session_id] = session
        return session

    async def delete_session(self, session_id: str) -> None:
        """Clear a session's stored data and drop it from the cache."""
        session = self.get_session(session_id)
        await session.clear()
        self._sessions.pop(session_id, None)

    def active_sessions(self) -> list[str]:
        return list(self._sessions)

    def _redis_session(self, session_id: str, summarize: bool = True) -> RedisSession:
        if self.config.redis is None:
            raise UserError(f"Session type {self.config.type!r} requires a Redis client")
        return RedisSession(
            session_id,
            self.config.redis,
            key_prefix=self.config.key_prefix,
            ttl=self.config.ttl,
            max_messages=self.config.max_messages,
            summarization=self.config.summarization if summarize else None,
        )

    def _database_session(self, session_id: str, summarize: bool = True) -> MongoDBSession:
        if self.config.db is None:
            raise UserError(f"Session type {self.config.type!r} requires a database")
        return MongoDBSession(
            session_id,
            self.config.db,
            collection_name=self.config.collection_name,
            max_messages=self.config.max_messages,
            summarization=self.config.summarization if summarize else None,
        )

    def _create_session(self, session_id: str) -> SessionABC:
        logger.debug(f"Creating {self.config.type} session {session_id}")
        kind = self.config.type
        if kind == "memory":
            return InMemorySession(
                session_id,
                max_messages=self.config.max_messages,
                summarization=self.config.summarization,
            )
        if kind == "redis":
            return self._redis_session(session_id)
        if kind == "database":
            return self._database_session(session_id)
        if kind == "hybrid":
            # The durable copy mirrors the cache, so only the cache compacts.
            return HybridSession(
                session_id,
                cache=self._redis_session(session_id),
                database=self._database_session(session_id, summarize=False),
                sync_interval=self.config.sync_interval,
            )
        raise UserError(f"Unknown session type: {kind!r}")


def create_session(session_id: str, **config: Any) -> SessionABC:
    """Shorthand for `SessionManager(SessionManagerConfig(**config)).get_session(session_id)`."""
    return SessionManager(SessionManagerConfig(**config)).get_session(session_id)
