from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis

from .session import SessionABC
from .summarization import SummarizationConfig, compact_messages

if TYPE_CHECKING:
    from ..items import TMessage

DEFAULT_KEY_PREFIX = "agent:session:"
DEFAULT_TTL = 3600


class RedisSession(SessionABC):
    """Redis-based implementation of session storage.

    The whole history is stored as one JSON list under `<prefix><session_id>:messages` and the
    metadata as a JSON object under `<prefix><session_id>:metadata`. Both keys expire `ttl`
    seconds after the last write.
    """

    def __init__(
        self,
        session_id: str,
        redis_client: redis.Redis,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        ttl: int = DEFAULT_TTL,
        max_messages: int | None = None,
        summarization: SummarizationConfig | None = None,
    ):
        """Initialize the Redis session.

        Args:
            session_id: Unique identifier for the conversation session
            redis_client: An asyncio Redis client. Create it with `decode_responses=True` or
                not; both work.
            key_prefix: Prefix for this session's keys. Defaults to 'agent:session:'
            ttl: Time-to-live for session data in seconds. Defaults to one hour
            max_messages: Keep at most this many messages when not summarizing
            summarization: Summarize old messages once the history grows
        """
        self.session_id = session_id
        self.key_prefix = key_prefix
        self.ttl = ttl
        self.max_messages = max_messages
        self.summarization = summarization

        self.messages_key = f"{key_prefix}{session_id}:messages"
        self.metadata_key = f"{key_prefix}{session_id}:metadata"

        self._redis_client = redis_client

    @classmethod
    def from_url(
        cls,
        session_id: str,
        redis_url: str = "redis://localhost:6379",
        db: int = 0,
        **kwargs: Any,
    ) -> RedisSession:
        client = redis.from_url(
            redis_url,
            db=db,
            decode_responses=True,
            retry_on_error=[redis.BusyLoadingError, redis.ConnectionError],
            retry_on_timeout=True,
        )
        return cls(session_id, client, **kwargs)

    async def _get_json(self, key: str) -> Any:
        raw = await self._redis_client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    async def get_history(self) -> list[TMessage]:
        messages = await self._get_json(self.messages_key)
        return messages if isinstance(messages, list) else []

    async def add_messages(self, messages: list[TMessage]) -> None:
        if not messages:
            return
        existing = await self.get_history()
        combined = await compact_messages(
            [*existing, *messages], self.summarization, self.max_messages, label="redis"
        )
        await self._redis_client.setex(self.messages_key, self.ttl, json.dumps(combined))

    async def replace_history(self, messages: list[TMessage]) -> None:
        """Store `messages` as the full history, without compaction."""
        await self._redis_client.setex(self.messages_key, self.ttl, json.dumps(messages))

    async def clear(self) -> None:
        await self._redis_client.delete(self.messages_key, self.metadata_key)

    async def get_metadata(self) -> dict[str, Any]:
        metadata = await self._get_json(self.metadata_key)
        return metadata if isinstance(metadata, dict) else {}

    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        merged = {**await self.get_metadata(), **metadata}
        await self._redis_client.setex(self.metadata_key, self.ttl, json.dumps(merged))

    async def refresh_ttl(self) -> None:
        """Push back expiry of both keys without writing."""
        await asyncio.gather(
            self._redis_client.expire(self.messages_key, self.ttl),
            self._redis_client.expire(self.metadata_key, self.ttl),
        )

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._redis_client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
