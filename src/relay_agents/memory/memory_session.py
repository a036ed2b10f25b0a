from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING, Any

from .session import SessionABC
from .summarization import SummarizationConfig, compact_messages

if TYPE_CHECKING:
    from ..items import TMessage


class InMemorySession(SessionABC):
    """Process-local session storage. History is lost when the process exits."""

    def __init__(
        self,
        session_id: str,
        max_messages: int | None = None,
        summarization: SummarizationConfig | None = None,
    ):
        self.session_id = session_id
        self.max_messages = max_messages
        self.summarization = summarization
        self._messages: list[TMessage] = []
        self._metadata: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get_history(self) -> list[TMessage]:
        return copy.deepcopy(self._messages)

    async def add_messages(self, messages: list[TMessage]) -> None:
        if not messages:
            return
        async with self._lock:
            combined = [*self._messages, *copy.deepcopy(messages)]
            self._messages = await compact_messages(
                combined, self.summarization, self.max_messages, label="memory"
            )

    async def clear(self) -> None:
        async with self._lock:
            self._messages = []
            self._metadata = {}

    async def get_metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        self._metadata = {**self._metadata, **metadata}
