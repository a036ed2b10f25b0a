from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..items import TMessage


@runtime_checkable
class Session(Protocol):
    """Protocol for session implementations.

    Session stores conversation history for a specific session, allowing
    agents to maintain context without requiring explicit manual memory management.
    """

    session_id: str

    async def get_history(self) -> list[TMessage]:
        """Retrieve the conversation history for this session, oldest first."""
        ...

    async def add_messages(self, messages: list[TMessage]) -> None:
        """Append messages to the conversation history. Implementations may compact the stored
        history afterwards (summarization or a sliding window).

        Args:
            messages: List of messages to add to the history
        """
        ...

    async def clear(self) -> None:
        """Clear all messages and metadata for this session."""
        ...

    async def get_metadata(self) -> dict[str, Any]:
        """Return the session's metadata, or an empty dict."""
        ...

    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        """Merge `metadata` into the session's metadata."""
        ...


class SessionABC(ABC):
    """Abstract base class for session implementations.

    Session stores conversation history for a specific session, allowing
    agents to maintain context without requiring explicit manual memory management.

    This ABC is intended for internal use and as a base class for concrete implementations.
    Third-party libraries should implement the Session protocol instead.
    """

    session_id: str

    @abstractmethod
    async def get_history(self) -> list[TMessage]:
        """Retrieve the conversation history for this session, oldest first."""
        ...

    @abstractmethod
    async def add_messages(self, messages: list[TMessage]) -> None:
        """Append messages to the conversation history.

        Args:
            messages: List of messages to add to the history
        """
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Clear all messages and metadata for this session."""
        ...

    @abstractmethod
    async def get_metadata(self) -> dict[str, Any]:
        """Return the session's metadata, or an empty dict."""
        ...

    @abstractmethod
    async def update_metadata(self, metadata: dict[str, Any]) -> None:
        """Merge `metadata` into the session's metadata."""
        ...
