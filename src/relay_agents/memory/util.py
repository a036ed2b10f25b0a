from __future__ import annotations

from typing import Callable

from ..items import TMessage
from ..util._types import MaybeAwaitable

SessionInputCallback = Callable[
    [list[TMessage], list[TMessage]],
    MaybeAwaitable[list[TMessage]],
]
"""A function that combines session history with the new input of a run.

Args:
    history: The messages stored in the session, oldest first.
    new_messages: The messages the run was started with.

Returns:
    The transcript the run starts from. Can be sync or async.
"""
