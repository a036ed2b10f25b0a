"""Human approval for sensitive tool calls.

Tools created with `needs_approval=True` only run once the run's `ApprovalManager` says so. The
manager either asks a handler function, or parks the request until something outside the run
(a web UI, a chat command) calls `submit_approval()` with the request's token.
"""

from __future__ import annotations

import asyncio
import inspect
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from .exceptions import ApprovalTimeout
from .logger import logger
from .util._types import MaybeAwaitable

DEFAULT_APPROVAL_TIMEOUT = 300.0


@dataclass
class ApprovalResponse:
    approved: bool
    reason: str | None = None


ApprovalHandler = Callable[[str, dict[str, Any]], MaybeAwaitable["ApprovalResponse | bool"]]
"""Receives the tool name and arguments, returns an ApprovalResponse (or a bare bool)."""


@dataclass
class PendingApproval:
    tool_name: str
    args: dict[str, Any]
    approval_token: str
    requested_at: float
    status: Literal["pending", "approved", "rejected", "timeout"] = "pending"
    _waiter: asyncio.Future[ApprovalResponse] | None = field(default=None, repr=False)


class ApprovalManager:
    def __init__(
        self,
        handler: ApprovalHandler | None = None,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT,
    ):
        self.handler = handler
        self.timeout = timeout
        self._pending: dict[str, PendingApproval] = {}

    async def request_approval(self, tool_name: str, args: dict[str, Any]) -> ApprovalResponse:
        """Waits for a decision on one tool call.

        Raises:
            ApprovalTimeout: If no decision arrives within `timeout` seconds.
        """
        pending = PendingApproval(
            tool_name=tool_name,
            args=args,
            approval_token=secrets.token_hex(16),
            requested_at=time.time(),
        )
        self._pending[pending.approval_token] = pending
        logger.debug(f"Approval requested for {tool_name} ({pending.approval_token})")

        try:
            response = await asyncio.wait_for(self._decide(pending), timeout=self.timeout)
        except asyncio.TimeoutError:
            pending.status = "timeout"
            raise ApprovalTimeout(tool_name, self.timeout) from None
        finally:
            self._pending.pop(pending.approval_token, None)

        pending.status = "approved" if response.approved else "rejected"
        return response

    async def _decide(self, pending: PendingApproval) -> ApprovalResponse:
        if self.handler is None:
            pending._waiter = asyncio.get_running_loop().create_future()
            return await pending._waiter

        result = self.handler(pending.tool_name, pending.args)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, bool):
            return ApprovalResponse(approved=result)
        return result

    def get_pending_approval(self, token: str) -> PendingApproval | None:
        return self._pending.get(token)

    def get_pending_approvals(self) -> list[PendingApproval]:
        return [p for p in self._pending.values() if p.status == "pending"]

    def submit_approval(self, token: str, response: ApprovalResponse) -> None:
        """Resolves a parked request. Unknown or already decided tokens are ignored."""
        pending = self._pending.get(token)
        if pending is None or pending.status != "pending":
            return
        if pending._waiter is not None and not pending._waiter.done():
            pending._waiter.set_result(response)

    def clear_expired(self, max_age: float = 600.0) -> None:
        """Stops tracking requests parked for longer than `max_age` seconds. Decided requests are
        dropped as soon as they are decided."""
        now = time.time()
        for token, pending in list(self._pending.items()):
            if now - pending.requested_at > max_age:
                if pending.status == "pending":
                    pending.status = "timeout"
                del self._pending[token]


def auto_approve_handler(tool_name: str, args: dict[str, Any]) -> ApprovalResponse:
    return ApprovalResponse(approved=True)


def auto_reject_handler(tool_name: str, args: dict[str, Any]) -> ApprovalResponse:
    return ApprovalResponse(approved=False, reason="Auto-rejected")
