"""
Human approval queue for tool invocations.

One invocation is shown at a time (``current``); the rest wait in FIFO order
(``backlog``). With auto-approve on, invocations skip the queue and run
immediately.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from .messages import ToolInvocation, ToolStatus

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[ToolInvocation], Awaitable[Any]]
DeniedFn = Callable[[List[ToolInvocation]], Awaitable[None]]
ReserveFn = Callable[[List[ToolInvocation]], None]


class ApprovalQueue:
    def __init__(
        self,
        execute: ExecuteFn,
        on_denied: DeniedFn,
        auto_approve: bool = False,
        reserve: Optional[ReserveFn] = None,
    ):
        self._execute = execute
        self._on_denied = on_denied
        self._reserve = reserve
        self.auto_approve = auto_approve
        self.current: Optional[ToolInvocation] = None
        self.backlog: Deque[ToolInvocation] = deque()
        self.show_details = True

    # -- helpers ------------------------------------------------------

    def _set_current(self, invocation: Optional[ToolInvocation]) -> None:
        if invocation is not None and invocation is not self.current:
            self.show_details = True
        self.current = invocation

    def _promote(self) -> None:
        """Move the backlog head into the empty ``current`` slot."""
        if self.current is None and self.backlog:
            self._set_current(self.backlog.popleft())

    def _drain(self) -> List[ToolInvocation]:
        batch = ([self.current] if self.current is not None else []) + list(self.backlog)
        self.current = None
        self.backlog.clear()
        return batch

    # -- operations ---------------------------------------------------

    async def enqueue(self, invocation: ToolInvocation) -> None:
        if self.auto_approve:
            logger.info(f"Auto-approving {invocation.name} ({invocation.id})")
            invocation.status = ToolStatus.APPROVED
            await self._execute(invocation)
            return
        if self.current is None:
            self._set_current(invocation)
        else:
            self.backlog.append(invocation)
        logger.info(f"Queued {invocation.name} ({invocation.id}) for approval, {self.pending_count} pending")

    async def approve_current(self) -> None:
        invocation = self.current
        if invocation is None:
            return
        invocation.status = ToolStatus.APPROVED
        self.current = None
        self._promote()
        await self._execute(invocation)

    async def deny_current(self) -> None:
        invocation = self.current
        if invocation is None:
            return
        invocation.status = ToolStatus.DENIED
        self.current = None
        self._promote()
        logger.info(f"Denied {invocation.name} ({invocation.id})")
        await self._on_denied([invocation])

    async def approve_all(self) -> None:
        """Approve everything waiting and run it concurrently.

        The queue is emptied and the whole batch reserved before the first
        await: invocations that arrive while the batch runs are queued for
        approval on their own, and nothing reads the batch as finished until
        its last member has landed.
        """
        batch = self._drain()
        if not batch:
            return
        for invocation in batch:
            invocation.status = ToolStatus.APPROVED
        if self._reserve is not None:
            self._reserve(batch)
        logger.info(f"Approving {len(batch)} tool(s)")
        await asyncio.gather(*(self._execute(inv) for inv in batch))

    async def deny_all(self) -> None:
        batch = self._drain()
        if not batch:
            return
        for invocation in batch:
            invocation.status = ToolStatus.DENIED
        logger.info(f"Denied {len(batch)} tool(s)")
        await self._on_denied(batch)

    def toggle_details(self) -> bool:
        self.show_details = not self.show_details
        return self.show_details

    # -- queries ------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return self.current is None and not self.backlog

    @property
    def pending_count(self) -> int:
        return (1 if self.current is not None else 0) + len(self.backlog)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict() if self.current else None,
            "backlog": [inv.to_dict() for inv in self.backlog],
            "auto_approve": self.auto_approve,
            "show_details": self.show_details,
        }
