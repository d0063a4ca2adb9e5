"""
Tool execution: loop guard, dispatch, and recording the outcome in the history.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional, Set

from tools import ExecutionContext, ToolRegistry, dispatch_tool

from .loop_guard import LoopGuard
from .messages import Message, Role, ToolInvocation, ToolResultBlock, ToolStatus

logger = logging.getLogger(__name__)

AppendFn = Callable[[Message], Awaitable[None]]
StatusFn = Callable[[ToolInvocation], Awaitable[None]]


def loop_warning(name: str, count: int) -> str:
    return (
        f'Loop detected: "{name}" was requested {count} times with same parameters. '
        "Stopping execution to prevent infinite loop."
    )


class ToolExecutor:
    """Runs approved invocations against the backend, one result message each.

    ``pending`` holds the ids currently in flight; an id leaves it only after
    the outcome has been appended to the history.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        context: ExecutionContext,
        append_message: AppendFn,
        loop_guard: Optional[LoopGuard] = None,
        on_status: Optional[StatusFn] = None,
    ):
        self.registry = registry
        self.context = context
        self.loop_guard = loop_guard if loop_guard is not None else LoopGuard()
        self.pending: Set[str] = set()
        self._append = append_message
        self._on_status = on_status

    async def _set_status(self, invocation: ToolInvocation, status: ToolStatus) -> None:
        invocation.status = status
        if self._on_status:
            await self._on_status(invocation)

    def reserve(self, invocations: Iterable[ToolInvocation]) -> None:
        """Mark a batch as in flight before any member starts running."""
        for invocation in invocations:
            self.pending.add(invocation.id)

    async def execute(self, invocation: ToolInvocation) -> ToolStatus:
        """Run one invocation. Never raises; the outcome lands in the history."""
        name, params = invocation.name, invocation.params

        self.pending.add(invocation.id)
        try:
            if self.loop_guard.is_tripped(name, params):
                count = self.loop_guard.count(name, params)
                logger.error(f"Loop detected: {name} requested {count} times with same params, not executing")
                await self._set_status(invocation, ToolStatus.ERROR)
                await self._append(Message(role=Role.ASSISTANT, content=loop_warning(name, count)))
                return invocation.status

            count = self.loop_guard.record(name, params)
            logger.info(f"Executing {name} ({invocation.id}), run {count} within window")

            await self._set_status(invocation, ToolStatus.EXECUTING)
            try:
                result = await dispatch_tool(self.registry, name, params, self.context)
            except Exception as e:
                logger.error(f"Tool execution failed: {name} ({invocation.id}): {e}")
                await self._set_status(invocation, ToolStatus.ERROR)
                await self._append(Message(role=Role.ASSISTANT, content=f"Error: Tool execution failed: {e}"))
                return invocation.status

            if not result.success:
                logger.warning(f"{name} ({invocation.id}) reported failure: {result.error}")
            await self._set_status(invocation, ToolStatus.COMPLETED if result.success else ToolStatus.ERROR)
            await self._append(Message(
                role=Role.USER,
                content=[ToolResultBlock(
                    tool_call_id=invocation.id,
                    content=result.output or result.error or "",
                    is_error=not result.success,
                )],
            ))
            return invocation.status
        finally:
            self.pending.discard(invocation.id)
