"""
Continuation scheduler: decides when the conversation goes back to the model
on its own, after the tool results of a turn have arrived.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Collection, Optional, Sequence

from .approval import ApprovalQueue
from .messages import Message, Role, has_tool_results, is_error_notice

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_ASSISTANT = "awaiting_assistant"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING_TOOLS = "executing_tools"
    PAUSED = "paused"


class ContinuationScheduler:
    """Issues at most one continuation per tool-result message.

    ``resume`` is the coroutine making the next gateway call. The scheduler is
    evaluated after every history change; it resumes only when the turn's tool
    activity has fully drained (nothing in flight, nothing awaiting approval).
    """

    def __init__(self, resume: Callable[[], Awaitable[None]]):
        self._resume = resume
        self.last_processed_id: Optional[str] = None
        self.processing = False
        self.paused = False

    def should_resume(
        self,
        history: Sequence[Message],
        pending: Collection[str],
        queue: ApprovalQueue,
    ) -> bool:
        if self.processing or self.paused or not history:
            return False
        last = history[-1]
        if last.role != Role.USER or not has_tool_results(last):
            return False
        if last.id == self.last_processed_id:
            return False
        if pending or not queue.is_empty:
            return False
        # Don't continue past an error the user has not seen yet
        if self._after_error_notice(history):
            return False
        return True

    @staticmethod
    def _after_error_notice(history: Sequence[Message]) -> bool:
        """The latest message is an error notice, or a tool result landing right after one."""
        if not history:
            return False
        if is_error_notice(history[-1]):
            return True
        return has_tool_results(history[-1]) and len(history) >= 2 and is_error_notice(history[-2])

    async def maybe_resume(
        self,
        history: Sequence[Message],
        pending: Collection[str],
        queue: ApprovalQueue,
    ) -> bool:
        """Resume if due; re-check after each call for results that landed meanwhile."""
        if self.processing:
            return False
        resumed = False
        while self.should_resume(history, pending, queue):
            self.last_processed_id = history[-1].id
            logger.info(f"Continuing conversation after tool results in {self.last_processed_id}")
            self.processing = True
            try:
                await self._resume()
            finally:
                self.processing = False
            resumed = True
        return resumed

    def pause(self) -> None:
        self.paused = True

    def clear_pause(self) -> None:
        self.paused = False

    def state(
        self,
        history: Sequence[Message],
        pending: Collection[str],
        queue: ApprovalQueue,
        in_flight: bool = False,
    ) -> ConversationState:
        if self.paused:
            return ConversationState.PAUSED
        if in_flight or self.processing:
            return ConversationState.AWAITING_ASSISTANT
        if pending:
            return ConversationState.EXECUTING_TOOLS
        if not queue.is_empty:
            return ConversationState.AWAITING_APPROVAL
        if self._after_error_notice(history):
            return ConversationState.PAUSED
        return ConversationState.IDLE
