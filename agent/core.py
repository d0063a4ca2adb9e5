"""
ConversationOrchestrator: owns one conversation and drives it between the
LLM gateway and the execution backend.

Flow:
1. User sends a message
2. Cleaned history goes to the gateway with the registry's tool definitions
3. A response with a tool call is stored whole; its first call becomes a
   ToolInvocation queued for approval (or run at once with auto-approve)
4. Approved invocations run through the ToolExecutor; each result is
   appended as a user message
5. Once nothing is in flight or awaiting approval, the scheduler sends the
   results back to the gateway, and the loop repeats until a text answer
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backend import Backend
from gateway import GatewayError, GatewayRequest, GatewayResponse, LLMGateway
from sessions import SessionStore
from tools import ExecutionContext, ToolRegistry, build_default_registry

from . import events
from .approval import ApprovalQueue
from .continuation import ContinuationScheduler, ConversationState
from .events import AgentEvent
from .execution import ToolExecutor
from .history import clean_for_gateway, repair_history, validate_adjacency
from .loop_guard import LoopGuard
from .messages import (
    Message,
    Role,
    ToolInvocation,
    ToolResultBlock,
    ToolStatus,
    content_from_wire,
    content_to_wire,
    extract_text,
    extract_tool_calls,
    has_tool_results,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentEvent], Awaitable[None]]

DEFAULT_SESSION_TITLE = "Agent Chat"
_UNFINISHED = (ToolStatus.PENDING, ToolStatus.APPROVED, ToolStatus.EXECUTING)


def denial_note(count: int) -> str:
    if count == 1:
        return "Tool use denied. How else can I help you?"
    return f"Denied {count} tool(s). How else can I help you?"


class ConversationOrchestrator:
    """One conversation: history, approval queue, executor and continuation."""

    def __init__(
        self,
        gateway: LLMGateway,
        backend: Backend,
        *,
        registry: Optional[ToolRegistry] = None,
        context: Optional[ExecutionContext] = None,
        session_store: Optional[SessionStore] = None,
        session_id: Optional[str] = None,
        conversation_id: str = "",
        auto_approve: bool = False,
        loop_guard: Optional[LoopGuard] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.gateway = gateway
        self.backend = backend
        self.registry = registry or build_default_registry()
        self.context = context or ExecutionContext(project_id=conversation_id, backend=backend)
        self.conversation_id = conversation_id or self.context.project_id
        self.session_store = session_store
        self.session_id = session_id
        self.on_event = on_event

        self.history: List[Message] = []
        self.invocations: Dict[str, ToolInvocation] = {}
        self.executor = ToolExecutor(
            self.registry,
            self.context,
            self._append,
            loop_guard=loop_guard,
            on_status=self._on_tool_status,
        )
        self.queue = ApprovalQueue(
            self._execute,
            self._on_denied,
            auto_approve=auto_approve,
            reserve=self.executor.reserve,
        )
        self.scheduler = ContinuationScheduler(self._call_gateway)
        self._in_flight = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_history(self, raw_messages: List[Dict[str, Any]]) -> List[Message]:
        """Replace the history with stored messages, repaired."""
        parsed: List[Message] = []
        for raw in raw_messages:
            try:
                parsed.append(Message.from_dict(raw))
            except ValueError as e:
                logger.warning(f"Skipping stored message with unknown role {raw.get('role')!r}: {e}")

        self.history = repair_history(parsed)
        self.invocations = {}
        results: Dict[str, ToolResultBlock] = {
            block.tool_call_id: block
            for msg in self.history
            for block in msg.blocks
            if isinstance(block, ToolResultBlock)
        }
        for msg in self.history:
            invocation = msg.tool_invocation
            if invocation is None:
                continue
            result = results.get(invocation.id)
            if result is not None and invocation.status in _UNFINISHED:
                # The store is append-only: metadata still holds the status from before execution
                invocation.status = ToolStatus.ERROR if result.is_error else ToolStatus.COMPLETED
            self.invocations[invocation.id] = invocation

        # A restored conversation does not resume on its own
        if self.history and has_tool_results(self.history[-1]):
            self.scheduler.last_processed_id = self.history[-1].id

        logger.info(f"Loaded {len(self.history)} messages ({len(raw_messages)} stored)")
        await self._emit(AgentEvent(type=events.STATE, content=self.state.value))
        return self.history

    async def open_session(self, project_id: str) -> str:
        """Resume the project's most recent session, or start a new one."""
        if self.session_store is None:
            raise RuntimeError("No session store configured")
        sessions = await self.session_store.list_sessions(project_id)
        if sessions:
            session_id = sessions[0]["id"]
            logger.info(f"Resuming session {session_id} for project {project_id}")
        else:
            created = await self.session_store.create_session(project_id, DEFAULT_SESSION_TITLE)
            session_id = created["id"]
            logger.info(f"Created session {session_id} for project {project_id}")
        self.session_id = session_id
        await self.load_history(await self.session_store.get_messages(session_id))
        return session_id

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> bool:
        """Append a user message and ask the model. False if rejected."""
        if not text or not text.strip():
            return False
        if self._in_flight:
            logger.warning("Message rejected: a gateway call is already in flight")
            return False
        self.scheduler.clear_pause()
        await self._append(Message(role=Role.USER, content=text.strip()))
        await self._call_gateway()
        return True

    async def approve_current(self) -> None:
        await self.queue.approve_current()
        await self._emit_approval()

    async def deny_current(self) -> None:
        await self.queue.deny_current()
        await self._emit_approval()

    async def approve_all(self) -> None:
        await self.queue.approve_all()
        await self._emit_approval()

    async def deny_all(self) -> None:
        await self.queue.deny_all()
        await self._emit_approval()

    async def set_auto_approve(self, enabled: bool) -> None:
        """Affects invocations enqueued from now on; queued ones still need a decision."""
        self.queue.auto_approve = enabled
        logger.info(f"Auto-approve {'enabled' if enabled else 'disabled'}")
        await self._emit_approval()

    async def toggle_details(self) -> bool:
        shown = self.queue.toggle_details()
        await self._emit_approval()
        return shown

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConversationState:
        return self.scheduler.state(self.history, self.executor.pending, self.queue, in_flight=self._in_flight)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "session_id": self.session_id,
            "state": self.state.value,
            "messages": [m.to_dict() for m in self.history],
            "approval": self.queue.snapshot(),
            "pending": sorted(self.executor.pending),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _emit(self, event: AgentEvent) -> None:
        if self.on_event:
            await self.on_event(event)

    async def _emit_approval(self) -> None:
        await self._emit(AgentEvent(type=events.APPROVAL, data=self.queue.snapshot()))

    async def _persist(self, message: Message) -> None:
        if self.session_store is None or not self.session_id:
            return
        content = message.content if isinstance(message.content, str) else json.dumps(content_to_wire(message.content))
        metadata = {"toolUse": message.tool_invocation.to_dict()} if message.tool_invocation else None
        try:
            await self.session_store.append_message(self.session_id, message.role.value, content, metadata)
        except Exception as e:
            logger.warning(f"Failed to save message {message.id}: {e}")

    async def _evaluate(self) -> None:
        await self.scheduler.maybe_resume(self.history, self.executor.pending, self.queue)

    async def _append(self, message: Message) -> None:
        self.history.append(message)
        await self._persist(message)
        await self._emit(AgentEvent(type=events.MESSAGE, data=message.to_dict()))
        await self._evaluate()

    async def _execute(self, invocation: ToolInvocation) -> None:
        await self.executor.execute(invocation)
        # The id leaves the pending set only after the result was appended
        await self._evaluate()

    async def _on_tool_status(self, invocation: ToolInvocation) -> None:
        await self._emit(AgentEvent(
            type=events.TOOL_STATUS,
            content=invocation.status.value,
            data=invocation.to_dict(),
        ))

    async def _on_denied(self, denied: List[ToolInvocation]) -> None:
        for invocation in denied:
            await self._on_tool_status(invocation)
        await self._append(Message(role=Role.ASSISTANT, content=denial_note(len(denied))))

    async def _fail(self, error: Exception) -> None:
        self.scheduler.pause()
        await self._append(Message(role=Role.ASSISTANT, content=f"Error: {error}"))
        await self._emit(AgentEvent(type=events.ERROR, content=str(error)))

    async def _call_gateway(self) -> None:
        messages = clean_for_gateway(self.history)
        if logger.isEnabledFor(logging.DEBUG):
            for problem in validate_adjacency(messages):
                logger.debug(f"[Gateway] adjacency: {problem}")
        request = GatewayRequest(
            conversation_id=self.conversation_id,
            messages=messages,
            tools=self.registry.definitions(),
        )

        self._in_flight = True
        await self._emit(AgentEvent(type=events.STATE, content=self.state.value))
        try:
            response = await self.gateway.chat(request)
        except GatewayError as e:
            self._in_flight = False
            logger.error(f"Gateway call failed: {e}")
            await self._fail(e)
            return
        except Exception as e:
            self._in_flight = False
            logger.exception("Unexpected error during gateway call")
            await self._fail(e)
            return
        self._in_flight = False
        await self._handle_response(response)

    async def _handle_response(self, response: GatewayResponse) -> None:
        content = content_from_wire(response.content)
        message = Message(role=Role.ASSISTANT, content=content)
        calls = extract_tool_calls(message)

        if not calls:
            text = extract_text(content)
            if not text.strip():
                logger.warning("Gateway returned neither text nor tool calls")
                await self._emit(AgentEvent(type=events.STATE, content=self.state.value))
                return
            await self._append(Message(role=Role.ASSISTANT, content=text))
            return

        if len(calls) > 1:
            logger.warning(
                f"Response has {len(calls)} tool calls; running {calls[0].name} only, "
                f"the rest are left unanswered"
            )
        invocation = ToolInvocation.from_call(calls[0])
        self.invocations[invocation.id] = invocation
        # Full content is kept so the tool_use block stays in the history
        message.tool_invocation = invocation
        await self._append(message)
        await self.queue.enqueue(invocation)
        await self._emit_approval()
        await self._evaluate()
