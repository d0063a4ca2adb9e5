"""
Agent package - conversation and tool-call orchestration.

This package contains the orchestrator split into logical modules:
- messages: Message, content blocks and ToolInvocation data types
- history: load-time repair and send-time cleaning of the history
- approval: human approval queue for tool invocations
- loop_guard: repetition guard for identical tool calls
- execution: ToolExecutor running approved invocations
- continuation: scheduler deciding when to go back to the model
- events: AgentEvent data type
- core: ConversationOrchestrator tying it all together
"""

# Core classes and data types
from .core import ConversationOrchestrator
from .events import AgentEvent

from .messages import (
    Message,
    Role,
    TextBlock,
    ToolCallBlock,
    ToolResultBlock,
    RawBlock,
    ToolInvocation,
    ToolStatus,
    extract_text,
    extract_tool_calls,
    has_tool_results,
)
from .history import FALLBACK_PROMPT, repair_history, clean_for_gateway, validate_adjacency
from .approval import ApprovalQueue
from .loop_guard import LoopGuard
from .execution import ToolExecutor
from .continuation import ContinuationScheduler, ConversationState

__all__ = [
    # Orchestrator
    "ConversationOrchestrator",
    "AgentEvent",

    # Content model
    "Message",
    "Role",
    "TextBlock",
    "ToolCallBlock",
    "ToolResultBlock",
    "RawBlock",
    "ToolInvocation",
    "ToolStatus",
    "extract_text",
    "extract_tool_calls",
    "has_tool_results",

    # History
    "FALLBACK_PROMPT",
    "repair_history",
    "clean_for_gateway",
    "validate_adjacency",

    # Components
    "ApprovalQueue",
    "LoopGuard",
    "ToolExecutor",
    "ContinuationScheduler",
    "ConversationState",
]
