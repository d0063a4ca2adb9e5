"""
Tool definitions and implementations for the coding agent.
Each tool has an Anthropic-compatible schema and an async handler.
Handlers reach the sandbox through the Backend carried by their ExecutionContext.
"""

from tools._common import ExecutionContext, ToolHandler, ToolResult  # noqa: F401
from tools.registry import ToolRegistry, ToolSpec  # noqa: F401
from tools.schemas import CONVERSATIONAL_TOOLS, DEFAULT_TOOL_SPECS  # noqa: F401
from tools.dispatch import dispatch_tool  # noqa: F401


def build_default_registry() -> ToolRegistry:
    """Fresh registry holding every built-in tool."""
    return ToolRegistry(list(DEFAULT_TOOL_SPECS))
