"""Shared types for the tools package."""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from backend import Backend, BackendError

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None


@dataclass
class ExecutionContext:
    """Where a tool runs: the project, its sandbox workspace, and the backend serving both."""
    project_id: str
    backend: Backend
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[ToolResult]]


class MissingWorkspace(Exception):
    """Raised by handlers that need a workspace when the context has none."""


def require_workspace(context: ExecutionContext) -> str:
    if not context.workspace_id:
        raise MissingWorkspace("No workspace ID available")
    return context.workspace_id


def failure(output: str, error: str) -> ToolResult:
    return ToolResult(success=False, output=output, error=error)


def reports_failures(prefix: str) -> Callable[[ToolHandler], ToolHandler]:
    """Turn answered backend errors into tool-level failures: ``"<prefix>: <message>"``.

    Errors without a status (backend unreachable) propagate to the executor.
    """
    def decorate(handler: ToolHandler) -> ToolHandler:
        @functools.wraps(handler)
        async def wrapper(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
            try:
                return await handler(params, context)
            except MissingWorkspace as e:
                return failure(f"{prefix}: {e}", str(e))
            except BackendError as e:
                if e.status is None:
                    raise
                logger.warning(f"{handler.__name__} failed ({e.status}): {e}")
                return failure(f"{prefix}: {e}", str(e))
        return wrapper
    return decorate
