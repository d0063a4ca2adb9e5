"""Tool execution dispatch."""

import logging
from typing import Any, Dict, Optional

from backend import BackendError
from tools._common import ExecutionContext, ToolResult
from tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


async def dispatch_tool(
    registry: ToolRegistry,
    name: str,
    params: Optional[Dict[str, Any]],
    context: ExecutionContext,
) -> ToolResult:
    """Execute a tool by name with the given params.

    Unknown names and malformed params come back as failed ToolResults.
    BackendError (backend unreachable) propagates to the caller.
    """
    spec = registry.get(name)
    if spec is None:
        logger.warning(f"Unknown tool requested: {name}")
        return ToolResult(success=False, output=f"Unknown tool: {name}", error="Unknown tool")

    try:
        return await spec.handler(dict(params or {}), context)
    except BackendError:
        raise
    except KeyError as e:
        message = f"Invalid arguments for {name}: missing {e}"
        return ToolResult(success=False, output=message, error="Invalid arguments")
    except (TypeError, ValueError) as e:
        message = f"Invalid arguments for {name}: {e}"
        return ToolResult(success=False, output=message, error="Invalid arguments")
