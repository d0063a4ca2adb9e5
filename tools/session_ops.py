"""Workspace lifecycle, interactive (PTY) sessions, and the conversational tools."""

import logging
from typing import Any, Dict

from tools._common import ExecutionContext, ToolResult, failure, reports_failures, require_workspace

logger = logging.getLogger(__name__)

DEFAULT_DEV_SERVER_COMMAND = "npm run dev"


def _or_none(value: Any) -> Any:
    return value or "None"


# ------------------------------------------------------------------
# Workspace lifecycle
# ------------------------------------------------------------------

@reports_failures("Error getting workspace status")
async def daytona_get_workspace_status(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    workspace = await context.backend.get_workspace(require_workspace(context))
    return ToolResult(success=True, output=(
        f"Workspace status: {workspace.get('status')}\n"
        f"Sandbox ID: {_or_none(workspace.get('daytona_sandbox_id'))}\n"
        f"Project ID: {workspace.get('project_id')}"
    ))


@reports_failures("Error ensuring workspace is running")
async def ensure_workspace_running(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    """Create, start or recover the project's workspace (waits for it by default)."""
    if not context.project_id:
        return failure("Error ensuring workspace is running: No project ID available", "No project ID available")
    wait_for_ready = params.get("wait_for_ready") is not False
    workspace = await context.backend.ensure_workspace(context.project_id, wait_for_ready=wait_for_ready)
    if not workspace:
        return failure(
            f"Failed to create or start workspace for project {context.project_id}",
            "No workspace available",
        )
    status = workspace.get("status")
    return ToolResult(success=True, output=(
        f"Workspace is {status}.\nStatus: {status}\n"
        f"Sandbox ID: {_or_none(workspace.get('daytona_sandbox_id'))}\n"
        f"Workspace ID: {workspace.get('id')}"
    ))


@reports_failures("Error restarting workspace")
async def restart_workspace(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    workspace = await context.backend.restart_workspace(require_workspace(context))
    return ToolResult(success=True, output=(
        f"Workspace restarted successfully.\nStatus: {workspace.get('status')}\n"
        f"Sandbox ID: {_or_none(workspace.get('daytona_sandbox_id'))}"
    ))


@reports_failures("Error getting preview URL")
async def daytona_get_preview_url(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    response = await context.backend.get_preview_url(require_workspace(context))
    if not response.get("url"):
        return ToolResult(
            success=True,
            output="Preview URL not available. The workspace may not be running "
                   "or may not have a web server started.",
        )
    return ToolResult(success=True, output=f"Preview URL: {response['url']}\nPort: {response.get('port') or 'default'}")


# ------------------------------------------------------------------
# Interactive sessions
# ------------------------------------------------------------------

@reports_failures("Error starting PTY session")
async def start_interactive_session(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    command = params["command"]
    response = await context.backend.start_pty(require_workspace(context), command, cols=120, rows=30)
    return ToolResult(success=True, output=(
        f"Interactive PTY session started successfully.\nSession ID: {response.get('sessionId')}\n"
        f"Command: {command}\n\n"
        "Use send_pty_input to interact with the session, get_pty_status to check status, "
        "or kill_pty_session to stop it."
    ))


@reports_failures("Error sending input to PTY session")
async def send_pty_input(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    session_id = params["sessionId"]
    await context.backend.send_pty_input(require_workspace(context), session_id, params["input"])
    return ToolResult(success=True, output=f"Input sent to PTY session {session_id} successfully.")


@reports_failures("Error getting PTY status")
async def get_pty_status(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    session_id = params["sessionId"]
    status = await context.backend.get_pty_status(require_workspace(context), session_id)
    output = (
        f"PTY Session Status:\nSession ID: {session_id}\n"
        f"Running: {str(bool(status.get('running'))).lower()}\n"
        f"Exit Code: {status.get('exitCode') or 'N/A'}\n"
    )
    if status.get("output"):
        output += f"\nRecent Output:\n{status['output']}"
    return ToolResult(success=True, output=output)


@reports_failures("Error killing PTY session")
async def kill_pty_session(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    session_id = params["sessionId"]
    await context.backend.kill_pty(require_workspace(context), session_id)
    return ToolResult(success=True, output=f"PTY session {session_id} killed successfully.")


@reports_failures("Error listing PTY sessions")
async def list_pty_sessions(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    sessions = await context.backend.list_pty_sessions(require_workspace(context))
    if not sessions:
        return ToolResult(success=True, output="No active PTY sessions.")
    lines = [
        f"- {s.get('sessionId')}: {'RUNNING' if s.get('running') else 'STOPPED'} "
        f"(exit code: {s.get('exitCode') or 'N/A'})"
        for s in sessions
    ]
    return ToolResult(success=True, output="Active PTY Sessions:\n" + "\n".join(lines))


@reports_failures("Error starting dev server")
async def start_dev_server(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    command = params.get("command") or DEFAULT_DEV_SERVER_COMMAND
    response = await context.backend.start_dev_server(require_workspace(context), command)
    return ToolResult(success=True, output=(
        f"{response.get('message')}\nSession ID: {response.get('sessionId')}\n\n"
        "The dev server is now running in the background. Use get_pty_status to check its output, "
        "or daytona_get_preview_url to get the preview URL."
    ))


# ------------------------------------------------------------------
# Conversational (answered locally)
# ------------------------------------------------------------------

async def ask_followup_question(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return ToolResult(success=True, output=params.get("question") or "")


async def attempt_completion(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return ToolResult(success=True, output=params.get("result") or "Task completed")
