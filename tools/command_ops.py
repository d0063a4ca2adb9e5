"""Command tools: one-shot shell commands and code snippets inside the workspace."""

import logging
import shlex
from typing import Any, Dict

from tools._common import ExecutionContext, ToolResult, reports_failures, require_workspace

logger = logging.getLogger(__name__)


@reports_failures("Error executing command")
async def execute_command(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    workspace_id = require_workspace(context)
    command = params["command"]
    if params.get("cwd"):
        command = f"cd {shlex.quote(params['cwd'])} && {command}"
    result = await context.backend.exec_command(workspace_id, command)
    output = "\n".join(part for part in (result.stdout, result.stderr) if part)
    return ToolResult(
        success=True,
        output=f"Command executed in workspace.\nExit code: {result.exit_code}\nOutput:\n{output}",
    )


@reports_failures("Error executing Daytona command")
async def daytona_execute_command(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    """Like execute_command, but reports stdout and stderr separately."""
    workspace_id = require_workspace(context)
    result = await context.backend.exec_command(workspace_id, params["command"])

    parts = [f"Command executed in Daytona sandbox.\nExit code: {result.exit_code}\n"]
    if result.stdout:
        parts.append(f"Stdout:\n{result.stdout}")
    if result.stderr:
        parts.append(f"\nStderr:\n{result.stderr}")
    if not result.stdout and not result.stderr:
        if result.exit_code == 0:
            logger.warning("Command succeeded but returned no output")
        parts.append("\n(No output)")
    return ToolResult(success=True, output="".join(parts))


@reports_failures("Error running code")
async def daytona_run_code(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    workspace_id = require_workspace(context)
    language = params.get("language") or "python"
    response = await context.backend.run_code(
        workspace_id,
        params["code"],
        language=language,
        argv=params.get("argv"),
        env=params.get("env"),
    )

    result = response.get("result")
    artifacts = response.get("artifacts") or {}
    output = f"Code executed successfully.\nExit code: {response.get('exitCode')}\n"
    if result:
        output += f"\nOutput:\n{result}"

    charts = artifacts.get("charts") or []
    if charts:
        output += f"\n\nGenerated {len(charts)} chart(s)"
        for idx, chart in enumerate(charts, 1):
            output += f"\n  - Chart {idx}: {chart.get('title') or 'Untitled'}"

    extra_stdout = artifacts.get("stdout")
    if extra_stdout and extra_stdout != result:
        output += f"\n\nAdditional stdout:\n{extra_stdout}"
    return ToolResult(success=True, output=output)
