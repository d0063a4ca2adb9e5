"""File operation tools: project VFS reads/writes and their sandbox-shell twins."""

import logging
import shlex
from typing import Any, Dict, Optional

from backend import BackendError
from tools._common import (
    ExecutionContext,
    MissingWorkspace,
    ToolResult,
    failure,
    reports_failures,
    require_workspace,
)

logger = logging.getLogger(__name__)


def _require_path(params: Dict[str, Any], name: str = "path") -> Optional[ToolResult]:
    """Return an error ToolResult if the path param is empty/whitespace; else None."""
    if not str(params.get(name) or "").strip():
        return failure(f"Error: {name} is required", f"{name} is required")
    return None


def _file_block(path: str, body: str, tag: str = "content") -> str:
    if tag == "error":
        return f"<file>\n<path>{path}</path>\n<error>{body}</error>\n</file>"
    return f"<file>\n<path>{path}</path>\n<content>\n{body}\n</content>\n</file>"


def number_lines(content: str, line_range: Optional[Dict[str, Any]] = None) -> str:
    """Tab-separated 1-based line numbers; ``line_range`` is inclusive ``{start, end}``."""
    lines = content.split("\n")
    if line_range:
        start = max(int(line_range.get("start") or 1), 1)
        end = line_range.get("end")
        selected = lines[start - 1:int(end) if end is not None else None]
        return "\n".join(f"{start + i}\t{line}" for i, line in enumerate(selected))
    return "\n".join(f"{i + 1}\t{line}" for i, line in enumerate(lines))


# ------------------------------------------------------------------
# Project files (VFS)
# ------------------------------------------------------------------

async def read_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    """Read a project file, line-numbered, optionally limited to ``line_range``."""
    err = _require_path(params)
    if err:
        return err
    path = params["path"]
    try:
        content = await context.backend.read_file(context.project_id, path)
    except BackendError as e:
        if e.status is None:
            raise
        return failure(_file_block(path, str(e), tag="error"), str(e))
    return ToolResult(success=True, output=_file_block(path, number_lines(content, params.get("line_range"))))


@reports_failures("Error writing file")
async def write_to_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    err = _require_path(params)
    if err:
        return err
    path, content = params["path"], params.get("content") or ""
    await context.backend.write_file(context.project_id, path, content)
    line_count = len(content.split("\n"))
    return ToolResult(success=True, output=f"Successfully wrote {line_count} lines to {path}")


@reports_failures("Error listing files")
async def list_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    path = params.get("path") or "/"
    entries = await context.backend.list_directory(context.project_id, path)
    listing = "\n".join(
        f"{'[DIR]' if entry.get('type') == 'dir' else '[FILE]'} {entry.get('path', '')}" for entry in entries
    )
    return ToolResult(success=True, output=f"Files in {path}:\n{listing}")


@reports_failures("Error searching files")
async def search_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    pattern = params["pattern"]
    matches = await context.backend.search_files(context.project_id, pattern, params.get("path") or "/")
    lines = "\n".join(f"{m.get('path')}:{m.get('line')}:{m.get('content')}" for m in matches)
    return ToolResult(success=True, output=f'Search results for "{pattern}":\n{lines or "No matches found"}')


# ------------------------------------------------------------------
# Sandbox filesystem (through the workspace shell)
# ------------------------------------------------------------------

async def daytona_read_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    err = _require_path(params)
    if err:
        return err
    path = params["path"]
    try:
        workspace_id = require_workspace(context)
        result = await context.backend.exec_command(workspace_id, f"cat {shlex.quote(path)}")
        if result.exit_code != 0:
            raise BackendError(result.stderr or "Failed to read file", status=result.exit_code)
    except (MissingWorkspace, BackendError) as e:
        if isinstance(e, BackendError) and e.status is None:
            raise
        return failure(_file_block(path, str(e), tag="error"), str(e))
    return ToolResult(success=True, output=_file_block(path, result.stdout))


@reports_failures("Error writing file to Daytona sandbox")
async def daytona_write_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    err = _require_path(params)
    if err:
        return err
    workspace_id = require_workspace(context)
    path, content = params["path"], params.get("content") or ""
    command = f"printf '%s' {shlex.quote(content)} > {shlex.quote(path)}"
    result = await context.backend.exec_command(workspace_id, command)
    if result.exit_code != 0:
        raise BackendError(result.stderr or "Failed to write file", status=result.exit_code)
    return ToolResult(success=True, output=f"Successfully wrote file to {path} in Daytona sandbox")


@reports_failures("Error listing files in Daytona sandbox")
async def daytona_list_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    workspace_id = require_workspace(context)
    path = params.get("path") or "."
    result = await context.backend.exec_command(workspace_id, f"ls -la {shlex.quote(path)}")
    if result.exit_code != 0:
        raise BackendError(result.stderr or "Failed to list files", status=result.exit_code)
    return ToolResult(success=True, output=f"Files in {path}:\n{result.stdout}")
