"""Tool schema definitions (Anthropic Messages API) and the default registry entries."""

from typing import Any, Dict, List, Optional

from tools.command_ops import daytona_execute_command, daytona_run_code, execute_command
from tools.file_ops import (
    daytona_list_files,
    daytona_read_file,
    daytona_write_file,
    list_files,
    read_file,
    search_files,
    write_to_file,
)
from tools.registry import ToolSpec
from tools.session_ops import (
    ask_followup_question,
    attempt_completion,
    daytona_get_preview_url,
    daytona_get_workspace_status,
    ensure_workspace_running,
    get_pty_status,
    kill_pty_session,
    list_pty_sessions,
    restart_workspace,
    send_pty_input,
    start_dev_server,
    start_interactive_session,
)


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _str(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


_SESSION_ID = _str("The PTY session ID returned from start_interactive_session")

# Tools answered without touching the backend; everything else is a sandbox operation.
CONVERSATIONAL_TOOLS = frozenset({"ask_followup_question", "attempt_completion"})

DEFAULT_TOOL_SPECS: List[ToolSpec] = [
    # -- project files ------------------------------------------------
    ToolSpec(
        name="read_file",
        description="Read the contents of a file from the project workspace. Output is line-numbered.",
        handler=read_file,
        input_schema=_schema({
            "path": _str("The relative path to the file within the project workspace"),
            "line_range": {
                "type": "object",
                "description": "Optional: Read only specific lines",
                "properties": {"start": {"type": "number"}, "end": {"type": "number"}},
            },
        }, ["path"]),
    ),
    ToolSpec(
        name="write_to_file",
        description="Create a new file or overwrite an existing file with new content. "
                    "Always provide the complete file content.",
        handler=write_to_file,
        input_schema=_schema({
            "path": _str("The relative path where the file should be created/updated"),
            "content": _str("The complete content to write to the file"),
            "line_count": {"type": "number", "description": "The number of lines in the content (for validation)"},
        }, ["path", "content"]),
    ),
    ToolSpec(
        name="list_files",
        description="List files and directories in the project workspace",
        handler=list_files,
        input_schema=_schema({
            "path": _str("Optional: Directory path to list (defaults to root)"),
            "recursive": {"type": "boolean", "description": "Whether to list files recursively"},
        }),
    ),
    ToolSpec(
        name="search_files",
        description="Search file contents in the project workspace for a pattern",
        handler=search_files,
        input_schema=_schema({
            "pattern": _str("Search pattern"),
            "path": _str("Optional: Directory to search in"),
        }, ["pattern"]),
    ),
    # -- commands -----------------------------------------------------
    ToolSpec(
        name="execute_command",
        description="Execute a shell command in the project workspace terminal. "
                    "Use this for running builds, tests, installing packages, etc.",
        handler=execute_command,
        input_schema=_schema({
            "command": _str("The shell command to execute"),
            "cwd": _str("Optional: Working directory (relative to project root)"),
        }, ["command"]),
    ),
    ToolSpec(
        name="daytona_execute_command",
        description="Execute a shell command in the sandbox. Returns stdout, stderr, and exit code.",
        handler=daytona_execute_command,
        input_schema=_schema({"command": _str("The shell command to execute in the sandbox")}, ["command"]),
    ),
    ToolSpec(
        name="daytona_run_code",
        description="Execute a Python, TypeScript, or JavaScript snippet in the sandbox with "
                    "artifact capture (charts, tables, outputs).",
        handler=daytona_run_code,
        input_schema=_schema({
            "code": _str("The code to execute"),
            "language": {
                "type": "string",
                "enum": ["python", "typescript", "javascript"],
                "description": "The programming language (defaults to python)",
            },
            "argv": {"type": "array", "items": {"type": "string"},
                     "description": "Optional: Command-line arguments to pass to the code"},
            "env": {"type": "object", "additionalProperties": {"type": "string"},
                    "description": "Optional: Environment variables for the code execution"},
        }, ["code"]),
    ),
    # -- sandbox files ------------------------------------------------
    ToolSpec(
        name="daytona_read_file",
        description="Read a file from the sandbox filesystem.",
        handler=daytona_read_file,
        input_schema=_schema({"path": _str("The absolute path to the file in the sandbox")}, ["path"]),
    ),
    ToolSpec(
        name="daytona_write_file",
        description="Write a file to the sandbox filesystem.",
        handler=daytona_write_file,
        input_schema=_schema({
            "path": _str("The absolute path where the file should be created in the sandbox"),
            "content": _str("The content to write to the file"),
        }, ["path", "content"]),
    ),
    ToolSpec(
        name="daytona_list_files",
        description="List files and directories in the sandbox filesystem.",
        handler=daytona_list_files,
        input_schema=_schema({"path": _str("The directory path to list in the sandbox")}, ["path"]),
    ),
    # -- workspace lifecycle -----------------------------------------
    ToolSpec(
        name="daytona_get_workspace_status",
        description="Get the status of the workspace (running, stopped, error, etc.).",
        handler=daytona_get_workspace_status,
    ),
    ToolSpec(
        name="ensure_workspace_running",
        description="Ensure the workspace is running. Starts stopped workspaces and recovers errored ones.",
        handler=ensure_workspace_running,
        input_schema=_schema({
            "wait_for_ready": {"type": "boolean", "description": "Wait up to 60 seconds for workspace to be ready"},
        }),
    ),
    ToolSpec(
        name="restart_workspace",
        description="Restart the workspace when it is in an error state or needs a fresh start.",
        handler=restart_workspace,
    ),
    ToolSpec(
        name="daytona_get_preview_url",
        description="Get the preview URL for the application running in the sandbox.",
        handler=daytona_get_preview_url,
    ),
    # -- interactive sessions ----------------------------------------
    ToolSpec(
        name="start_interactive_session",
        description="Start an interactive PTY session for long-running commands like dev servers. "
                    "Returns a session ID for managing the process.",
        handler=start_interactive_session,
        input_schema=_schema({"command": _str("The command to run, e.g. \"npm run dev\"")}, ["command"]),
    ),
    ToolSpec(
        name="send_pty_input",
        description="Send input to an active PTY session (commands, keystrokes, control sequences).",
        handler=send_pty_input,
        input_schema=_schema({
            "sessionId": _SESSION_ID,
            "input": _str("The input to send (\\n for enter)"),
        }, ["sessionId", "input"]),
    ),
    ToolSpec(
        name="get_pty_status",
        description="Check whether a PTY session is running, its exit code and recent output.",
        handler=get_pty_status,
        input_schema=_schema({"sessionId": _SESSION_ID}, ["sessionId"]),
    ),
    ToolSpec(
        name="kill_pty_session",
        description="Stop a running PTY session.",
        handler=kill_pty_session,
        input_schema=_schema({"sessionId": _SESSION_ID}, ["sessionId"]),
    ),
    ToolSpec(
        name="list_pty_sessions",
        description="List the PTY sessions of the current workspace.",
        handler=list_pty_sessions,
    ),
    ToolSpec(
        name="start_dev_server",
        description="Start the project's development server in a PTY session.",
        handler=start_dev_server,
        input_schema=_schema({
            "command": _str("Optional: Override the dev server command (default \"npm run dev\")"),
        }),
    ),
    # -- conversational -----------------------------------------------
    ToolSpec(
        name="ask_followup_question",
        description="Ask the user a follow-up question to gather more information",
        handler=ask_followup_question,
        input_schema=_schema({"question": _str("The question to ask the user")}, ["question"]),
    ),
    ToolSpec(
        name="attempt_completion",
        description="Present the result of the task to the user when the task is complete.",
        handler=attempt_completion,
        input_schema=_schema({
            "result": _str("Summary of what was accomplished"),
            "command": _str("Optional: A command for the user to run to verify the result"),
        }),
    ),
]
