"""
Execution backend abstraction for sandbox operations.
Supports the remote sandbox REST API (default) and a local directory via subprocesses.
"""

import asyncio
import base64
import logging
import os
import re
import sys
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from api_client import ApiClient, ApiError, TokenGetter

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Failure talking to the execution backend.

    ``status`` is set when the backend answered with an error (missing file,
    unknown session); it is None when the backend could not be reached.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class CommandOutput:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class Backend(ABC):
    """Abstract backend: one coroutine per sandbox operation."""

    # -- files --------------------------------------------------------

    @abstractmethod
    async def read_file(self, project_id: str, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    async def write_file(self, project_id: str, path: str, content: str) -> None:
        """Create or overwrite a file."""

    @abstractmethod
    async def list_directory(self, project_id: str, path: str = "/") -> List[Dict[str, Any]]:
        """List a directory. Returns [{path, type: 'file'|'dir'}]."""

    @abstractmethod
    async def search_files(self, project_id: str, pattern: str, path: str = "/") -> List[Dict[str, Any]]:
        """Search file contents. Returns [{path, line, content}]."""

    # -- commands -----------------------------------------------------

    @abstractmethod
    async def exec_command(self, workspace_id: str, command: str) -> CommandOutput:
        """Run a shell command to completion inside the sandbox."""

    @abstractmethod
    async def run_code(
        self,
        workspace_id: str,
        code: str,
        language: str = "python",
        argv: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Run a code snippet. Returns {exitCode, result, artifacts}."""

    # -- workspace lifecycle -----------------------------------------

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Dict[str, Any]:
        """Return {id, status, daytona_sandbox_id, project_id}."""

    @abstractmethod
    async def ensure_workspace(self, project_id: str, wait_for_ready: bool = True) -> Optional[Dict[str, Any]]:
        """Create/start/recover the project's workspace. None if unavailable."""

    @abstractmethod
    async def restart_workspace(self, workspace_id: str) -> Dict[str, Any]:
        """Restart and return the workspace record."""

    @abstractmethod
    async def get_preview_url(self, workspace_id: str) -> Dict[str, Any]:
        """Return {url, port}; url is None when nothing is served."""

    # -- interactive sessions ----------------------------------------

    @abstractmethod
    async def start_pty(self, workspace_id: str, command: str, cols: int = 120, rows: int = 30) -> Dict[str, Any]:
        """Start a long-running process. Returns {sessionId}."""

    @abstractmethod
    async def send_pty_input(self, workspace_id: str, session_id: str, data: str) -> None:
        """Write to a session's stdin."""

    @abstractmethod
    async def get_pty_status(self, workspace_id: str, session_id: str) -> Dict[str, Any]:
        """Return {running, exitCode, output}."""

    @abstractmethod
    async def kill_pty(self, workspace_id: str, session_id: str) -> None:
        """Terminate a session."""

    @abstractmethod
    async def list_pty_sessions(self, workspace_id: str) -> List[Dict[str, Any]]:
        """Return [{sessionId, running, exitCode}]."""

    @abstractmethod
    async def start_dev_server(self, workspace_id: str, command: str) -> Dict[str, Any]:
        """Start the project's dev server. Returns {message, sessionId}."""

    async def close(self) -> None:
        """Release network clients / child processes."""


# ============================================================
# HTTP Backend
# ============================================================

class HttpBackend(Backend):
    """Backend for the remote sandbox REST API (``/vfs`` and ``/workspace`` routes)."""

    def __init__(
        self,
        api_url: str,
        token_getter: Optional[TokenGetter] = None,
        timeout: float = 60.0,
        api: Optional[ApiClient] = None,
    ):
        self.api = api or ApiClient(api_url, token_getter=token_getter, timeout=timeout)

    async def _call(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self.api.request(method, endpoint, body)
        except ApiError as e:
            raise BackendError(str(e), status=e.status) from e

    async def read_file(self, project_id: str, path: str) -> str:
        response = await self._call("GET", f"/vfs/files/{project_id}/{path.lstrip('/')}")
        raw = response.get("content") or ""
        if response.get("encoding", "base64") == "base64":
            return base64.b64decode(raw).decode("utf-8", errors="replace")
        return raw

    async def write_file(self, project_id: str, path: str, content: str) -> None:
        await self._call("POST", "/vfs/files", {"projectId": project_id, "path": path, "content": content})

    async def list_directory(self, project_id: str, path: str = "/") -> List[Dict[str, Any]]:
        response = await self._call("GET", f"/vfs/directories/{project_id}", {"path": path or "/"})
        return list(response.get("files") or [])

    async def search_files(self, project_id: str, pattern: str, path: str = "/") -> List[Dict[str, Any]]:
        response = await self._call("POST", "/vfs/search", {
            "projectId": project_id,
            "pattern": pattern,
            "path": path or "/",
        })
        return list(response.get("matches") or [])

    async def exec_command(self, workspace_id: str, command: str) -> CommandOutput:
        response = await self._call("POST", f"/workspace/{workspace_id}/exec", {"command": command})
        return CommandOutput(
            stdout=response.get("stdout") or "",
            stderr=response.get("stderr") or "",
            exit_code=int(response.get("exitCode") or 0),
        )

    async def run_code(self, workspace_id, code, language="python", argv=None, env=None):
        return await self._call("POST", f"/workspace/{workspace_id}/code-run", {
            "code": code,
            "language": language,
            "argv": argv,
            "env": env,
        })

    async def get_workspace(self, workspace_id: str) -> Dict[str, Any]:
        response = await self._call("GET", f"/workspace/{workspace_id}")
        return response.get("workspace") or {}

    async def ensure_workspace(self, project_id: str, wait_for_ready: bool = True) -> Optional[Dict[str, Any]]:
        endpoint = f"/workspace/project/{project_id}"
        if wait_for_ready:
            endpoint += "?waitForReady=true"
        response = await self._call("GET", endpoint)
        return response.get("workspace")

    async def restart_workspace(self, workspace_id: str) -> Dict[str, Any]:
        response = await self._call("POST", f"/workspace/{workspace_id}/restart", {})
        return response.get("workspace") or {}

    async def get_preview_url(self, workspace_id: str) -> Dict[str, Any]:
        return await self._call("GET", f"/workspace/{workspace_id}/url")

    async def start_pty(self, workspace_id: str, command: str, cols: int = 120, rows: int = 30) -> Dict[str, Any]:
        return await self._call("POST", f"/workspace/{workspace_id}/pty", {
            "command": command,
            "cols": cols,
            "rows": rows,
        })

    async def send_pty_input(self, workspace_id: str, session_id: str, data: str) -> None:
        await self._call("POST", f"/workspace/{workspace_id}/pty/{session_id}/input", {"input": data})

    async def get_pty_status(self, workspace_id: str, session_id: str) -> Dict[str, Any]:
        return await self._call("GET", f"/workspace/{workspace_id}/pty/{session_id}/status")

    async def kill_pty(self, workspace_id: str, session_id: str) -> None:
        await self._call("DELETE", f"/workspace/{workspace_id}/pty/{session_id}")

    async def list_pty_sessions(self, workspace_id: str) -> List[Dict[str, Any]]:
        response = await self._call("GET", f"/workspace/{workspace_id}/pty")
        return list(response.get("sessions") or [])

    async def start_dev_server(self, workspace_id: str, command: str) -> Dict[str, Any]:
        return await self._call("POST", f"/workspace/{workspace_id}/dev-server", {"command": command})

    async def close(self) -> None:
        await self.api.aclose()


# ============================================================
# Local Backend
# ============================================================

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}
_MAX_SEARCH_MATCHES = 200
_PTY_OUTPUT_CAP = 20000

_CODE_RUNNERS = {
    "python": ([sys.executable], ".py"),
    "javascript": (["node"], ".js"),
    "typescript": (["npx", "--yes", "tsx"], ".ts"),
}


@dataclass
class _PtySession:
    session_id: str
    command: str
    process: asyncio.subprocess.Process
    output: List[str] = field(default_factory=list)
    reader: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    def recent_output(self) -> str:
        return "".join(self.output)[-_PTY_OUTPUT_CAP:]


class LocalBackend(Backend):
    """Backend that treats a local directory as the sandbox.

    Project and workspace ids are accepted for interface parity and ignored.
    Interactive sessions are plain subprocesses with piped stdin/stdout.
    """

    def __init__(self, working_directory: str = ".", command_timeout: int = 120):
        self._working_directory = os.path.abspath(working_directory)
        self.command_timeout = command_timeout
        self._sessions: Dict[str, _PtySession] = {}

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def resolve_path(self, path: str) -> str:
        """Resolve a sandbox path ('/' is the working directory root)."""
        full = os.path.normpath(os.path.join(self._working_directory, (path or "").lstrip("/")))
        self._ensure_under_working(full)
        return full

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = os.path.abspath(self._working_directory)
        if real != wd and not real.startswith(wd + os.sep):
            raise BackendError(f"Path escapes working directory: {resolved!r}", status=403)

    async def _blocking(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # -- files --------------------------------------------------------

    async def read_file(self, project_id: str, path: str) -> str:
        full = self.resolve_path(path)

        def _read() -> str:
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        try:
            return await self._blocking(_read)
        except OSError as e:
            raise BackendError(f"Cannot read {path}: {e.strerror or e}", status=404) from e

    async def write_file(self, project_id: str, path: str, content: str) -> None:
        full = self.resolve_path(path)

        def _write() -> None:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "w", encoding="utf-8") as f:
                f.write(content)
        try:
            await self._blocking(_write)
        except OSError as e:
            raise BackendError(f"Cannot write {path}: {e.strerror or e}", status=500) from e

    async def list_directory(self, project_id: str, path: str = "/") -> List[Dict[str, Any]]:
        full = self.resolve_path(path)
        try:
            names = sorted(os.listdir(full))
        except OSError as e:
            raise BackendError(f"Cannot list {path}: {e.strerror or e}", status=404) from e
        entries = []
        for name in names:
            child = os.path.join(full, name)
            rel = "/" + os.path.relpath(child, self._working_directory)
            entries.append({"path": rel, "type": "dir" if os.path.isdir(child) else "file"})
        return entries

    async def search_files(self, project_id: str, pattern: str, path: str = "/") -> List[Dict[str, Any]]:
        base = self.resolve_path(path)
        try:
            regex = re.compile(pattern)
        except re.error:
            regex = re.compile(re.escape(pattern))

        def _search() -> List[Dict[str, Any]]:
            matches: List[Dict[str, Any]] = []
            for root, dirs, files in os.walk(base):
                dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
                for fname in sorted(files):
                    full = os.path.join(root, fname)
                    try:
                        with open(full, "r", encoding="utf-8") as f:
                            for lineno, line in enumerate(f, 1):
                                if regex.search(line):
                                    matches.append({
                                        "path": "/" + os.path.relpath(full, self._working_directory),
                                        "line": lineno,
                                        "content": line.rstrip("\n"),
                                    })
                                    if len(matches) >= _MAX_SEARCH_MATCHES:
                                        return matches
                    except (OSError, UnicodeDecodeError):
                        continue
            return matches

        return await self._blocking(_search)

    # -- commands -----------------------------------------------------

    async def exec_command(self, workspace_id: str, command: str) -> CommandOutput:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=self._working_directory,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BackendError(f"Cannot start command: {e}") from e
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            stdout, stderr = await proc.communicate()
            return CommandOutput(
                stdout=stdout.decode(errors="replace"),
                stderr=f"Command timed out after {self.command_timeout}s\n{stderr.decode(errors='replace')}",
                exit_code=-1,
            )
        return CommandOutput(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
        )

    async def run_code(self, workspace_id, code, language="python", argv=None, env=None):
        runner = _CODE_RUNNERS.get((language or "python").lower())
        if runner is None:
            raise BackendError(f"Unsupported language: {language}", status=400)
        argv_prefix, suffix = runner

        fd, script = tempfile.mkstemp(suffix=suffix, dir=self._working_directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(code)
            proc = await asyncio.create_subprocess_exec(
                *argv_prefix, script, *(argv or []),
                cwd=self._working_directory,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, **(env or {})},
            )
            try:
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.command_timeout)
            except asyncio.TimeoutError:
                proc.kill()
                stdout, _ = await proc.communicate()
        except OSError as e:
            raise BackendError(f"Cannot run {language} code: {e}") from e
        finally:
            if os.path.exists(script):
                os.remove(script)
        return {
            "exitCode": proc.returncode if proc.returncode is not None else -1,
            "result": stdout.decode(errors="replace"),
            "artifacts": {},
        }

    # -- workspace lifecycle -----------------------------------------

    def _workspace(self, workspace_id: str = "local", project_id: str = "") -> Dict[str, Any]:
        return {
            "id": workspace_id or "local",
            "status": "running",
            "daytona_sandbox_id": None,
            "project_id": project_id,
        }

    async def get_workspace(self, workspace_id: str) -> Dict[str, Any]:
        return self._workspace(workspace_id)

    async def ensure_workspace(self, project_id: str, wait_for_ready: bool = True) -> Optional[Dict[str, Any]]:
        return self._workspace(project_id=project_id)

    async def restart_workspace(self, workspace_id: str) -> Dict[str, Any]:
        for session_id in list(self._sessions):
            await self.kill_pty(workspace_id, session_id)
        return self._workspace(workspace_id)

    async def get_preview_url(self, workspace_id: str) -> Dict[str, Any]:
        return {"url": None, "port": None}

    # -- interactive sessions ----------------------------------------

    async def _pump(self, session: _PtySession) -> None:
        stream = session.process.stdout
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            session.output.append(chunk.decode(errors="replace"))
            if len(session.output) > 200:
                session.output[:] = [session.recent_output()]
        await session.process.wait()

    def _session(self, session_id: str) -> _PtySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise BackendError(f"PTY session not found: {session_id}", status=404)
        return session

    async def start_pty(self, workspace_id: str, command: str, cols: int = 120, rows: int = 30) -> Dict[str, Any]:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=self._working_directory,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, "COLUMNS": str(cols), "LINES": str(rows)},
            )
        except OSError as e:
            raise BackendError(f"Cannot start session: {e}") from e
        session = _PtySession(session_id=f"pty-{uuid.uuid4().hex[:12]}", command=command, process=proc)
        session.reader = asyncio.create_task(self._pump(session))
        self._sessions[session.session_id] = session
        logger.info(f"Started local session {session.session_id}: {command}")
        return {"sessionId": session.session_id}

    async def send_pty_input(self, workspace_id: str, session_id: str, data: str) -> None:
        session = self._session(session_id)
        if not session.running or session.process.stdin is None:
            raise BackendError(f"PTY session {session_id} is not running", status=409)
        session.process.stdin.write(data.encode())
        await session.process.stdin.drain()

    async def get_pty_status(self, workspace_id: str, session_id: str) -> Dict[str, Any]:
        session = self._session(session_id)
        return {
            "running": session.running,
            "exitCode": session.process.returncode,
            "output": session.recent_output(),
        }

    async def kill_pty(self, workspace_id: str, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise BackendError(f"PTY session not found: {session_id}", status=404)
        if session.running:
            try:
                session.process.kill()
            except ProcessLookupError:
                pass
            await session.process.wait()
        if session.reader:
            session.reader.cancel()
        logger.info(f"Killed local session {session_id}")

    async def list_pty_sessions(self, workspace_id: str) -> List[Dict[str, Any]]:
        return [
            {"sessionId": s.session_id, "running": s.running, "exitCode": s.process.returncode}
            for s in self._sessions.values()
        ]

    async def start_dev_server(self, workspace_id: str, command: str) -> Dict[str, Any]:
        started = await self.start_pty(workspace_id, command)
        return {"message": f"Dev server started with '{command}'", "sessionId": started["sessionId"]}

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.kill_pty("", session_id)
