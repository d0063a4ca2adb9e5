"""Shared fakes for the test suite: gateway, backend, session store and clock."""

import itertools
import uuid
from typing import Any, Dict, List, Optional

import pytest

from agent import ConversationOrchestrator, LoopGuard
from backend import Backend, BackendError, CommandOutput
from gateway import GatewayRequest, GatewayResponse, LLMGateway
from sessions import SessionStore
from tools import ExecutionContext


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway(LLMGateway):
    """Answers with scripted responses in order; an Exception in the script is raised."""

    def __init__(self, script: Optional[List[Any]] = None):
        self.script = list(script or [])
        self.requests: List[GatewayRequest] = []
        self.closed = False

    async def chat(self, request: GatewayRequest) -> GatewayResponse:
        self.requests.append(request)
        if not self.script:
            return GatewayResponse(content=[{"type": "text", "text": "Done."}])
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class FakeBackend(Backend):
    """In-memory sandbox. ``unreachable`` makes every call fail without a status."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})
        self.commands: Dict[str, CommandOutput] = {}
        self.calls: List[tuple] = []
        self.unreachable = False
        self.workspace: Optional[Dict[str, Any]] = {
            "id": "ws-1", "status": "running", "daytona_sandbox_id": "sb-1", "project_id": "proj-1",
        }
        self.preview: Dict[str, Any] = {"url": None, "port": None}
        self.code_response: Dict[str, Any] = {"exitCode": 0, "result": "", "artifacts": {}}
        self.pty: Dict[str, Dict[str, Any]] = {}
        self.closed = False
        self._ids = itertools.count(1)

    def _record(self, op: str, *args) -> None:
        self.calls.append((op,) + args)
        if self.unreachable:
            raise BackendError("Request to sandbox failed: connection refused")

    async def read_file(self, project_id, path):
        self._record("read_file", project_id, path)
        if path not in self.files:
            raise BackendError(f"File not found: {path}", status=404)
        return self.files[path]

    async def write_file(self, project_id, path, content):
        self._record("write_file", project_id, path, content)
        self.files[path] = content

    async def list_directory(self, project_id, path="/"):
        self._record("list_directory", project_id, path)
        return [{"path": p, "type": "file"} for p in sorted(self.files)]

    async def search_files(self, project_id, pattern, path="/"):
        self._record("search_files", project_id, pattern, path)
        matches = []
        for p, content in sorted(self.files.items()):
            for lineno, line in enumerate(content.split("\n"), 1):
                if pattern in line:
                    matches.append({"path": p, "line": lineno, "content": line})
        return matches

    async def exec_command(self, workspace_id, command):
        self._record("exec_command", workspace_id, command)
        return self.commands.get(command, CommandOutput(stdout="", stderr="", exit_code=0))

    async def run_code(self, workspace_id, code, language="python", argv=None, env=None):
        self._record("run_code", workspace_id, code, language)
        return self.code_response

    async def get_workspace(self, workspace_id):
        self._record("get_workspace", workspace_id)
        return self.workspace or {}

    async def ensure_workspace(self, project_id, wait_for_ready=True):
        self._record("ensure_workspace", project_id, wait_for_ready)
        return self.workspace

    async def restart_workspace(self, workspace_id):
        self._record("restart_workspace", workspace_id)
        return self.workspace or {}

    async def get_preview_url(self, workspace_id):
        self._record("get_preview_url", workspace_id)
        return self.preview

    async def start_pty(self, workspace_id, command, cols=120, rows=30):
        self._record("start_pty", workspace_id, command)
        session_id = f"pty-{next(self._ids)}"
        self.pty[session_id] = {"sessionId": session_id, "running": True, "exitCode": None, "output": ""}
        return {"sessionId": session_id}

    async def send_pty_input(self, workspace_id, session_id, data):
        self._record("send_pty_input", workspace_id, session_id, data)
        if session_id not in self.pty:
            raise BackendError(f"PTY session not found: {session_id}", status=404)
        self.pty[session_id]["output"] += data

    async def get_pty_status(self, workspace_id, session_id):
        self._record("get_pty_status", workspace_id, session_id)
        if session_id not in self.pty:
            raise BackendError(f"PTY session not found: {session_id}", status=404)
        return self.pty[session_id]

    async def kill_pty(self, workspace_id, session_id):
        self._record("kill_pty", workspace_id, session_id)
        if self.pty.pop(session_id, None) is None:
            raise BackendError(f"PTY session not found: {session_id}", status=404)

    async def list_pty_sessions(self, workspace_id):
        self._record("list_pty_sessions", workspace_id)
        return list(self.pty.values())

    async def start_dev_server(self, workspace_id, command):
        started = await self.start_pty(workspace_id, command)
        return {"message": f"Dev server started with '{command}'", "sessionId": started["sessionId"]}

    async def close(self):
        self.closed = True


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_appends = False

    async def create_session(self, project_id, title="Agent Chat"):
        session = {"id": f"sess-{uuid.uuid4().hex[:8]}", "title": title, "project_id": project_id}
        self.sessions[session["id"]] = session
        self.messages[session["id"]] = []
        return session

    async def list_sessions(self, project_id):
        return [s for s in reversed(list(self.sessions.values())) if s["project_id"] == project_id]

    async def get_messages(self, session_id):
        return list(self.messages.get(session_id, []))

    async def append_message(self, session_id, role, content, metadata=None):
        if self.fail_appends:
            raise RuntimeError("store offline")
        message = {"role": role, "content": content}
        if metadata:
            message["metadata"] = metadata
        self.messages[session_id].append(message)


# ------------------------------------------------------------------
# Response helpers
# ------------------------------------------------------------------

def text_response(text: str) -> GatewayResponse:
    return GatewayResponse(content=[{"type": "text", "text": text}], stop_reason="end_turn")


def tool_response(name: str, params: Optional[Dict[str, Any]] = None, call_id: str = "", text: str = "") -> GatewayResponse:
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    content.append({
        "type": "tool_use",
        "id": call_id or f"toolu_{uuid.uuid4().hex[:8]}",
        "name": name,
        "input": params or {},
    })
    return GatewayResponse(content=content, stop_reason="tool_use")


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def backend():
    return FakeBackend({"src/app.py": "import os\nprint('hi')\n"})


@pytest.fixture
def context(backend):
    return ExecutionContext(project_id="proj-1", backend=backend, workspace_id="ws-1")


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_orchestrator(backend, context, events, clock):
    def _make(script=None, **kwargs) -> ConversationOrchestrator:
        async def on_event(event):
            events.append(event)

        kwargs.setdefault("context", context)
        kwargs.setdefault("conversation_id", "proj-1")
        kwargs.setdefault("loop_guard", LoopGuard(clock=clock))
        kwargs.setdefault("on_event", on_event)
        return ConversationOrchestrator(FakeGateway(script), backend, **kwargs)
    return _make
