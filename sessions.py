"""
Session persistence for Sandbox Codex.
A session is an append-only list of stored messages for one project, so a
conversation can be closed and resumed where it left off. Two stores: the
remote agent API (``/ai/sessions``) and JSON files on disk.
"""

import asyncio
import json
import logging
import os
import re
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from api_client import ApiClient, ApiError, TokenGetter

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = os.path.join(os.path.expanduser("~"), ".sandbox-codex", "sessions")

SESSION_VERSION = 1


class SessionStoreError(Exception):
    """Session storage read/write failed"""
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _slugify(name: str) -> str:
    """Turn a project id into a safe filename component."""
    s = name.lower().strip()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = s.strip("-")[:50]
    return s or "default"


class SessionStore(ABC):
    """Stored message form: ``{role, content, metadata, timestamp}``.

    ``content`` is always a string; block lists are stored JSON-encoded.
    ``timestamp`` is in epoch seconds.
    """

    @abstractmethod
    async def create_session(self, project_id: str, title: str = "Agent Chat") -> Dict[str, Any]:
        """Create a session. Returns ``{id, title, project_id, ...}``."""

    @abstractmethod
    async def list_sessions(self, project_id: str) -> List[Dict[str, Any]]:
        """Sessions of a project, most recent first."""

    @abstractmethod
    async def get_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """Stored messages of a session, oldest first."""

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one message to a session."""

    async def close(self) -> None:
        pass


# ============================================================
# HTTP store
# ============================================================

def _unwrap(response: Any, key: str) -> Any:
    """The API answers either ``{key: value}`` or the bare value."""
    if isinstance(response, dict) and key in response:
        return response[key]
    return response


class HttpSessionStore(SessionStore):
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
            raise SessionStoreError(str(e)) from e

    async def create_session(self, project_id: str, title: str = "Agent Chat") -> Dict[str, Any]:
        response = await self._call("POST", "/ai/sessions", {"projectId": project_id, "title": title})
        session = _unwrap(response, "session")
        if not isinstance(session, dict) or not session.get("id"):
            raise SessionStoreError("Session create response has no id")
        return session

    async def list_sessions(self, project_id: str) -> List[Dict[str, Any]]:
        response = await self._call("GET", f"/ai/projects/{project_id}/sessions")
        return list(_unwrap(response, "sessions") or [])

    async def get_messages(self, session_id: str) -> List[Dict[str, Any]]:
        response = await self._call("GET", f"/ai/sessions/{session_id}/messages")
        return list(_unwrap(response, "messages") or [])

    async def append_message(self, session_id, role, content, metadata=None) -> None:
        body: Dict[str, Any] = {"role": role, "content": content}
        if metadata:
            body["metadata"] = metadata
        await self._call("POST", f"/ai/sessions/{session_id}/messages", body)

    async def close(self) -> None:
        await self.api.aclose()


# ============================================================
# File store
# ============================================================

@dataclass
class Session:
    """A persisted agent session."""
    session_id: str = ""
    version: int = SESSION_VERSION
    project_id: str = ""
    title: str = "Agent Chat"
    created_at: str = ""
    updated_at: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.session_id,
            "title": self.title,
            "project_id": self.project_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": len(self.messages),
        }


class FileSessionStore(SessionStore):
    """
    Manages session files on disk.

    File layout:  {base_dir}/{project_slug}_{hex}.json
    """

    def __init__(self, base_dir: str = DEFAULT_BASE_DIR):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)
        # Appends rewrite the whole file, so they run one at a time per session
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _blocking(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def create_session(self, project_id: str, title: str = "Agent Chat") -> Dict[str, Any]:
        now = _now_iso()
        session = Session(
            session_id=f"{_slugify(project_id)}_{uuid.uuid4().hex[:12]}",
            project_id=project_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        await self._blocking(self._save, session)
        return session.summary()

    async def list_sessions(self, project_id: str) -> List[Dict[str, Any]]:
        sessions = await self._blocking(self._list, project_id)
        return [s.summary() for s in sessions]

    async def get_messages(self, session_id: str) -> List[Dict[str, Any]]:
        session = await self._blocking(self._load, session_id)
        return list(session.messages)

    async def append_message(self, session_id, role, content, metadata=None) -> None:
        def _append() -> None:
            session = self._load(session_id)
            message: Dict[str, Any] = {"role": role, "content": content, "timestamp": time.time()}
            if metadata:
                message["metadata"] = metadata
            session.messages.append(message)
            self._save(session)
        async with self._lock_for(session_id):
            await self._blocking(_append)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _path_for(self, session_id: str) -> str:
        return os.path.join(self.base_dir, f"{session_id}.json")

    def _save(self, session: Session) -> str:
        """Write a session atomically. Returns the file path."""
        session.updated_at = _now_iso()
        path = self._path_for(session.session_id)
        tmp_path = f"{path}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(asdict(session), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.debug(f"Session saved: {path}")
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise SessionStoreError(f"Failed to save session {session.session_id}: {e}") from e
        return path

    def _load(self, session_id: str) -> Session:
        session = self._read_file(self._path_for(session_id))
        if session is None:
            raise SessionStoreError(f"Session not found: {session_id}")
        return session

    def _list(self, project_id: str) -> List[Session]:
        sessions: List[Session] = []
        for fname in os.listdir(self.base_dir):
            if not fname.endswith(".json"):
                continue
            sess = self._read_file(os.path.join(self.base_dir, fname))
            if sess and sess.project_id == project_id:
                sessions.append(sess)
        sessions.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sessions

    def _read_file(self, path: str) -> Optional[Session]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Session(
                session_id=data.get("session_id", ""),
                version=data.get("version", SESSION_VERSION),
                project_id=data.get("project_id", ""),
                title=data.get("title", "Agent Chat"),
                created_at=data.get("created_at", ""),
                updated_at=data.get("updated_at", ""),
                messages=data.get("messages", []),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read session {path}: {e}")
            return None
