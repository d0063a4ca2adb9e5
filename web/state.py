"""
Shared mutable state for the web server.

The server drives a single conversation; its orchestrator and the event
subscribers (open WebSockets) live here. Import from web.state to read/write them.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional, Set

from agent import AgentEvent, ConversationOrchestrator, LoopGuard
from api_client import static_token
from backend import Backend, HttpBackend, LocalBackend
from config import api_config, app_config
from gateway import HttpGateway, LLMGateway
from sessions import FileSessionStore, HttpSessionStore, SessionStore
from tools import ExecutionContext

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_orchestrator: Optional[ConversationOrchestrator] = None

# One queue per connected WebSocket; events fan out to all of them
_subscribers: Set[asyncio.Queue] = set()


async def broadcast(event: AgentEvent) -> None:
    """on_event callback: fan the event out to every subscriber."""
    logger.debug(f"event {event.type}: {event.content[:80]}")
    payload: Dict[str, Any] = asdict(event)
    for q in list(_subscribers):
        q.put_nowait(payload)


def subscribe() -> asyncio.Queue:
    q: asyncio.Queue = asyncio.Queue()
    _subscribers.add(q)
    return q


def unsubscribe(q: asyncio.Queue) -> None:
    _subscribers.discard(q)


def set_orchestrator(orchestrator: Optional[ConversationOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


# ============================================================
# Wiring from config
# ============================================================

def build_gateway() -> LLMGateway:
    if app_config.gateway_provider == "bedrock":
        from bedrock_service import BedrockService
        return BedrockService()
    return HttpGateway(
        api_config.api_url,
        token_getter=static_token(api_config.api_token),
        timeout=api_config.request_timeout,
    )


def build_backend() -> Backend:
    if app_config.backend_provider == "local":
        return LocalBackend(app_config.working_directory)
    return HttpBackend(
        api_config.api_url,
        token_getter=static_token(api_config.api_token),
        timeout=api_config.request_timeout,
    )


def build_session_store() -> SessionStore:
    if app_config.session_store == "file":
        return FileSessionStore(app_config.sessions_dir)
    return HttpSessionStore(
        api_config.api_url,
        token_getter=static_token(api_config.api_token),
        timeout=api_config.request_timeout,
    )


def build_orchestrator(
    gateway: Optional[LLMGateway] = None,
    backend: Optional[Backend] = None,
    session_store: Optional[SessionStore] = None,
) -> ConversationOrchestrator:
    """Orchestrator for the configured project, with any collaborator overridable."""
    backend = backend or build_backend()
    project_id = app_config.project_id or "local"
    workspace_id = app_config.workspace_id or ("local" if isinstance(backend, LocalBackend) else None)
    context = ExecutionContext(
        project_id=project_id,
        backend=backend,
        workspace_id=workspace_id,
        user_id=app_config.user_id or None,
    )
    return ConversationOrchestrator(
        gateway or build_gateway(),
        backend,
        context=context,
        session_store=session_store if session_store is not None else build_session_store(),
        conversation_id=project_id,
        auto_approve=app_config.auto_approve_all,
        loop_guard=LoopGuard(app_config.loop_guard_threshold, app_config.loop_guard_window),
        on_event=broadcast,
    )


async def close_orchestrator() -> None:
    orchestrator = _orchestrator
    if orchestrator is None:
        return
    for resource in (orchestrator.gateway, orchestrator.backend, orchestrator.session_store):
        if resource is None:
            continue
        try:
            await resource.close()
        except Exception as exc:
            logger.error(f"Shutdown: failed to close {type(resource).__name__}: {exc}")
    set_orchestrator(None)
