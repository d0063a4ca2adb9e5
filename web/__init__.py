"""
Sandbox Codex: approval UI server.
FastAPI app exposing one ConversationOrchestrator over REST + WebSocket.

Run:  python -m web [--port 8765] [--project <id>]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from web import chat
import web.state as _state

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title="Sandbox Codex")


@app.on_event("startup")
async def _on_startup():
    """Resume the project's latest session (or start one) before serving."""
    orch = _state._orchestrator
    if orch is None or orch.session_store is None or orch.session_id:
        return
    try:
        session_id = await orch.open_session(orch.context.project_id)
        logger.info(f"Startup: conversation bound to session {session_id}")
    except Exception as exc:
        logger.error(f"Startup: could not open a session, messages will not be saved: {exc}")


@app.on_event("shutdown")
async def _on_shutdown():
    """Close the gateway, backend and session store clients."""
    await _state.close_orchestrator()
    logger.info("Shutdown: orchestrator closed")


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(chat.router)
