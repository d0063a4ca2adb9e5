"""
Conversation REST API and the event WebSocket.

Every action awaits the orchestrator until the conversation settles (a
text answer, an approval prompt, or an error) and answers with a fresh
snapshot.
"""

import asyncio
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from tools import CONVERSATIONAL_TOOLS
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "Conversation not ready"}, status_code=503)


@router.get("/api/conversation")
async def conversation():
    if _state._orchestrator is None:
        return _not_ready()
    return _state._orchestrator.snapshot()


@router.post("/api/messages")
async def send_message(request: Request):
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    body = await request.json()
    text = (body.get("text") or "").strip()
    if not text:
        return JSONResponse({"ok": False, "error": "Message text is required"}, status_code=400)
    if not await orch.send_message(text):
        return JSONResponse({"ok": False, "error": "A response is already in progress"}, status_code=409)
    return {"ok": True, **orch.snapshot()}


# ------------------------------------------------------------------
# Approval queue
# ------------------------------------------------------------------

@router.post("/api/approval/approve")
async def approve():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    if orch.queue.current is None:
        return JSONResponse({"ok": False, "error": "Nothing awaiting approval"}, status_code=409)
    await orch.approve_current()
    return {"ok": True, **orch.snapshot()}


@router.post("/api/approval/deny")
async def deny():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    if orch.queue.current is None:
        return JSONResponse({"ok": False, "error": "Nothing awaiting approval"}, status_code=409)
    await orch.deny_current()
    return {"ok": True, **orch.snapshot()}


@router.post("/api/approval/approve-all")
async def approve_all():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    await orch.approve_all()
    return {"ok": True, **orch.snapshot()}


@router.post("/api/approval/deny-all")
async def deny_all():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    await orch.deny_all()
    return {"ok": True, **orch.snapshot()}


@router.post("/api/approval/toggle-details")
async def toggle_details():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    return {"ok": True, "show_details": await orch.toggle_details()}


@router.put("/api/approval/auto")
async def set_auto_approve(request: Request):
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    body = await request.json()
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return JSONResponse({"ok": False, "error": "'enabled' must be a boolean"}, status_code=400)
    await orch.set_auto_approve(enabled)
    return {"ok": True, "auto_approve": enabled}


# ------------------------------------------------------------------
# Tools
# ------------------------------------------------------------------

@router.get("/api/tools")
async def list_tools():
    orch = _state._orchestrator
    if orch is None:
        return _not_ready()
    return {
        "tools": [
            {**spec.definition(), "local": spec.name in CONVERSATIONAL_TOOLS}
            for spec in orch.registry
        ]
    }


# ------------------------------------------------------------------
# Events
# ------------------------------------------------------------------

@router.websocket("/ws")
async def events_socket(ws: WebSocket):
    """Push orchestrator events; the first frame is the current snapshot."""
    await ws.accept()
    q = _state.subscribe()

    async def send_events():
        while True:
            event = await q.get()
            await ws.send_json(event)

    send_task = None
    try:
        if _state._orchestrator is not None:
            await ws.send_json({"type": "snapshot", "data": _state._orchestrator.snapshot()})
        send_task = asyncio.create_task(send_events())
        # Clients only listen; reading is how a disconnect shows up
        while True:
            msg = await ws.receive()
            if msg.get("type") == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("Event socket closed")
        if send_task is not None:
            send_task.cancel()
        _state.unsubscribe(q)
