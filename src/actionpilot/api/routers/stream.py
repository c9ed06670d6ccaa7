"""Websocket stream of run progress for a session."""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from actionpilot.api.dependencies import get_stream_manager

router = APIRouter(tags=["stream"])


@router.websocket("/ws/{session_id}")
async def stream_session(websocket: WebSocket, session_id: str) -> None:
    manager = get_stream_manager()
    queue = manager.connect(session_id)
    await websocket.accept()
    pump = asyncio.create_task(manager.pump(session_id, websocket, queue))
    try:
        # inbound messages are ignored; receiving only detects the close
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        pump.cancel()
        manager.disconnect(session_id, queue)
