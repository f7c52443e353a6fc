"""WebSocket adapter for the realtime gateway."""
import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from agentcore.envelope import ADMIN, RequestContext, guard, ok
from agentcore.errors import Unauthenticated

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

AUTH_TIMEOUT_SECONDS = 10
CLOSE_UNAUTHENTICATED = 4401
CLOSE_UNSUPPORTED_DATA = 1003


class WebSocketTransport:
    """Frames are JSON objects ``{"event": ..., "data": ...}`` in both directions."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)


async def _handshake_token(websocket: WebSocket) -> str:
    token = websocket.query_params.get("token")
    if token:
        return token
    # No token in the URL: the first frame must carry it.
    frame = await asyncio.wait_for(websocket.receive_json(), timeout=AUTH_TIMEOUT_SECONDS)
    if isinstance(frame, dict):
        token = frame.get("token")
        if not token and isinstance(frame.get("data"), dict):
            token = frame["data"].get("token")
    if not token:
        raise Unauthenticated("Authentication token required")
    return token


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    gateway = websocket.app.state.services.gateway
    await websocket.accept()
    try:
        token = await _handshake_token(websocket)
        session = await gateway.connect(token, WebSocketTransport(websocket))
    except (Unauthenticated, asyncio.TimeoutError, ValueError, KeyError) as e:
        logger.info(f"Realtime handshake rejected: {e}")
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication failed")
        return
    except WebSocketDisconnect:
        return

    close_code = None
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict):
                gateway.handle_message(session, None, None)
                continue
            gateway.handle_message(session, frame.get("event"), frame.get("data"))
    except WebSocketDisconnect:
        pass
    except (ValueError, KeyError) as e:
        # Non-JSON text or a binary frame.
        logger.info(f"Realtime session {session.session_id} sent a malformed frame: {e!r}")
        close_code = CLOSE_UNSUPPORTED_DATA
    finally:
        await gateway.disconnect(session)
    if close_code is not None:
        await websocket.close(code=close_code, reason="Frames must be JSON text")


@router.get("/api/realtime/stats")
async def realtime_stats(request: Request, ctx: RequestContext = Depends(guard("api", ADMIN))):
    return ok(request.app.state.services.gateway.stats())
