"""
WebSocket Server

GET /ws?token=<bearer>  (or Authorization: Bearer <token>)

Connections that fail authentication are closed before accept with
code 4001 and the failure message as reason. Each accepted text frame
is handed to the gateway as its own task.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket

from mentorlink.errors import APIError, UnauthorizedError
from mentorlink.realtime.gateway import ConnectionGateway

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4001
INTERNAL_ERROR_CLOSE_CODE = 1011

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    gateway: ConnectionGateway = websocket.app.state.gateway

    try:
        identity = await gateway.authenticate(token, websocket.headers.get("authorization"))
    except UnauthorizedError as e:
        logger.info(f"WebSocket rejected: {e.message}")
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
        return
    except APIError as e:
        await websocket.close(code=INTERNAL_ERROR_CLOSE_CODE, reason=e.message)
        return

    await websocket.accept()
    connection = gateway.open_connection(websocket, identity)
    if connection is None:
        await websocket.close(code=1008, reason="Unauthenticated connection")
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is not None:
                gateway.submit(connection, raw)
    finally:
        await gateway.close_connection(connection)
