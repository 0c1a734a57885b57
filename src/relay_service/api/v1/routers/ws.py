from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from relay_service.api.deps import RelayDep
from relay_service.application.exceptions import AuthError
from relay_service.config import settings
from relay_service.infrastructure.ws import protocol

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

AUTH_FAILED_CLOSE_CODE = 4001


def _handshake_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    relay: RelayDep,
    token: str | None = Query(default=None),
) -> None:
    try:
        principal = await relay.authenticate(_handshake_token(websocket, token))
    except AuthError as exc:
        logger.info("WS handshake rejected: %s", exc.detail)
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=exc.detail)
        return

    await websocket.accept()
    connection = relay.connect(websocket, principal)

    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{connection.id}",
    )
    try:
        while True:
            raw = await websocket.receive_text()
            await relay.handle(connection, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", connection.id)
    finally:
        heartbeat_task.cancel()
        await relay.disconnect(connection)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await ws.send_text(protocol.encode(protocol.PONG, {}))
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Heartbeat stopped", exc_info=True)
