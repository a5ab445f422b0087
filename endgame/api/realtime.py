"""
Live views over WebSocket.

A connection receives the full view once on connect and again every time a
relevant change is committed. Authentication uses the same bearer token as
the REST API, passed as the ``token`` query parameter.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from redis.exceptions import RedisError

from endgame.core.auth import decode_access_token
from endgame.schemas.schemas import FeedResponse
from endgame.services import realtime_service
from endgame.services.feed_service import get_feed
from endgame.services.notification_service import get_notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/realtime", tags=["realtime"])


async def _authenticate(websocket: WebSocket, token: Optional[str]) -> Optional[UUID]:
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    try:
        return decode_access_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None


async def _serve(
    websocket: WebSocket,
    table: str,
    refetch,
    column: Optional[str] = None,
    value: Optional[UUID] = None,
) -> None:
    await websocket.accept()

    # Pushes run one at a time, so the last one sent carries the newest view
    push_lock = asyncio.Lock()

    async def push() -> None:
        async with push_lock:
            await refetch()

    try:
        handle = await realtime_service.registry.acquire(table, push, column=column, value=value)
    except (RedisError, OSError):
        logger.exception(f"Could not subscribe a live {table} view")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        # Subscribed first: a change committed from here on triggers another push
        await push()
        while True:
            # Clients only ever send keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Live {table} view disconnected")
    finally:
        await handle.release()


@router.websocket("/feed")
async def live_feed(websocket: WebSocket, token: Optional[str] = None):
    profile_id = await _authenticate(websocket, token)
    if profile_id is None:
        return

    async def push_feed() -> None:
        posts = await get_feed(viewer_id=profile_id)
        await websocket.send_text(FeedResponse(posts=posts).model_dump_json())

    await _serve(websocket, "posts", push_feed)


@router.websocket("/notifications")
async def live_notifications(websocket: WebSocket, token: Optional[str] = None):
    profile_id = await _authenticate(websocket, token)
    if profile_id is None:
        return

    async def push_notifications() -> None:
        notifications = await get_notifications(profile_id)
        await websocket.send_text(notifications.model_dump_json())

    await _serve(websocket, "notifications", push_notifications, column="recipient_id", value=profile_id)
