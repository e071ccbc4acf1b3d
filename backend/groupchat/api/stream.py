"""WebSocket endpoint carrying live group events."""

from __future__ import annotations

from typing import Optional

from fastapi import Query, WebSocket
from fastapi.concurrency import run_in_threadpool

from ..realtime import Connection, JoinGuard, RoomProtocol
from ..store import ChatStore
from .auth import decode_token


def membership_guard(store: ChatStore) -> JoinGuard:
    """Only let authenticated group members subscribe to a group's room."""

    async def _guard(connection: Connection, room_id: int) -> bool:
        if connection.user_id is None:
            return False
        return await run_in_threadpool(store.is_member, room_id, connection.user_id)

    return _guard


async def chat_stream(websocket: WebSocket, token: Optional[str] = Query(default=None)) -> None:
    state = websocket.app.state
    user_id = decode_token(token, state.settings) if token else None
    protocol: RoomProtocol = state.room_protocol
    await protocol.serve(websocket, user_id=user_id)
